"""Тесты постановки джобов в очередь."""
import asyncio
from unittest.mock import MagicMock

import pytest

from src.config import OrchestratorConfig
from src.models.metrics import ScrapeTarget
from src.scraping.orchestrator import ScrapeOrchestrator
from src.worker.queue import (
    EnqueueError,
    JobAlreadyActiveError,
    NothingToScrapeError,
    ScrapeQueue,
    TargetNotFoundError,
    prepare_targets,
)
from tests.fakes import FakeProvider, InMemoryStore


def make_queue(store: InMemoryStore, worker=None) -> ScrapeQueue:
    orchestrator = ScrapeOrchestrator.from_config(
        OrchestratorConfig(provider_priority_order=["primary"]), [FakeProvider()],
    )
    return ScrapeQueue(store, orchestrator, worker)


class TestEnqueue:
    """Тесты enqueue(campaign_id)."""

    async def test_creates_task_per_real_post(self) -> None:
        store = InMemoryStore()
        store.add_target(1, "https://www.tiktok.com/@u/video/1")
        store.add_target(2, "placeholder://creator-2")
        store.add_target(3, "https://www.instagram.com/reel/XYZ/", platform="instagram")
        worker = MagicMock()
        queue = make_queue(store, worker)

        result = await queue.enqueue(1)

        assert result.task_count == 2
        tasks = await queue.get_task_statuses(result.job_id)
        assert [t.social_link_id for t in tasks] == [1, 3]
        assert all(t.status == "queued" and t.attempts == 0 for t in tasks)
        worker.wake.assert_called_once()

    async def test_active_job_conflict(self) -> None:
        store = InMemoryStore()
        store.add_target(1, "https://www.tiktok.com/@u/video/1")
        queue = make_queue(store)
        first = await queue.enqueue(1)

        with pytest.raises(JobAlreadyActiveError) as exc_info:
            await queue.enqueue(1)

        assert exc_info.value.job_id == first.job_id
        assert "already running" in str(exc_info.value)

    async def test_terminal_job_allows_new_one(self) -> None:
        store = InMemoryStore()
        store.add_target(1, "https://www.tiktok.com/@u/video/1")
        queue = make_queue(store)
        first = await queue.enqueue(1)
        await store.update_job_status(first.job_id, "done")

        second = await queue.enqueue(1)

        assert second.job_id != first.job_id
        assert store.jobs[first.job_id].status == "done"

    async def test_concurrent_enqueue_creates_one_job(self) -> None:
        store = InMemoryStore()
        store.add_target(1, "https://www.tiktok.com/@u/video/1")
        queue = make_queue(store)

        results = await asyncio.gather(queue.enqueue(1), queue.enqueue(1), return_exceptions=True)

        assert sum(1 for r in results if isinstance(r, JobAlreadyActiveError)) == 1
        assert len(store.jobs) == 1

    async def test_no_posts(self) -> None:
        queue = make_queue(InMemoryStore())

        with pytest.raises(NothingToScrapeError, match="No posts to scrape"):
            await queue.enqueue(1)

    async def test_only_placeholders(self) -> None:
        store = InMemoryStore()
        store.add_target(1, "placeholder://a")
        store.add_target(2, "placeholder://b")

        with pytest.raises(NothingToScrapeError, match="placeholders"):
            await make_queue(store).enqueue(1)
        assert store.jobs == {}

    async def test_duplicate_posts_each_get_a_task(self) -> None:
        """Две ссылки на одну публикацию: у каждой своя задача."""
        store = InMemoryStore()
        store.add_target(1, "https://www.tiktok.com/@u/video/777")
        store.add_target(2, "https://www.tiktok.com/@u/video/777?utm_source=ig")
        store.add_target(3, "https://www.tiktok.com/@u/video/778")

        result = await make_queue(store).enqueue(1)

        assert result.task_count == 3
        assert [t.social_link_id for t in store.tasks.values()] == [1, 2, 3]

    async def test_blank_platform_detected_from_url(self) -> None:
        store = InMemoryStore()
        store.add_target(1, "https://youtube.com/shorts/abcDEF123", platform="")

        result = await make_queue(store).enqueue(1)

        tasks = await store.get_tasks_by_job(result.job_id)
        assert tasks[0].platform == "youtube"


class TestPrepareTargets:
    """Тесты prepare_targets."""

    def test_platform_is_normalized(self) -> None:
        target = ScrapeTarget(id=1, campaign_id=1, url="https://www.instagram.com/reel/XYZ/",
                              platform=" Instagram ")

        assert prepare_targets([target])[0].platform == "instagram"

    def test_unknown_host_keeps_empty_platform(self) -> None:
        target = ScrapeTarget(id=1, campaign_id=1, url="https://example.com/post/1", platform="")

        assert prepare_targets([target])[0].platform == ""


class TestEnqueueTarget:
    """Тесты enqueue_target — скрап одного поста."""

    async def test_single_task_job(self) -> None:
        store = InMemoryStore()
        store.add_target(5, "https://youtu.be/dQw4w9WgXcQ", campaign_id=3, platform="youtube")
        queue = make_queue(store)

        result = await queue.enqueue_target(5)

        assert result.task_count == 1
        assert store.jobs[result.job_id].campaign_id == 3

    async def test_missing_target(self) -> None:
        with pytest.raises(TargetNotFoundError):
            await make_queue(InMemoryStore()).enqueue_target(404)

    async def test_placeholder_target(self) -> None:
        store = InMemoryStore()
        store.add_target(5, "placeholder://x")

        with pytest.raises(NothingToScrapeError):
            await make_queue(store).enqueue_target(5)

    async def test_active_campaign_job_conflict(self) -> None:
        """Одиночный скрап не создаёт второй активный джоб кампании."""
        store = InMemoryStore()
        store.add_target(1, "https://www.tiktok.com/@u/video/1", campaign_id=7)
        store.add_target(2, "https://www.tiktok.com/@u/video/2", campaign_id=7)
        queue = make_queue(store)
        first = await queue.enqueue(7)

        with pytest.raises(JobAlreadyActiveError) as exc_info:
            await queue.enqueue_target(2)

        assert exc_info.value.job_id == first.job_id
        assert len(store.jobs) == 1

    async def test_allowed_after_campaign_job_finished(self) -> None:
        store = InMemoryStore()
        store.add_target(2, "https://www.tiktok.com/@u/video/2", campaign_id=7)
        queue = make_queue(store)
        first = await queue.enqueue(7)
        await store.update_job_status(first.job_id, "done")

        result = await queue.enqueue_target(2)

        assert result.job_id != first.job_id

    async def test_target_without_campaign(self) -> None:
        store = InMemoryStore()
        target = store.add_target(5, "https://www.tiktok.com/@u/video/1")
        store.targets[5] = target.model_copy(update={"campaign_id": None})

        with pytest.raises(EnqueueError):
            await make_queue(store).enqueue_target(5)


class TestStatus:
    """Тесты статуса и операторских операций."""

    async def test_job_status_counts(self) -> None:
        store = InMemoryStore()
        for i in range(1, 5):
            store.add_target(i, f"https://www.tiktok.com/@u/video/{i}")
        queue = make_queue(store)
        result = await queue.enqueue(1)
        store.set_task(1, status="success")
        store.set_task(2, status="failed")
        store.set_task(3, status="pending_retry")

        stats = await queue.get_job_status(result.job_id)

        assert stats.total_tasks == 4
        assert stats.completed_tasks == 2
        assert stats.successful_tasks == 1
        assert stats.failed_tasks == 1

    async def test_unknown_job(self) -> None:
        assert await make_queue(InMemoryStore()).get_job_status(99) is None

    async def test_reset_circuit_breakers(self) -> None:
        queue = make_queue(InMemoryStore())
        breaker = queue.orchestrator.breaker("primary")
        for _ in range(5):
            breaker.record_failure()
        assert queue.get_providers_stats()[0]["circuit_breaker"]["state"] == "OPEN"

        queue.reset_circuit_breakers()

        assert queue.get_providers_stats()[0]["circuit_breaker"]["state"] == "CLOSED"
