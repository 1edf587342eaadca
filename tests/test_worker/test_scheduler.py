"""Тесты APScheduler-задач."""
from unittest.mock import AsyncMock, MagicMock

from src.worker.queue import JobAlreadyActiveError, NothingToScrapeError


class TestTrackLiveCampaigns:
    """Тесты track_live_campaigns."""

    async def test_enqueues_each_trackable_campaign(self) -> None:
        from src.worker.scheduler import track_live_campaigns

        store = MagicMock()
        store.get_trackable_campaign_ids = AsyncMock(return_value=[1, 2, 3])
        queue = MagicMock()
        queue.enqueue = AsyncMock(side_effect=[
            MagicMock(job_id=10, task_count=2),
            JobAlreadyActiveError(2, 7),
            NothingToScrapeError("all placeholders"),
        ])

        await track_live_campaigns(queue, store)

        assert [c.args[0] for c in queue.enqueue.call_args_list] == [1, 2, 3]

    async def test_no_campaigns(self) -> None:
        from src.worker.scheduler import track_live_campaigns

        store = MagicMock()
        store.get_trackable_campaign_ids = AsyncMock(return_value=[])
        queue = MagicMock()
        queue.enqueue = AsyncMock()

        await track_live_campaigns(queue, store)

        queue.enqueue.assert_not_called()

    async def test_store_error_on_one_campaign_does_not_stop_others(self) -> None:
        from src.worker.scheduler import track_live_campaigns

        store = MagicMock()
        store.get_trackable_campaign_ids = AsyncMock(return_value=[1, 2])
        queue = MagicMock()
        queue.enqueue = AsyncMock(side_effect=[ConnectionError("db down"), MagicMock()])

        await track_live_campaigns(queue, store)

        assert queue.enqueue.call_count == 2


class TestLogProviderHealth:
    """Тесты log_provider_health."""

    async def test_reads_provider_stats(self) -> None:
        from src.worker.scheduler import log_provider_health

        queue = MagicMock()
        queue.get_providers_stats.return_value = [{
            "name": "apify",
            "healthy": False,
            "stats": {
                "total_requests": 10, "successful_requests": 4,
                "failed_requests": 6, "average_response_time_ms": 812.5,
            },
            "circuit_breaker": {"state": "OPEN"},
        }]

        await log_provider_health(queue)

        queue.get_providers_stats.assert_called_once()


class TestCreateScheduler:
    """Тесты create_scheduler."""

    def test_registers_jobs(self) -> None:
        from src.worker.scheduler import create_scheduler

        settings = MagicMock()
        settings.live_tracking_enabled = True
        settings.live_tracking_interval_minutes = 10

        scheduler = create_scheduler(MagicMock(), MagicMock(), settings)

        job_ids = {job.id for job in scheduler.get_jobs()}
        assert job_ids == {"track_live_campaigns", "log_provider_health"}

    def test_live_tracking_disabled(self) -> None:
        from src.worker.scheduler import create_scheduler

        settings = MagicMock()
        settings.live_tracking_enabled = False

        scheduler = create_scheduler(MagicMock(), MagicMock(), settings)

        assert {job.id for job in scheduler.get_jobs()} == {"log_provider_health"}
