"""Постановка джобов скрапинга и чтение их статуса — фасад для API и CLI."""
import asyncio
from dataclasses import dataclass
from typing import Any

from loguru import logger

from src.database import ScrapeStore
from src.models.metrics import ScrapeTarget
from src.models.task import JobStats, ScrapeTask
from src.platforms.urls import detect_platform
from src.scraping.orchestrator import ScrapeOrchestrator
from src.worker.loop import TaskQueueWorker


class EnqueueError(Exception):
    """Джоб не может быть создан."""


class JobAlreadyActiveError(EnqueueError):
    def __init__(self, campaign_id: int, job_id: int) -> None:
        self.campaign_id = campaign_id
        self.job_id = job_id
        super().__init__(f"Scrape job {job_id} is already running for campaign {campaign_id}")


class NothingToScrapeError(EnqueueError):
    """В кампании нет постов с реальными URL."""


class TargetNotFoundError(EnqueueError):
    def __init__(self, target_id: int) -> None:
        self.target_id = target_id
        super().__init__(f"Social link {target_id} not found")


@dataclass(frozen=True)
class EnqueueResult:
    job_id: int
    task_count: int


def prepare_targets(targets: list[ScrapeTarget]) -> list[ScrapeTarget]:
    """Пустая платформа определяется по хосту URL, остальные приводятся к нижнему регистру."""
    return [
        target.model_copy(update={
            "platform": (target.platform or "").strip().lower() or detect_platform(target.url) or "",
        })
        for target in targets
    ]


class ScrapeQueue:
    """Создаёт джобы (одна задача на пост) и отдаёт агрегированный статус."""

    def __init__(
        self,
        store: ScrapeStore,
        orchestrator: ScrapeOrchestrator,
        worker: TaskQueueWorker | None = None,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.worker = worker
        # Проверка «нет активного джоба» и вставка атомарны в пределах процесса
        self._lock = asyncio.Lock()

    async def enqueue(self, campaign_id: int) -> EnqueueResult:
        """Создать джоб re-scrape кампании. Плейсхолдеры пропускаются."""
        async with self._lock:
            await self._ensure_no_active_job(campaign_id)

            targets = await self.store.get_targets_by_campaign(campaign_id)
            if not targets:
                raise NothingToScrapeError(f"No posts to scrape for campaign {campaign_id}")

            scrapable = [t for t in targets if t.is_scrapable]
            if not scrapable:
                raise NothingToScrapeError(
                    f"Nothing to scrape for campaign {campaign_id}: all posts are placeholders"
                )
            skipped = len(targets) - len(scrapable)
            if skipped:
                logger.info(f"[queue] Campaign {campaign_id}: skipping {skipped} placeholder posts")

            scrapable = prepare_targets(scrapable)

            return await self._create(campaign_id, scrapable)

    async def enqueue_target(self, target_id: int) -> EnqueueResult:
        """Скрап одного поста: джоб из одной задачи, с той же проверкой активного джоба кампании."""
        target = await self.store.get_target(target_id)
        if target is None:
            raise TargetNotFoundError(target_id)
        if target.campaign_id is None:
            raise EnqueueError(f"Social link {target_id} is not attached to a campaign")
        if not target.is_scrapable:
            raise NothingToScrapeError(f"Social link {target_id} has no real URL yet")

        async with self._lock:
            await self._ensure_no_active_job(target.campaign_id)
            return await self._create(target.campaign_id, prepare_targets([target]))

    async def _ensure_no_active_job(self, campaign_id: int) -> None:
        active = await self.store.get_active_job_for_campaign(campaign_id)
        if active is not None:
            raise JobAlreadyActiveError(campaign_id, active.id)

    async def _create(self, campaign_id: int, targets: list[ScrapeTarget]) -> EnqueueResult:
        job, tasks = await self.store.create_job_with_tasks(campaign_id, targets)
        logger.info(f"[queue] Created job {job.id} for campaign {campaign_id} "
                    f"with {len(tasks)} tasks")
        if self.worker is not None:
            self.worker.wake()
        return EnqueueResult(job_id=job.id, task_count=len(tasks))

    async def get_job_status(self, job_id: int) -> JobStats | None:
        return await self.store.get_job_stats(job_id)

    async def get_task_statuses(self, job_id: int) -> list[ScrapeTask]:
        return await self.store.get_tasks_by_job(job_id)

    def reset_circuit_breakers(self) -> None:
        self.orchestrator.reset_circuit_breakers()

    def get_providers_stats(self) -> list[dict[str, Any]]:
        return self.orchestrator.get_providers_stats()
