"""Хранилище джобов, задач и ссылок на посты (Supabase)."""
import asyncio
import re
from collections import Counter
from datetime import UTC, datetime
from typing import Any, Protocol

from loguru import logger
from supabase import Client

from src.models.metrics import EngagementSnapshot, ScrapedMetrics, ScrapeTarget
from src.models.task import (
    JOB_TERMINAL,
    TASK_TERMINAL,
    Job,
    JobStats,
    JobStatus,
    ScrapeTask,
    TaskError,
)

ACTIVE_JOB_STATUSES = ["queued", "running"]
# PostgREST max-rows по умолчанию
TRACKABLE_PAGE_SIZE = 1000


async def run_in_thread(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Выполнить синхронный вызов Supabase в отдельном потоке."""
    return await asyncio.to_thread(func, *args, **kwargs)


def sanitize_error(error: str) -> str:
    """Убрать потенциальные креденшалы из сообщения об ошибке."""
    error = re.sub(r"://[^@\s/]+@", "://***:***@", error)
    return re.sub(r"(token|api_key|apikey|key)=[^&\s]+", r"\1=***", error, flags=re.IGNORECASE)


def _now() -> str:
    return datetime.now(UTC).isoformat()


class ScrapeStore(Protocol):
    """Узкий интерфейс хранилища, через который работают воркер и очередь."""

    async def create_job_with_tasks(
        self, campaign_id: int, targets: list[ScrapeTarget]
    ) -> tuple[Job, list[ScrapeTask]]: ...

    async def get_queued_tasks(self, limit: int) -> list[ScrapeTask]: ...

    async def update_task(self, task_id: int, fields: dict[str, Any]) -> None: ...

    async def get_job(self, job_id: int) -> Job | None: ...

    async def get_active_jobs(self) -> list[Job]: ...

    async def get_active_job_for_campaign(self, campaign_id: int) -> Job | None: ...

    async def get_job_stats(self, job_id: int) -> JobStats | None: ...

    async def update_job_status(
        self, job_id: int, status: JobStatus, completed_at: datetime | None = None
    ) -> None: ...

    async def get_tasks_by_job(self, job_id: int) -> list[ScrapeTask]: ...

    async def get_targets_by_campaign(self, campaign_id: int) -> list[ScrapeTarget]: ...

    async def get_target(self, target_id: int) -> ScrapeTarget | None: ...

    async def update_target_metrics(self, target_id: int, metrics: ScrapedMetrics) -> None: ...

    async def update_target_status(
        self, target_id: int, status: str, error_message: str | None = None
    ) -> None: ...

    async def append_engagement_snapshot(self, target_id: int, metrics: ScrapedMetrics) -> None: ...

    async def requeue_pending_retries(self) -> int: ...

    async def get_trackable_campaign_ids(self) -> list[int]: ...


def build_job_stats(job: Job, task_statuses: list[str]) -> JobStats:
    """Посчитать агрегат джоба по статусам его задач."""
    counts = Counter(task_statuses)
    return JobStats(
        job_id=job.id,
        status=job.status,
        total_tasks=len(task_statuses),
        completed_tasks=sum(counts[s] for s in TASK_TERMINAL),
        successful_tasks=counts["success"],
        failed_tasks=counts["failed"],
    )


def serialize_task_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Привести поля задачи к виду для БД (last_error → JSON-строка)."""
    data = dict(fields)
    error = data.get("last_error")
    if isinstance(error, TaskError):
        data["last_error"] = error.model_dump_json()
    data["updated_at"] = _now()
    return data


class SupabaseStore:
    """Реализация ScrapeStore поверх таблиц scrape_jobs / scrape_tasks / social_links."""

    def __init__(self, db: Client) -> None:
        self.db = db

    async def create_job_with_tasks(
        self, campaign_id: int, targets: list[ScrapeTarget]
    ) -> tuple[Job, list[ScrapeTask]]:
        """Создать джоб и по задаче на каждую цель. При ошибке вставки задач джоб удаляется."""
        job_result = await run_in_thread(
            self.db.table("scrape_jobs")
            .insert({"campaign_id": campaign_id, "status": "queued"})
            .execute
        )
        job = Job.model_validate(job_result.data[0])

        rows = [
            {
                "job_id": job.id,
                "social_link_id": t.id,
                "url": t.url,
                "platform": t.platform.lower(),
                "status": "queued",
                "attempts": 0,
            }
            for t in targets
        ]
        try:
            tasks_result = await run_in_thread(self.db.table("scrape_tasks").insert(rows).execute)
        except Exception:
            await run_in_thread(self.db.table("scrape_jobs").delete().eq("id", job.id).execute)
            raise

        tasks = [ScrapeTask.from_row(r) for r in tasks_result.data]
        return job, tasks

    async def get_queued_tasks(self, limit: int) -> list[ScrapeTask]:
        """queued задачи в порядке id (FIFO)."""
        result = await run_in_thread(
            self.db.table("scrape_tasks")
            .select("*")
            .eq("status", "queued")
            .order("id", desc=False)
            .limit(limit)
            .execute
        )
        return [ScrapeTask.from_row(r) for r in result.data]

    async def update_task(self, task_id: int, fields: dict[str, Any]) -> None:
        await run_in_thread(
            self.db.table("scrape_tasks")
            .update(serialize_task_fields(fields))
            .eq("id", task_id)
            .execute
        )

    async def get_job(self, job_id: int) -> Job | None:
        result = await run_in_thread(
            self.db.table("scrape_jobs").select("*").eq("id", job_id).execute
        )
        return Job.model_validate(result.data[0]) if result.data else None

    async def get_active_jobs(self) -> list[Job]:
        result = await run_in_thread(
            self.db.table("scrape_jobs")
            .select("*")
            .in_("status", ACTIVE_JOB_STATUSES)
            .order("id", desc=False)
            .execute
        )
        return [Job.model_validate(r) for r in result.data]

    async def get_active_job_for_campaign(self, campaign_id: int) -> Job | None:
        result = await run_in_thread(
            self.db.table("scrape_jobs")
            .select("*")
            .eq("campaign_id", campaign_id)
            .in_("status", ACTIVE_JOB_STATUSES)
            .limit(1)
            .execute
        )
        return Job.model_validate(result.data[0]) if result.data else None

    async def get_job_stats(self, job_id: int) -> JobStats | None:
        job = await self.get_job(job_id)
        if job is None:
            return None
        result = await run_in_thread(
            self.db.table("scrape_tasks").select("status").eq("job_id", job_id).execute
        )
        return build_job_stats(job, [r["status"] for r in result.data])

    async def update_job_status(
        self, job_id: int, status: JobStatus, completed_at: datetime | None = None
    ) -> None:
        data: dict[str, Any] = {"status": status}
        if completed_at is not None:
            data["completed_at"] = completed_at.isoformat()
        query = self.db.table("scrape_jobs").update(data).eq("id", job_id)
        if status not in JOB_TERMINAL:
            # Терминальный джоб не переоткрывается
            query = query.in_("status", ACTIVE_JOB_STATUSES)
        await run_in_thread(query.execute)

    async def get_tasks_by_job(self, job_id: int) -> list[ScrapeTask]:
        result = await run_in_thread(
            self.db.table("scrape_tasks")
            .select("*")
            .eq("job_id", job_id)
            .order("id", desc=False)
            .execute
        )
        return [ScrapeTask.from_row(r) for r in result.data]

    async def get_targets_by_campaign(self, campaign_id: int) -> list[ScrapeTarget]:
        result = await run_in_thread(
            self.db.table("social_links")
            .select("*")
            .eq("campaign_id", campaign_id)
            .order("id", desc=False)
            .execute
        )
        return [ScrapeTarget.model_validate(r) for r in result.data]

    async def get_target(self, target_id: int) -> ScrapeTarget | None:
        result = await run_in_thread(
            self.db.table("social_links").select("*").eq("id", target_id).execute
        )
        return ScrapeTarget.model_validate(result.data[0]) if result.data else None

    async def update_target_metrics(self, target_id: int, metrics: ScrapedMetrics) -> None:
        """Записать живые метрики поста после успешного скрапа."""
        data: dict[str, Any] = {
            "views": metrics.views,
            "likes": metrics.likes,
            "comments": metrics.comments,
            "shares": metrics.shares,
            "engagement_rate": metrics.engagement_rate,
            "status": "scraped",
            "last_scraped_at": _now(),
            "error_message": None,
        }
        if metrics.post_id:
            data["post_id"] = metrics.post_id
        await run_in_thread(
            self.db.table("social_links").update(data).eq("id", target_id).execute
        )

    async def update_target_status(
        self, target_id: int, status: str, error_message: str | None = None
    ) -> None:
        await run_in_thread(
            self.db.table("social_links")
            .update({"status": status, "error_message": error_message})
            .eq("id", target_id)
            .execute
        )

    async def append_engagement_snapshot(self, target_id: int, metrics: ScrapedMetrics) -> None:
        snapshot = EngagementSnapshot.from_metrics(target_id, metrics)
        await run_in_thread(
            self.db.table("engagement_history")
            .insert(snapshot.model_dump(exclude={"recorded_at"}))
            .execute
        )

    async def requeue_pending_retries(self) -> int:
        """
        Вернуть pending_retry задачи в queued.
        Таймеры ретраев живут в памяти процесса — после рестарта их некому дёрнуть.
        """
        result = await run_in_thread(
            self.db.table("scrape_tasks")
            .update({"status": "queued", "updated_at": _now()})
            .eq("status", "pending_retry")
            .execute
        )
        count = len(result.data or [])
        if count:
            logger.warning(f"Re-queued {count} orphaned pending_retry tasks")
        return count

    async def get_trackable_campaign_ids(self) -> list[int]:
        """
        Кампании, у которых есть реальные (не placeholder) посты без ошибки.
        PostgREST режет ответ по max-rows, поэтому читаем страницами.
        """
        campaign_ids: set[int] = set()
        offset = 0
        while True:
            result = await run_in_thread(
                self.db.table("social_links")
                .select("campaign_id")
                .neq("status", "error")
                .not_.like("url", "placeholder://%")
                .not_.is_("campaign_id", "null")
                .order("id")
                .range(offset, offset + TRACKABLE_PAGE_SIZE - 1)
                .execute
            )
            rows = result.data or []
            campaign_ids.update(r["campaign_id"] for r in rows)
            if len(rows) < TRACKABLE_PAGE_SIZE:
                break
            offset += TRACKABLE_PAGE_SIZE
        return sorted(campaign_ids)
