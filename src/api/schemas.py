"""Pydantic-схемы для API скрапера."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from src.models.task import JobStatus, ScrapeTask, TaskError, TaskStatus


class EnqueueResponse(BaseModel):
    """Ответ на POST /api/campaigns/{id}/scrape и /api/social-links/{id}/scrape."""

    job_id: int
    task_count: int


class JobStatusResponse(BaseModel):
    """Агрегированный статус джоба."""

    job_id: int
    status: JobStatus
    total_tasks: int
    completed_tasks: int
    successful_tasks: int
    failed_tasks: int


class TaskStatusResponse(BaseModel):
    """Прогресс по одному посту."""

    id: int
    social_link_id: int
    url: str
    platform: str
    status: TaskStatus
    attempts: int
    last_error: TaskError | None = None
    views: int | None = None
    likes: int | None = None
    comments: int | None = None
    shares: int | None = None
    engagement_rate: float | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_task(cls, task: ScrapeTask) -> "TaskStatusResponse":
        return cls(
            id=task.id,
            social_link_id=task.social_link_id,
            url=task.url,
            platform=task.platform,
            status=task.status,
            attempts=task.attempts,
            last_error=task.last_error,
            views=task.result_views,
            likes=task.result_likes,
            comments=task.result_comments,
            shares=task.result_shares,
            engagement_rate=task.result_engagement_rate,
            updated_at=task.updated_at,
        )


class TaskListResponse(BaseModel):
    """Задачи джоба."""

    job_id: int
    tasks: list[TaskStatusResponse]


class ProvidersResponse(BaseModel):
    """Статистика провайдеров и состояние circuit breaker-ов."""

    providers: list[dict[str, Any]]


class ResetResponse(BaseModel):
    status: str  # "reset"


class HealthResponse(BaseModel):
    """Ответ healthcheck."""

    status: str
    worker_running: bool
    providers_total: int
    providers_healthy: int
    jobs_active: int
