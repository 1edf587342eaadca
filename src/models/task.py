"""Pydantic-модели задач и джобов скрапинга + их машины состояний."""
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel

from src.models.metrics import ScrapedMetrics

JobStatus = Literal["queued", "running", "done", "failed"]
TaskStatus = Literal["queued", "running", "pending_retry", "success", "failed"]

JOB_TERMINAL: frozenset[str] = frozenset({"done", "failed"})
TASK_TERMINAL: frozenset[str] = frozenset({"success", "failed"})

# Допустимые переходы статуса задачи
TASK_TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"running"}),
    "running": frozenset({"success", "pending_retry", "failed"}),
    "pending_retry": frozenset({"queued"}),
    "success": frozenset(),
    "failed": frozenset(),
}

JOB_TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"running", "done", "failed"}),
    "running": frozenset({"done", "failed"}),
    "done": frozenset(),
    "failed": frozenset(),
}


class ErrorKind(StrEnum):
    """Класс ошибки провайдера."""

    PERMANENT_TARGET = "permanent_target"      # пост удалён или приватный, не лечится
    PERMANENT_PROVIDER = "permanent_provider"  # провайдер непригоден (ключ, кредиты)
    RETRIABLE = "retriable"                    # сеть, таймаут, rate limit
    CIRCUIT_OPEN = "circuit_open"              # локальный отказ, сеть не трогали

    @property
    def is_permanent(self) -> bool:
        return self in (ErrorKind.PERMANENT_TARGET, ErrorKind.PERMANENT_PROVIDER)


def can_transition_task(current: str, new: str) -> bool:
    """Проверить, допустим ли переход статуса задачи."""
    return new in TASK_TRANSITIONS.get(current, frozenset())


def can_transition_job(current: str, new: str) -> bool:
    """Проверить, допустим ли переход статуса джоба."""
    return new in JOB_TRANSITIONS.get(current, frozenset())


class TaskError(BaseModel):
    """Классифицированная ошибка последней попытки (колонка last_error)."""

    provider: str
    message: str
    kind: ErrorKind = ErrorKind.RETRIABLE


class Job(BaseModel):
    """Джоб из таблицы scrape_jobs."""

    id: int
    campaign_id: int
    status: JobStatus = "queued"
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in JOB_TERMINAL


class ScrapeTask(BaseModel):
    """Задача из таблицы scrape_tasks."""

    id: int
    job_id: int
    social_link_id: int
    url: str
    platform: str
    status: TaskStatus = "queued"
    attempts: int = 0
    last_error: TaskError | None = None
    result_views: int | None = None
    result_likes: int | None = None
    result_comments: int | None = None
    result_shares: int | None = None
    result_engagement_rate: float | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TASK_TERMINAL

    @property
    def result_metrics(self) -> ScrapedMetrics | None:
        """Метрики успешной попытки (None, пока задача не в success)."""
        if self.result_views is None:
            return None
        return ScrapedMetrics(
            views=self.result_views,
            likes=self.result_likes or 0,
            comments=self.result_comments or 0,
            shares=self.result_shares or 0,
            engagement_rate=self.result_engagement_rate or 0.0,
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ScrapeTask":
        """Собрать задачу из строки БД (last_error хранится как JSON или текст)."""
        data = dict(row)
        raw_error = data.get("last_error")
        if isinstance(raw_error, str):
            try:
                data["last_error"] = TaskError.model_validate_json(raw_error)
            except ValueError:
                data["last_error"] = TaskError(provider="unknown", message=raw_error)
        return cls.model_validate(data)


class JobStats(BaseModel):
    """Агрегат по задачам джоба."""

    job_id: int
    status: JobStatus
    total_tasks: int
    completed_tasks: int
    successful_tasks: int
    failed_tasks: int


def compute_job_status(
    current: JobStatus,
    total_tasks: int,
    completed_tasks: int,
    failed_tasks: int,
) -> JobStatus:
    """
    Статус джоба как чистая функция счётчиков задач.
    Все задачи завершены: без падений → done, иначе → failed.
    Иначе статус не меняется; терминальный статус не переоткрывается.
    """
    if current in JOB_TERMINAL:
        return current
    if completed_tasks == total_tasks:
        return "failed" if failed_tasks > 0 else "done"
    return current
