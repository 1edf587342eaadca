"""Pydantic-модели метрик вовлечённости и целей скрапинга."""
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

TargetStatus = Literal["pending", "scraped", "error"]

PLACEHOLDER_PREFIX = "placeholder://"


class ScrapedMetrics(BaseModel):
    """Метрики одного поста, полученные от провайдера."""

    views: int = Field(default=0, ge=0)
    likes: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)
    shares: int = Field(default=0, ge=0)
    engagement_rate: float = 0.0  # (likes+comments+shares)/views*100
    post_id: str | None = None

    @property
    def total_engagement(self) -> int:
        return self.likes + self.comments + self.shares


class ScrapeResult(BaseModel):
    """Единый результат вызова провайдера или оркестратора."""

    success: bool
    data: ScrapedMetrics | None = None
    error: str | None = None
    error_kind: str | None = None  # ErrorKind.value, заполняет оркестратор
    provider: str = "none"
    response_time_ms: float | None = None
    # Ошибки провайдеров, пропущенных в процессе fallback: [(provider, error)]
    provider_errors: list[tuple[str, str]] = []


class ScrapeTarget(BaseModel):
    """Ссылка на пост из таблицы social_links."""

    id: int
    campaign_id: int | None = None
    url: str
    platform: str
    views: int | None = 0
    likes: int | None = 0
    comments: int | None = 0
    shares: int | None = 0
    engagement_rate: float | None = 0.0
    status: TargetStatus = "pending"
    error_message: str | None = None
    last_scraped_at: datetime | None = None

    @property
    def is_scrapable(self) -> bool:
        """Плейсхолдер (пост ещё не опубликован) скрапить нечего."""
        url = (self.url or "").strip()
        return bool(url) and not url.startswith(PLACEHOLDER_PREFIX)


class EngagementSnapshot(BaseModel):
    """Снимок метрик для истории (таблица engagement_history)."""

    social_link_id: int
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    total_engagement: int = 0
    recorded_at: datetime | None = None

    @classmethod
    def from_metrics(cls, social_link_id: int, metrics: ScrapedMetrics) -> "EngagementSnapshot":
        return cls(
            social_link_id=social_link_id,
            views=metrics.views,
            likes=metrics.likes,
            comments=metrics.comments,
            shares=metrics.shares,
            total_engagement=metrics.total_engagement,
        )
