"""Конфигурация сервиса скрапинга метрик из переменных окружения."""
from dataclasses import dataclass, field
from functools import cached_property

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_comma(value: str) -> list[str]:
    """Парсит строку 'a,b,c' → ['a', 'b', 'c']."""
    if not value or not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class OrchestratorConfig:
    """Параметры оркестратора провайдеров (fallback, circuit breaker, ретраи)."""

    provider_priority_order: list[str] = field(default_factory=list)
    failure_threshold: int = 5
    reset_timeout_ms: int = 60_000
    inline_attempts: int = 1
    base_delay_ms: int = 1000
    max_delay_ms: int | None = None


@dataclass(frozen=True)
class WorkerConfig:
    """Параметры воркера очереди задач."""

    concurrency_limit: int = 5
    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int | None = None
    poll_interval: float = 2.0
    batch_size: int = 10


class Settings(BaseSettings):
    """Настройки сервиса — парсятся из env или .env файла."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Supabase
    supabase_url: str
    supabase_service_key: SecretStr

    # API
    scraper_api_key: SecretStr
    scraper_port: int = Field(
        default=8001,
        validation_alias=AliasChoices("SCRAPER_PORT", "PORT"),
    )
    log_level: str = "INFO"

    # Воркер
    worker_poll_interval: float = 2.0
    worker_batch_size: int = 10

    # Скрапинг
    scraping_concurrency: int = 5
    scraping_max_retries: int = 3
    scraping_retry_delay_ms: int = 1000
    scraping_max_retry_delay_ms: int = 0  # 0 = без ограничения
    scraping_inline_retries: int = 1      # попытки внутри одного вызова провайдера
    scraping_timeout_ms: int = 30_000

    # Circuit breaker
    circuit_failure_threshold: int = 5
    circuit_reset_timeout_ms: int = 60_000

    # Провайдеры: порядок приоритета через запятую
    scraping_provider_order: str = "scrapecreators,apify"
    scrapecreators_api_key: SecretStr | None = None
    apify_api_token: SecretStr | None = None

    # Live tracking: периодический re-scrape активных кампаний
    live_tracking_enabled: bool = True
    live_tracking_interval_minutes: int = 10

    @cached_property
    def provider_order_list(self) -> list[str]:
        """Парсит SCRAPING_PROVIDER_ORDER='a,b' → ['a', 'b'] (в нижнем регистре)."""
        return [name.lower() for name in _split_comma(self.scraping_provider_order)]

    def _max_delay(self) -> int | None:
        return self.scraping_max_retry_delay_ms or None

    def orchestrator_config(self) -> OrchestratorConfig:
        """Собрать явную конфигурацию оркестратора."""
        return OrchestratorConfig(
            provider_priority_order=self.provider_order_list,
            failure_threshold=self.circuit_failure_threshold,
            reset_timeout_ms=self.circuit_reset_timeout_ms,
            inline_attempts=max(1, self.scraping_inline_retries),
            base_delay_ms=self.scraping_retry_delay_ms,
            max_delay_ms=self._max_delay(),
        )

    def worker_config(self) -> WorkerConfig:
        """Собрать явную конфигурацию воркера."""
        return WorkerConfig(
            concurrency_limit=self.scraping_concurrency,
            max_attempts=self.scraping_max_retries,
            base_delay_ms=self.scraping_retry_delay_ms,
            max_delay_ms=self._max_delay(),
            poll_interval=self.worker_poll_interval,
            batch_size=self.worker_batch_size,
        )


def load_settings() -> Settings:
    """Создать Settings из переменных окружения (.env файла).

    Фабричная функция — обходит ограничение pyright, который не знает,
    что pydantic-settings заполняет обязательные поля из окружения.
    """
    return Settings.model_validate({})
