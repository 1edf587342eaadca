"""
Оркестратор провайдеров метрик.

Перебирает провайдеры платформы по приоритету: каждый за своим circuit
breaker, с ретраями по RetryPolicy. Успех или постоянная ошибка цели —
сразу результат; транзиентная ошибка или непригодный провайдер — следующий
провайдер. Наружу всегда отдаётся ScrapeResult, исключения не пробрасываются.
"""
import asyncio
import threading
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import asdict, dataclass, field
from typing import Any

from loguru import logger

from src.config import OrchestratorConfig
from src.models.metrics import ScrapeResult
from src.models.task import ErrorKind
from src.platforms.base import ProviderAdapter
from src.platforms.exceptions import CircuitOpenError
from src.scraping.circuit_breaker import CircuitBreaker
from src.scraping.retry import RetryPolicy, classify_error


@dataclass
class ProviderStats:
    """Счётчики провайдера — только для мониторинга, на решения не влияют."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time_ms: float = 0.0
    consecutive_failures: int = 0
    last_failure_time: float | None = None

    def record(self, success: bool, response_time_ms: float, now: float) -> None:
        self.total_requests += 1
        if success:
            self.successful_requests += 1
            self.consecutive_failures = 0
        else:
            self.failed_requests += 1
            self.consecutive_failures += 1
            self.last_failure_time = now
        # Скользящее среднее по всем ответам
        n = self.successful_requests + self.failed_requests
        self.average_response_time_ms += (response_time_ms - self.average_response_time_ms) / n


@dataclass
class ProviderEntry:
    name: str
    priority: int
    provider: ProviderAdapter
    breaker: CircuitBreaker
    stats: ProviderStats = field(default_factory=ProviderStats)


class ScrapeOrchestrator:
    """Единая точка получения метрик поста с fallback между провайдерами."""

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config or OrchestratorConfig()
        self.retry_policy = RetryPolicy(
            max_attempts=self.config.inline_attempts,
            base_delay_ms=self.config.base_delay_ms,
            max_delay_ms=self.config.max_delay_ms,
        )
        self._clock = clock
        self._sleep = sleep
        self._entries: list[ProviderEntry] = []
        self._stats_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: OrchestratorConfig,
        providers: Iterable[ProviderAdapter],
        **kwargs: Any,
    ) -> "ScrapeOrchestrator":
        """
        Зарегистрировать провайдеры в порядке config.provider_priority_order.
        Не упомянутые в списке идут следом в порядке передачи.
        """
        orchestrator = cls(config, **kwargs)
        order = config.provider_priority_order
        for idx, provider in enumerate(providers):
            if provider.name in order:
                priority = order.index(provider.name) + 1
            else:
                priority = len(order) + idx + 1
            orchestrator.register(provider, priority)

        if orchestrator.provider_names:
            names = orchestrator.provider_names
            logger.info(f"[orchestrator] Primary provider: {names[0]}"
                        + (f", fallback: {', '.join(names[1:])}" if len(names) > 1 else ""))
        return orchestrator

    def register(self, provider: ProviderAdapter, priority: int) -> None:
        """Добавить провайдер (меньший priority пробуется раньше)."""
        if any(e.name == provider.name for e in self._entries):
            raise ValueError(f"Provider {provider.name} already registered")
        breaker = CircuitBreaker(
            provider.name,
            failure_threshold=self.config.failure_threshold,
            reset_timeout=self.config.reset_timeout_ms / 1000,
            clock=self._clock,
        )
        self._entries.append(ProviderEntry(provider.name, priority, provider, breaker))
        self._entries.sort(key=lambda e: e.priority)

    @property
    def provider_names(self) -> list[str]:
        return [e.name for e in self._entries]

    def breaker(self, name: str) -> CircuitBreaker:
        for entry in self._entries:
            if entry.name == name:
                return entry.breaker
        raise KeyError(name)

    async def scrape(self, url: str, platform: str) -> ScrapeResult:
        """Получить метрики поста: один успешный или окончательно проваленный результат."""
        platform = platform.lower()
        candidates = [e for e in self._entries if platform in e.provider.platforms]
        if not candidates:
            return ScrapeResult(
                success=False,
                error=f"Unsupported platform '{platform}': no provider configured",
                error_kind=ErrorKind.PERMANENT_TARGET.value,
            )

        attempted: list[str] = []
        skipped: list[str] = []
        provider_errors: list[tuple[str, str]] = []
        kinds: list[ErrorKind] = []
        last_error: str | None = None

        for entry in candidates:
            result = await self._call_with_retry(entry, url, platform)
            kind = ErrorKind(result.error_kind) if result.error_kind else None

            if kind == ErrorKind.CIRCUIT_OPEN:
                logger.info(f"[orchestrator] Skipping {entry.name}: circuit breaker OPEN")
                skipped.append(entry.name)
                kinds.append(kind)
                continue

            attempted.append(entry.name)
            if result.success:
                logger.debug(f"[orchestrator] {platform} via {entry.name} "
                             f"in {result.response_time_ms or 0:.0f}ms")
                return result.model_copy(update={"provider_errors": provider_errors})

            if kind == ErrorKind.PERMANENT_TARGET:
                logger.info(f"[orchestrator] Permanent failure from {entry.name}: {result.error}")
                return result.model_copy(update={"provider_errors": provider_errors})

            logger.warning(f"[orchestrator] Provider {entry.name} failed: {result.error}")
            provider_errors.append((entry.name, result.error or ""))
            kinds.append(kind or ErrorKind.RETRIABLE)
            last_error = result.error

        # Все провайдеры пропущены или провалились
        final_kind = (
            ErrorKind.PERMANENT_PROVIDER
            if kinds and all(k == ErrorKind.PERMANENT_PROVIDER for k in kinds)
            else ErrorKind.RETRIABLE
        )
        tried = ", ".join(attempted) or "none"
        skipped_part = f"; skipped: {', '.join(skipped)} (circuit open)" if skipped else ""
        return ScrapeResult(
            success=False,
            error=(f"All providers failed (tried: {tried}{skipped_part}). "
                   f"Last error: {last_error or 'circuit breaker open'}"),
            error_kind=final_kind.value,
            provider_errors=provider_errors,
        )

    async def _call_with_retry(self, entry: ProviderEntry, url: str, platform: str) -> ScrapeResult:
        """Вызвать провайдер до retry_policy.max_attempts раз с backoff между попытками."""
        result: ScrapeResult | None = None
        attempts = self.retry_policy.max_attempts

        for attempt in range(attempts):
            if not entry.breaker.allow_request():
                if result is not None:
                    return result
                return ScrapeResult(
                    success=False,
                    error=str(CircuitOpenError(entry.name)),
                    error_kind=ErrorKind.CIRCUIT_OPEN.value,
                    provider=entry.name,
                )

            result = await self._call_once(entry, url, platform)
            if result.success or ErrorKind(result.error_kind).is_permanent:
                return result

            if attempt < attempts - 1:
                delay = self.retry_policy.delay_seconds(attempt)
                logger.info(f"[orchestrator] Retry {attempt + 1}/{attempts} for "
                            f"{entry.name} after {delay:.1f}s")
                await self._sleep(delay)

        assert result is not None
        return result

    async def _call_once(self, entry: ProviderEntry, url: str, platform: str) -> ScrapeResult:
        """Один вызов провайдера: замер времени, классификация, breaker и статистика."""
        started = self._clock()
        try:
            result = await entry.provider.scrape(url, platform)
            kind = None if result.success else classify_error(result.error)
        except Exception as e:
            # Баг адаптера или битый ответ: считаем транзиентным
            logger.exception(f"[orchestrator] Unexpected error from {entry.name}: {e}")
            result = ScrapeResult(success=False, error=f"Unexpected provider error: {e}")
            kind = ErrorKind.RETRIABLE

        if result.success and result.data is None:
            result = ScrapeResult(success=False, error=f"{entry.name} returned no data")
            kind = ErrorKind.RETRIABLE

        elapsed_ms = (self._clock() - started) * 1000
        with self._stats_lock:
            entry.stats.record(result.success, elapsed_ms, self._clock())

        # Ответ «пост удалён» означает, что провайдер исправен
        if result.success or kind == ErrorKind.PERMANENT_TARGET:
            entry.breaker.record_success()
        else:
            entry.breaker.record_failure()

        return result.model_copy(update={
            "provider": entry.name,
            "response_time_ms": round(elapsed_ms, 1),
            "error_kind": kind.value if kind else None,
        })

    def get_providers_stats(self) -> list[dict[str, Any]]:
        """Статистика и состояние breaker по каждому провайдеру."""
        with self._stats_lock:
            stats = []
            for entry in self._entries:
                snapshot = entry.breaker.snapshot()
                stats.append({
                    "name": entry.name,
                    "priority": entry.priority,
                    "platforms": sorted(entry.provider.platforms),
                    "stats": asdict(entry.stats),
                    "circuit_breaker": {
                        "state": snapshot.state.value,
                        "consecutive_failures": snapshot.consecutive_failures,
                        "last_failure_time": snapshot.last_failure_time,
                        "next_attempt_time": snapshot.next_attempt_time,
                    },
                    "healthy": not entry.breaker.is_open(),
                })
            return stats

    def reset_circuit_breakers(self) -> None:
        """Принудительно закрыть все breaker-ы (ручное восстановление)."""
        for entry in self._entries:
            entry.breaker.reset()
        logger.info("[orchestrator] All circuit breakers reset")
