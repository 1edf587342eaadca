"""Классификация ошибок провайдеров и политика ретраев с экспоненциальным backoff."""
from dataclasses import dataclass

from loguru import logger

from src.models.task import ErrorKind

# Пост удалён или приватный: другой провайдер не поможет
PERMANENT_TARGET_PATTERNS: tuple[str, ...] = (
    "private or deleted",
    "post may be private",
    "not found",
    "invalid url",
    "authentication required",
    "requires authentication",
    "unsupported platform",
    "not supported by",
)

# Провайдер непригоден (нет ключа, кончились кредиты): ретрай того же бесполезен
PERMANENT_PROVIDER_PATTERNS: tuple[str, ...] = (
    "not configured",
    "credit limit",
    "api subscription",
    "paid api access",
    "insufficient balance",
)

RETRIABLE_PATTERNS: tuple[str, ...] = (
    "timeout",
    "network",
    "connection",
    "econnreset",
    "etimedout",
    "temporary",
    "429",
    "500",
    "502",
    "503",
)

CIRCUIT_OPEN_MARKER = "circuit breaker open"


def classify_error(message: str | None) -> ErrorKind:
    """
    Единственная точка классификации ошибок по тексту.
    Порядок: постоянные ошибки цели → постоянные ошибки провайдера →
    транзиентные. Нераспознанное считается retriable (в пределах лимита попыток).
    """
    if not message:
        return ErrorKind.RETRIABLE
    text = message.lower()
    if CIRCUIT_OPEN_MARKER in text:
        return ErrorKind.CIRCUIT_OPEN
    if any(p in text for p in PERMANENT_TARGET_PATTERNS):
        return ErrorKind.PERMANENT_TARGET
    if any(p in text for p in PERMANENT_PROVIDER_PATTERNS):
        return ErrorKind.PERMANENT_PROVIDER
    if any(p in text for p in RETRIABLE_PATTERNS):
        return ErrorKind.RETRIABLE
    logger.debug(f"[retry] Unrecognized error treated as retriable: {message[:200]}")
    return ErrorKind.RETRIABLE


@dataclass(frozen=True)
class RetryPolicy:
    """
    Лимит попыток и backoff: delay(k) = base_delay_ms * 2**k (k с нуля),
    опционально ограниченный max_delay_ms.
    """

    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int | None = None

    def delay_ms(self, attempt: int) -> int:
        delay = self.base_delay_ms * (2 ** max(0, attempt))
        if self.max_delay_ms is not None:
            delay = min(delay, self.max_delay_ms)
        return delay

    def delay_seconds(self, attempt: int) -> float:
        return self.delay_ms(attempt) / 1000

    def should_retry(self, kind: ErrorKind, attempts_done: int) -> bool:
        """Ретраить, если ошибка не постоянная и попытки не исчерпаны."""
        if kind.is_permanent:
            return False
        return attempts_done < self.max_attempts
