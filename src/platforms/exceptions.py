"""Кастомные исключения провайдеров метрик.

Тексты сообщений подобраны под словари classify_error: по ним воркер и
оркестратор решают, ретраить ли задачу и переключаться ли на другой провайдер.
"""


class ScraperError(Exception):
    """Общая ошибка скрапинга."""


class PostUnavailableError(ScraperError):
    """Пост удалён, приватный или не найден — ретрай и fallback бесполезны."""

    def __init__(self, detail: str = "") -> None:
        message = "Post is private or deleted"
        super().__init__(f"{message}: {detail}" if detail else message)


class UnsupportedPlatformError(ScraperError):
    """Платформа не поддерживается ни одним провайдером."""

    def __init__(self, platform: str, provider: str | None = None) -> None:
        self.platform = platform
        where = f" by {provider}" if provider else ""
        super().__init__(f"Unsupported platform '{platform}'{where}")


class ProviderConfigError(ScraperError):
    """Провайдер не настроен или отверг API-ключ — нужен fallback, не ретрай."""

    def __init__(self, provider: str, detail: str = "") -> None:
        suffix = f" ({detail})" if detail else ""
        super().__init__(f"{provider} is not configured or key rejected{suffix}")


class InsufficientCreditsError(ScraperError):
    """Кончились кредиты у провайдера — ретрай бесполезен."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"{provider} credit limit reached")


class ProviderHTTPError(ScraperError):
    """Ошибка HTTP от провайдера (4xx/5xx)."""

    def __init__(self, provider: str, status_code: int, detail: str = "") -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider} API error (HTTP {status_code}): {detail[:200]}")


class CircuitOpenError(ScraperError):
    """Circuit breaker провайдера открыт — вызов отклонён локально."""

    def __init__(self, provider: str, retry_at: float | None = None) -> None:
        self.provider = provider
        self.retry_at = retry_at
        super().__init__(f"Circuit breaker OPEN for {provider}")
