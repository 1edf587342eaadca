"""Базовый интерфейс провайдера метрик для любой платформы."""
from typing import Any, ClassVar, Protocol

import httpx
from loguru import logger

from src.models.metrics import ScrapedMetrics, ScrapeResult
from src.platforms.exceptions import (
    InsufficientCreditsError,
    PostUnavailableError,
    ProviderConfigError,
    ProviderHTTPError,
    ScraperError,
    UnsupportedPlatformError,
)


class ProviderAdapter(Protocol):
    """Общий интерфейс провайдера: один вызов → метрики или ошибка с текстом."""

    name: str
    platforms: frozenset[str]

    async def scrape(self, url: str, platform: str) -> ScrapeResult:
        """Получить метрики поста. Классифицируемые ошибки — в result.error."""
        ...


class HttpProvider:
    """
    Базовый HTTP-провайдер поверх httpx.AsyncClient.
    Наследник реализует _fetch(url, platform) → ScrapedMetrics и бросает
    ScraperError; здесь всё приводится к ScrapeResult с текстом ошибки,
    понятным classify_error.
    """

    name: ClassVar[str] = "http"
    platforms: ClassVar[frozenset[str]] = frozenset()

    def __init__(self, client: httpx.AsyncClient, timeout: float = 30.0) -> None:
        self.client = client
        self.timeout = timeout

    async def scrape(self, url: str, platform: str) -> ScrapeResult:
        platform = platform.lower()
        try:
            if platform not in self.platforms:
                raise UnsupportedPlatformError(platform, self.name)
            data = await self._fetch(url, platform)
        except httpx.TimeoutException:
            return self._failure(f"Request timeout - {self.name} did not respond in time")
        except httpx.TransportError as e:
            return self._failure(f"Network connection error: {type(e).__name__}")
        except ScraperError as e:
            return self._failure(str(e))
        return ScrapeResult(success=True, data=data, provider=self.name)

    async def _fetch(self, url: str, platform: str) -> ScrapedMetrics:
        raise NotImplementedError

    def _failure(self, error: str) -> ScrapeResult:
        logger.debug(f"[{self.name}] {error}")
        return ScrapeResult(success=False, error=error, provider=self.name)

    def raise_for_status(self, resp: httpx.Response) -> None:
        """Проверить HTTP-статус до парсинга JSON."""
        if resp.status_code < 400:
            return
        detail = _response_detail(resp)
        if resp.status_code in (401, 403):
            raise ProviderConfigError(self.name, f"HTTP {resp.status_code}")
        if resp.status_code == 402:
            raise InsufficientCreditsError(self.name)
        if resp.status_code == 404:
            raise PostUnavailableError(f"{self.name} returned 404 not found")
        raise ProviderHTTPError(self.name, resp.status_code, detail)


def _response_detail(resp: httpx.Response) -> str:
    try:
        payload: Any = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(payload, dict):
        return str(payload.get("detail") or payload.get("message") or payload.get("error") or payload)
    return str(payload)[:200]
