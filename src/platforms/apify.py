"""Метрики постов через Apify actors (резервный провайдер)."""
from typing import Any, ClassVar

import httpx
from loguru import logger

from src.models.metrics import ScrapedMetrics
from src.platforms.base import HttpProvider
from src.platforms.exceptions import PostUnavailableError, ScraperError, UnsupportedPlatformError
from src.platforms.metrics import calculate_engagement_rate, first_present, to_int

BASE_URL = "https://api.apify.com/v2"

_ACTORS: dict[str, str] = {
    "tiktok": "clockworks~tiktok-video-scraper",
    "instagram": "apify~instagram-scraper",
}


def _actor_input(platform: str, url: str) -> dict[str, Any]:
    if platform == "tiktok":
        return {"postURLs": [url], "shouldDownloadVideos": False, "shouldDownloadCovers": False}
    return {"directUrls": [url], "resultsLimit": 1, "resultsType": "posts", "addParentData": False}


def _parse_item(platform: str, item: dict[str, Any]) -> ScrapedMetrics:
    """Маппинг элемента датасета Apify → ScrapedMetrics."""
    if platform == "tiktok":
        views = to_int(first_present(item, "playCount", "plays"))
        likes = to_int(first_present(item, "diggCount", "hearts"))
        comments = to_int(item.get("commentCount"))
        shares = to_int(item.get("shareCount"))
        post_id = item.get("id")
    else:
        views = to_int(first_present(item, "videoViewCount", "videoPlayCount"))
        likes = to_int(first_present(item, "likesCount", "likes"))
        comments = to_int(first_present(item, "commentsCount", "comments"))
        shares = 0
        post_id = first_present(item, "shortCode", "id")
    return ScrapedMetrics(
        views=views, likes=likes, comments=comments, shares=shares,
        engagement_rate=calculate_engagement_rate(views, likes, comments, shares),
        post_id=str(post_id) if post_id else None,
    )


class ApifyProvider(HttpProvider):
    """Провайдер Apify (run-sync-get-dataset-items): tiktok, instagram."""

    name: ClassVar[str] = "apify"
    platforms: ClassVar[frozenset[str]] = frozenset(_ACTORS)

    def __init__(
        self,
        api_token: str,
        client: httpx.AsyncClient,
        timeout: float = 30.0,
        base_url: str = BASE_URL,
    ) -> None:
        super().__init__(client, timeout)
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")

    async def _fetch(self, url: str, platform: str) -> ScrapedMetrics:
        actor = _ACTORS.get(platform)
        if actor is None:
            raise UnsupportedPlatformError(platform, self.name)

        logger.debug(f"[apify] {platform} via {actor}: {url}")
        resp = await self.client.post(
            f"{self.base_url}/acts/{actor}/run-sync-get-dataset-items",
            params={"token": self.api_token},
            json=_actor_input(platform, url),
            timeout=self.timeout,
        )
        self.raise_for_status(resp)

        items = resp.json()
        if not isinstance(items, list) or not items:
            raise PostUnavailableError(f"no data returned from {platform} scraper")

        item = items[0]
        if not isinstance(item, dict):
            raise ScraperError(f"apify returned malformed item: {type(item).__name__}")
        if item.get("error"):
            # Ошибка актора приходит текстом в самом элементе датасета
            raise ScraperError(str(item["error"]))
        return _parse_item(platform, item)
