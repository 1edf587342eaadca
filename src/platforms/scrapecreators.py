"""Метрики постов через ScrapeCreators API (основной провайдер)."""
from typing import Any, ClassVar

import httpx
from loguru import logger

from src.models.metrics import ScrapedMetrics
from src.platforms.base import HttpProvider
from src.platforms.exceptions import PostUnavailableError, UnsupportedPlatformError
from src.platforms.metrics import calculate_engagement_rate, first_present, to_int

BASE_URL = "https://api.scrapecreators.com/v1"

_ENDPOINTS: dict[str, str] = {
    "tiktok": "/tiktok/post",
    "instagram": "/instagram/post",
    "youtube": "/youtube/video",
    "twitter": "/twitter/tweet",
}


def _parse_tiktok(payload: dict[str, Any]) -> ScrapedMetrics:
    video = payload.get("video")
    if not isinstance(video, dict):
        raise PostUnavailableError("no video data returned from ScrapeCreators")
    views = to_int(video.get("playCount"))
    likes = to_int(video.get("diggCount"))
    comments = to_int(video.get("commentCount"))
    shares = to_int(video.get("shareCount"))
    return ScrapedMetrics(
        views=views, likes=likes, comments=comments, shares=shares,
        engagement_rate=calculate_engagement_rate(views, likes, comments, shares),
        post_id=str(video["id"]) if video.get("id") else None,
    )


def _parse_instagram(payload: dict[str, Any]) -> ScrapedMetrics:
    # Instagram не отдаёт репосты, shares всегда 0
    views = to_int(first_present(payload, "videoViewCount", "videoPlayCount"))
    likes = to_int(payload.get("likeCount"))
    comments = to_int(payload.get("commentCount"))
    return ScrapedMetrics(
        views=views, likes=likes, comments=comments, shares=0,
        engagement_rate=calculate_engagement_rate(views, likes, comments),
        post_id=str(payload["id"]) if payload.get("id") else None,
    )


def _parse_youtube(payload: dict[str, Any]) -> ScrapedMetrics:
    # Счётчики YouTube приходят строками
    views = to_int(payload.get("viewCount"))
    likes = to_int(payload.get("likeCount"))
    comments = to_int(payload.get("commentCount"))
    return ScrapedMetrics(
        views=views, likes=likes, comments=comments, shares=0,
        engagement_rate=calculate_engagement_rate(views, likes, comments),
        post_id=str(payload["id"]) if payload.get("id") else None,
    )


def _parse_twitter(payload: dict[str, Any]) -> ScrapedMetrics:
    views = to_int(payload.get("viewCount"))
    likes = to_int(payload.get("favoriteCount"))
    comments = to_int(payload.get("replyCount"))
    shares = to_int(payload.get("retweetCount"))
    post_id = first_present(payload, "id_str", "id")
    return ScrapedMetrics(
        views=views, likes=likes, comments=comments, shares=shares,
        engagement_rate=calculate_engagement_rate(views, likes, comments, shares),
        post_id=str(post_id) if post_id else None,
    )


_PARSERS = {
    "tiktok": _parse_tiktok,
    "instagram": _parse_instagram,
    "youtube": _parse_youtube,
    "twitter": _parse_twitter,
}


class ScrapeCreatorsProvider(HttpProvider):
    """Провайдер ScrapeCreators: tiktok, instagram, youtube, twitter."""

    name: ClassVar[str] = "scrapecreators"
    platforms: ClassVar[frozenset[str]] = frozenset(_ENDPOINTS)

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient,
        timeout: float = 30.0,
        base_url: str = BASE_URL,
    ) -> None:
        super().__init__(client, timeout)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def _fetch(self, url: str, platform: str) -> ScrapedMetrics:
        endpoint = _ENDPOINTS.get(platform)
        if endpoint is None:
            raise UnsupportedPlatformError(platform, self.name)

        logger.debug(f"[scrapecreators] {platform} {url}")
        resp = await self.client.post(
            f"{self.base_url}{endpoint}",
            json={"url": url},
            headers={"X-API-Key": self.api_key},
            timeout=self.timeout,
        )
        self.raise_for_status(resp)

        payload = resp.json()
        if not isinstance(payload, dict) or not payload:
            raise PostUnavailableError("empty response from ScrapeCreators")
        return _PARSERS[platform](payload)
