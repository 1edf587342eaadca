"""Тесты HTTP-провайдеров ScrapeCreators и Apify (httpx.MockTransport)."""
import json

import httpx
import pytest

from src.models.task import ErrorKind
from src.platforms.apify import ApifyProvider
from src.platforms.scrapecreators import ScrapeCreatorsProvider
from src.scraping.retry import classify_error

TIKTOK_URL = "https://www.tiktok.com/@creator/video/7234567890123456789"
INSTAGRAM_URL = "https://www.instagram.com/reel/CxYz123/"


def make_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def json_response(status: int, payload) -> httpx.Response:
    return httpx.Response(status, json=payload)


class TestScrapeCreators:
    """Тесты ScrapeCreatorsProvider."""

    async def test_tiktok_success(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get("X-API-Key")
            seen["body"] = json.loads(request.content)
            return json_response(200, {"video": {
                "id": "7234567890123456789", "playCount": 10000,
                "diggCount": 800, "commentCount": 150, "shareCount": 50,
            }})

        async with make_client(handler) as client:
            provider = ScrapeCreatorsProvider("sc-key", client)
            result = await provider.scrape(TIKTOK_URL, "TikTok")

        assert result.success
        assert result.provider == "scrapecreators"
        assert result.data.views == 10000
        assert result.data.shares == 50
        assert result.data.engagement_rate == 10.0
        assert result.data.post_id == "7234567890123456789"
        assert seen["url"].endswith("/tiktok/post")
        assert seen["key"] == "sc-key"
        assert seen["body"] == {"url": TIKTOK_URL}

    async def test_youtube_string_counters(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return json_response(200, {"id": "abc", "viewCount": "2,000", "likeCount": "100", "commentCount": "0"})

        async with make_client(handler) as client:
            result = await ScrapeCreatorsProvider("k", client).scrape("https://youtu.be/abc", "youtube")

        assert result.data.views == 2000
        assert result.data.likes == 100
        assert result.data.engagement_rate == 5.0

    @pytest.mark.parametrize("status, kind", [
        (401, ErrorKind.PERMANENT_PROVIDER),
        (402, ErrorKind.PERMANENT_PROVIDER),
        (404, ErrorKind.PERMANENT_TARGET),
        (429, ErrorKind.RETRIABLE),
        (503, ErrorKind.RETRIABLE),
    ])
    async def test_http_errors_classified(self, status: int, kind: ErrorKind) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return json_response(status, {"message": "nope"})

        async with make_client(handler) as client:
            result = await ScrapeCreatorsProvider("k", client).scrape(TIKTOK_URL, "tiktok")

        assert not result.success
        assert classify_error(result.error) == kind

    async def test_timeout_is_retriable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with make_client(handler) as client:
            result = await ScrapeCreatorsProvider("k", client).scrape(TIKTOK_URL, "tiktok")

        assert "timeout" in result.error.lower()
        assert classify_error(result.error) == ErrorKind.RETRIABLE

    async def test_connection_error_is_retriable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            result = await ScrapeCreatorsProvider("k", client).scrape(TIKTOK_URL, "tiktok")

        assert classify_error(result.error) == ErrorKind.RETRIABLE

    async def test_missing_video_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return json_response(200, {"success": True})

        async with make_client(handler) as client:
            result = await ScrapeCreatorsProvider("k", client).scrape(TIKTOK_URL, "tiktok")

        assert classify_error(result.error) == ErrorKind.PERMANENT_TARGET

    async def test_unsupported_platform_no_request(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("request must not be sent")

        async with make_client(handler) as client:
            result = await ScrapeCreatorsProvider("k", client).scrape("https://vk.com/wall1", "vk")

        assert classify_error(result.error) == ErrorKind.PERMANENT_TARGET


class TestApify:
    """Тесты ApifyProvider."""

    async def test_instagram_success(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["body"] = json.loads(request.content)
            return json_response(200, [{
                "shortCode": "CxYz123", "videoViewCount": 5000,
                "likesCount": 400, "commentsCount": 100,
            }])

        async with make_client(handler) as client:
            result = await ApifyProvider("apify-token", client).scrape(INSTAGRAM_URL, "instagram")

        assert result.success
        assert result.data.views == 5000
        assert result.data.shares == 0
        assert result.data.engagement_rate == 10.0
        assert result.data.post_id == "CxYz123"
        assert "apify~instagram-scraper" in seen["url"].path
        assert seen["url"].params["token"] == "apify-token"
        assert seen["body"]["directUrls"] == [INSTAGRAM_URL]

    async def test_tiktok_success(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return json_response(200, [{
                "id": "1", "playCount": 1000, "diggCount": 90, "commentCount": 5, "shareCount": 5,
            }])

        async with make_client(handler) as client:
            result = await ApifyProvider("t", client).scrape(TIKTOK_URL, "tiktok")

        assert result.data.likes == 90
        assert result.data.engagement_rate == 10.0

    async def test_empty_dataset_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return json_response(200, [])

        async with make_client(handler) as client:
            result = await ApifyProvider("t", client).scrape(TIKTOK_URL, "tiktok")

        assert not result.success
        assert classify_error(result.error) == ErrorKind.PERMANENT_TARGET

    async def test_credit_limit(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return json_response(402, {"error": {"type": "not-enough-usage"}})

        async with make_client(handler) as client:
            result = await ApifyProvider("t", client).scrape(TIKTOK_URL, "tiktok")

        assert "credit limit" in result.error
        assert classify_error(result.error) == ErrorKind.PERMANENT_PROVIDER

    async def test_twitter_not_supported(self) -> None:
        async with make_client(lambda r: json_response(200, [])) as client:
            result = await ApifyProvider("t", client).scrape("https://x.com/u/status/1", "twitter")

        assert "Unsupported platform" in result.error
