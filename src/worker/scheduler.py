"""APScheduler-задачи: live tracking кампаний и лог здоровья провайдеров."""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from src.config import Settings
from src.database import ScrapeStore
from src.worker.queue import JobAlreadyActiveError, NothingToScrapeError, ScrapeQueue


async def track_live_campaigns(queue: ScrapeQueue, store: ScrapeStore) -> None:
    """Поставить re-scrape для кампаний с живыми постами (обычными джобами)."""
    campaign_ids = await store.get_trackable_campaign_ids()
    if not campaign_ids:
        logger.debug("[live_tracking] No campaigns with live posts")
        return

    created = 0
    skipped = 0
    for campaign_id in campaign_ids:
        try:
            await queue.enqueue(campaign_id)
            created += 1
        except (JobAlreadyActiveError, NothingToScrapeError) as e:
            logger.debug(f"[live_tracking] Campaign {campaign_id} skipped: {e}")
            skipped += 1
        except Exception as e:
            logger.error(f"[live_tracking] Campaign {campaign_id}: {e}")

    logger.info(f"[live_tracking] Enqueued {created} jobs, skipped {skipped} campaigns")


async def log_provider_health(queue: ScrapeQueue) -> None:
    """Записать в лог состояние breaker-ов и статистику провайдеров."""
    for provider in queue.get_providers_stats():
        stats = provider["stats"]
        breaker = provider["circuit_breaker"]
        line = (
            f"[provider_health] {provider['name']}: breaker={breaker['state']}, "
            f"requests={stats['total_requests']}, ok={stats['successful_requests']}, "
            f"failed={stats['failed_requests']}, "
            f"avg={stats['average_response_time_ms']:.0f}ms"
        )
        if provider["healthy"]:
            logger.info(line)
        else:
            logger.warning(line)


def create_scheduler(queue: ScrapeQueue, store: ScrapeStore, settings: Settings) -> AsyncIOScheduler:
    """Создать и настроить APScheduler."""
    scheduler = AsyncIOScheduler(
        job_defaults={
            # Дефолтный misfire_grace_time=1с слишком мало для async job'ов:
            # при задержке event loop job'ы будут тихо пропускаться
            "misfire_grace_time": None,
            "coalesce": True,
        }
    )

    # Каждые N минут: re-scrape кампаний с живыми постами
    if settings.live_tracking_enabled:
        scheduler.add_job(
            track_live_campaigns,
            "interval",
            minutes=settings.live_tracking_interval_minutes,
            kwargs={"queue": queue, "store": store},
            id="track_live_campaigns",
        )

    # Каждые 15 минут: состояние провайдеров в лог
    scheduler.add_job(
        log_provider_health,
        "interval",
        minutes=15,
        kwargs={"queue": queue},
        id="log_provider_health",
    )

    return scheduler
