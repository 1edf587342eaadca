"""Точка входа скрапера метрик — инициализация и запуск API + воркера."""
import asyncio
import signal
import sys

import httpx
import uvicorn
from loguru import logger
from supabase import create_client

from src.api.app import create_app
from src.config import Settings, load_settings
from src.database import SupabaseStore
from src.log_sink import create_supabase_sink
from src.platforms.apify import ApifyProvider
from src.platforms.base import ProviderAdapter
from src.platforms.scrapecreators import ScrapeCreatorsProvider
from src.scraping.orchestrator import ScrapeOrchestrator
from src.worker.loop import TaskQueueWorker
from src.worker.queue import ScrapeQueue
from src.worker.scheduler import create_scheduler


def configure_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    if settings.log_level == "DEBUG":
        logger.add("logs/scraper.log", rotation="100 MB", retention="7 days")


def build_providers(settings: Settings, client: httpx.AsyncClient) -> list[ProviderAdapter]:
    """Адаптеры для провайдеров, у которых заданы креденшалы."""
    timeout = settings.scraping_timeout_ms / 1000
    providers: list[ProviderAdapter] = []
    if settings.scrapecreators_api_key:
        providers.append(ScrapeCreatorsProvider(
            settings.scrapecreators_api_key.get_secret_value(), client, timeout=timeout,
        ))
    if settings.apify_api_token:
        providers.append(ApifyProvider(
            settings.apify_api_token.get_secret_value(), client, timeout=timeout,
        ))
    if not providers:
        logger.warning("No scraping providers configured: every task will fail "
                       "(set SCRAPECREATORS_API_KEY and/or APIFY_API_TOKEN)")
    return providers


async def main() -> None:
    """Инициализация и запуск API + воркера."""
    settings = load_settings()
    configure_logging(settings)

    logger.info("Starting metrics scraper")

    # Supabase
    db = create_client(settings.supabase_url, settings.supabase_service_key.get_secret_value())
    store = SupabaseStore(db)

    # Персистить WARNING+ логи в Supabase
    logger.add(
        create_supabase_sink(db),
        level="WARNING",
        enqueue=True,
        serialize=False,
    )

    async with httpx.AsyncClient() as http_client:
        orchestrator = ScrapeOrchestrator.from_config(
            settings.orchestrator_config(), build_providers(settings, http_client),
        )
        worker = TaskQueueWorker(store, orchestrator, settings.worker_config())
        queue = ScrapeQueue(store, orchestrator, worker)

        # FastAPI
        app = create_app(queue, worker, settings)
        config = uvicorn.Config(app, host="0.0.0.0", port=settings.scraper_port, log_level="warning")
        server = uvicorn.Server(config)

        # Graceful shutdown: uvicorn сам ловит SIGINT/SIGTERM, здесь только воркер
        shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, shutdown_event.set)

        # APScheduler: live tracking + лог здоровья провайдеров
        scheduler = create_scheduler(queue, store, settings)
        scheduler.start()
        logger.info("Scheduler started")

        worker.start()
        logger.info(f"API server starting on port {settings.scraper_port}")

        async def _stop_on_signal() -> None:
            await shutdown_event.wait()
            server.should_exit = True

        try:
            await asyncio.gather(server.serve(), _stop_on_signal())
        finally:
            scheduler.shutdown(wait=False)
            await worker.stop()
            logger.info("Scraper stopped gracefully")


if __name__ == "__main__":
    asyncio.run(main())
