"""Общие фикстуры и хелперы для тестов API."""
from unittest.mock import MagicMock

from src.config import OrchestratorConfig
from src.scraping.orchestrator import ScrapeOrchestrator
from src.worker.queue import ScrapeQueue
from tests.fakes import FakeProvider, InMemoryStore


def make_settings():
    """Создать мок Settings с API-ключом."""
    settings = MagicMock()
    settings.scraper_api_key.get_secret_value.return_value = "sk-test-key"
    return settings


def make_queue(store: InMemoryStore | None = None, *providers: FakeProvider) -> ScrapeQueue:
    """Очередь поверх in-memory хранилища и фейковых провайдеров."""
    providers = providers or (FakeProvider("scrapecreators"), FakeProvider("apify"))
    orchestrator = ScrapeOrchestrator.from_config(
        OrchestratorConfig(provider_priority_order=[p.name for p in providers]), providers,
    )
    return ScrapeQueue(store or InMemoryStore(), orchestrator)


def make_app(queue: ScrapeQueue | None = None, worker=None, settings=None):
    """Создать FastAPI app с моками."""
    from src.api.app import create_app

    return create_app(
        queue=queue or make_queue(),
        worker=worker,
        settings=settings or make_settings(),
    )


# Общий заголовок авторизации
AUTH_HEADERS = {"Authorization": "Bearer sk-test-key"}
