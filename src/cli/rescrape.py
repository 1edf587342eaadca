"""
Ручной re-scrape кампании из консоли.

Использование:
    uv run python -m src.cli.rescrape --campaign 42            # поставить джоб
    uv run python -m src.cli.rescrape --campaign 42 --wait     # и дождаться завершения
    uv run python -m src.cli.rescrape --status 17              # статус джоба
"""
import argparse
import asyncio
import sys

import httpx
from loguru import logger
from supabase import create_client

from src.config import load_settings
from src.database import SupabaseStore
from src.main import build_providers
from src.models.task import JOB_TERMINAL
from src.scraping.orchestrator import ScrapeOrchestrator
from src.worker.loop import TaskQueueWorker
from src.worker.queue import EnqueueError, ScrapeQueue


async def show_status(queue: ScrapeQueue, job_id: int) -> bool:
    """Вывести статус джоба и его задач. False — джоб не найден."""
    stats = await queue.get_job_status(job_id)
    if stats is None:
        logger.error(f"Джоб {job_id} не найден")
        return False

    logger.info(
        f"Джоб {job_id}: {stats.status}, готово {stats.completed_tasks}/{stats.total_tasks} "
        f"(успешно {stats.successful_tasks}, ошибок {stats.failed_tasks})"
    )
    for task in await queue.get_task_statuses(job_id):
        line = f"  #{task.id} {task.platform} {task.status} attempts={task.attempts} {task.url}"
        if task.last_error is not None and task.status != "success":
            line += f" — {task.last_error.message}"
        logger.info(line)
    return True


async def rescrape(campaign_id: int | None, job_id: int | None, wait: bool) -> int:
    """Поставить джоб (и опционально обработать его прямо здесь). Возвращает exit code."""
    settings = load_settings()
    db = create_client(settings.supabase_url, settings.supabase_service_key.get_secret_value())
    store = SupabaseStore(db)

    async with httpx.AsyncClient() as http_client:
        orchestrator = ScrapeOrchestrator.from_config(
            settings.orchestrator_config(), build_providers(settings, http_client),
        )
        worker = TaskQueueWorker(store, orchestrator, settings.worker_config()) if wait else None
        queue = ScrapeQueue(store, orchestrator, worker)

        if job_id is not None:
            return 0 if await show_status(queue, job_id) else 1

        assert campaign_id is not None
        try:
            result = await queue.enqueue(campaign_id)
        except EnqueueError as e:
            logger.error(str(e))
            return 1
        logger.info(f"Создан джоб {result.job_id}: {result.task_count} задач")

        if worker is None:
            logger.info("Задачи будут обработаны воркером при следующем цикле.")
            return 0

        # Локальный воркер до терминального статуса джоба
        worker.start()
        try:
            while True:
                stats = await queue.get_job_status(result.job_id)
                if stats is None or stats.status in JOB_TERMINAL:
                    break
                await asyncio.sleep(settings.worker_poll_interval)
        finally:
            await worker.stop()

        await show_status(queue, result.job_id)
        return 0 if stats is not None and stats.status == "done" else 2


def main() -> None:
    parser = argparse.ArgumentParser(description="Re-scrape метрик постов кампании")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--campaign", type=int, help="ID кампании для re-scrape")
    target.add_argument("--status", type=int, metavar="JOB_ID", help="Показать статус джоба")
    parser.add_argument("--wait", action="store_true",
                        help="Обработать джоб в этом процессе и дождаться завершения")
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level="INFO")

    sys.exit(asyncio.run(rescrape(args.campaign, args.status, args.wait)))


if __name__ == "__main__":
    main()
