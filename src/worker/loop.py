"""Основной цикл воркера — polling очереди задач + обработка через оркестратор."""
import asyncio
from datetime import UTC, datetime

from loguru import logger

from src.config import WorkerConfig
from src.database import ScrapeStore, sanitize_error
from src.models.metrics import ScrapeResult
from src.models.task import JOB_TERMINAL, ErrorKind, ScrapeTask, TaskError, compute_job_status
from src.platforms.urls import generate_post_key
from src.scraping.orchestrator import ScrapeOrchestrator
from src.scraping.retry import RetryPolicy, classify_error


class TaskQueueWorker:
    """
    Долгоживущий воркер: берёт queued задачи, гоняет их через оркестратор
    не больше concurrency_limit одновременно и держит статусы джобов актуальными.
    Всё изменяемое состояние (флаг цикла, таймеры ретраев) живёт в экземпляре.
    """

    def __init__(
        self,
        store: ScrapeStore,
        orchestrator: ScrapeOrchestrator,
        config: WorkerConfig | None = None,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.config = config or WorkerConfig()
        self.retry_policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            base_delay_ms=self.config.base_delay_ms,
            max_delay_ms=self.config.max_delay_ms,
        )

        self._semaphore = asyncio.Semaphore(self.config.concurrency_limit)
        self._processing = False
        self._loop_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._wake_event = asyncio.Event()
        # task_id → таймер возврата в queued
        self._retry_timers: dict[int, asyncio.TimerHandle] = {}
        self._requeue_tasks: set[asyncio.Task[None]] = set()
        # post key → текущий вызов оркестратора, общий для ссылок на один пост
        self._inflight_scrapes: dict[str, asyncio.Future[ScrapeResult]] = {}

        self._in_flight = 0
        self.max_in_flight = 0

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def pending_retries(self) -> int:
        return len(self._retry_timers)

    def start(self) -> None:
        """Запустить polling-цикл. Повторный вызов на запущенном воркере — no-op."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self._run())
        logger.info(
            f"[worker] Started (poll={self.config.poll_interval}s, "
            f"concurrency={self.config.concurrency_limit}, "
            f"max_attempts={self.config.max_attempts})"
        )

    async def stop(self) -> None:
        """
        Остановить цикл. Текущий poll дорабатывает до конца (без отмены вызовов),
        таймеры ретраев снимаются — такие задачи поднимет следующий start().
        """
        self._stop_event.set()
        self._wake_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        for handle in self._retry_timers.values():
            handle.cancel()
        if self._retry_timers:
            logger.info(f"[worker] Dropped {len(self._retry_timers)} retry timers, "
                        f"tasks stay in pending_retry")
        self._retry_timers.clear()

        if self._requeue_tasks:
            await asyncio.gather(*self._requeue_tasks, return_exceptions=True)
        logger.info("[worker] Stopped")

    def wake(self) -> None:
        """Запустить следующий poll без ожидания интервала."""
        self._wake_event.set()

    async def _run(self) -> None:
        try:
            await self.store.requeue_pending_retries()
        except Exception as e:
            logger.error(f"[worker] Failed to recover pending_retry tasks: {sanitize_error(str(e))}")

        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                logger.exception(f"[worker] Error in poll cycle: {sanitize_error(str(e))}")

            if self._stop_event.is_set():
                break
            # Ждём poll_interval или wake()/stop()
            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=self.config.poll_interval)
            except TimeoutError:
                pass
            self._wake_event.clear()

    async def poll_once(self) -> int:
        """
        Один цикл: взять до batch_size queued задач (FIFO по id), перевести их
        джобы в running, обработать пачку и пересчитать статусы активных джобов.
        Возвращает число взятых задач.
        """
        if self._processing:
            return 0
        self._processing = True
        try:
            tasks = await self.store.get_queued_tasks(self.config.batch_size)
            if tasks:
                logger.info(f"[worker] Fetched {len(tasks)} queued tasks")
                await self._start_jobs({t.job_id for t in tasks})
                await asyncio.gather(*(self._run_bounded(t) for t in tasks))
            await self.update_job_statuses()
            return len(tasks)
        finally:
            self._processing = False

    async def _start_jobs(self, job_ids: set[int]) -> None:
        for job_id in sorted(job_ids):
            try:
                job = await self.store.get_job(job_id)
                if job is not None and job.status == "queued":
                    await self.store.update_job_status(job_id, "running")
                    logger.info(f"[worker] Job {job_id} running")
            except Exception as e:
                logger.error(f"[worker] Failed to start job {job_id}: {sanitize_error(str(e))}")

    async def _run_bounded(self, task: ScrapeTask) -> None:
        async with self._semaphore:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
            try:
                await self.process_task(task)
            except Exception as e:
                # Падение одной задачи не должно ронять пачку
                logger.exception(f"[worker] Unhandled error in task {task.id}: {e}")
            finally:
                self._in_flight -= 1

    async def process_task(self, task: ScrapeTask) -> None:
        """Обработать одну задачу: running → вызов оркестратора → success или ветка ошибки."""
        try:
            await self.store.update_task(task.id, {"status": "running"})
        except Exception as e:
            logger.error(f"[worker] Task {task.id}: cannot mark running, "
                         f"left for next poll: {sanitize_error(str(e))}")
            return

        logger.debug(f"[worker] Task {task.id}: {task.platform} {task.url} "
                     f"(attempt {task.attempts + 1}/{self.config.max_attempts})")
        try:
            result = await self._scrape_shared(task)
        except Exception as e:
            logger.exception(f"[worker] Task {task.id}: orchestrator raised: {e}")
            result = ScrapeResult(
                success=False,
                error=f"Unexpected scrape error: {e}",
                error_kind=ErrorKind.RETRIABLE.value,
            )

        attempts = task.attempts + 1
        if result.success and result.data is not None:
            await self._complete(task, result, attempts)
        else:
            await self.handle_failure(task, result, attempts)

    async def _scrape_shared(self, task: ScrapeTask) -> ScrapeResult:
        """
        Задачи с одним post key (дубли ссылок на пост) во время полёта делят
        один вызов оркестратора. Каждая задача при этом сохраняет свой результат.
        """
        key = generate_post_key(task.url, task.platform)
        shared = self._inflight_scrapes.get(key)
        if shared is None or shared.done():
            shared = asyncio.ensure_future(self.orchestrator.scrape(task.url, task.platform))
            self._inflight_scrapes[key] = shared
            shared.add_done_callback(lambda f: self._forget_scrape(key, f))
        else:
            logger.debug(f"[worker] Task {task.id}: sharing in-flight scrape for {key}")
        return await asyncio.shield(shared)

    def _forget_scrape(self, key: str, future: asyncio.Future[ScrapeResult]) -> None:
        if self._inflight_scrapes.get(key) is future:
            del self._inflight_scrapes[key]

    async def _complete(self, task: ScrapeTask, result: ScrapeResult, attempts: int) -> None:
        metrics = result.data
        assert metrics is not None
        try:
            await self.store.update_task(task.id, {
                "status": "success",
                "attempts": attempts,
                "last_error": None,
                "result_views": metrics.views,
                "result_likes": metrics.likes,
                "result_comments": metrics.comments,
                "result_shares": metrics.shares,
                "result_engagement_rate": metrics.engagement_rate,
            })
            await self.store.update_target_metrics(task.social_link_id, metrics)
            await self.store.append_engagement_snapshot(task.social_link_id, metrics)
        except Exception as e:
            logger.error(f"[worker] Task {task.id}: failed to persist result: {sanitize_error(str(e))}")
            return

        logger.info(f"[worker] Task {task.id} success via {result.provider}: "
                    f"views={metrics.views}, likes={metrics.likes}, "
                    f"comments={metrics.comments}, shares={metrics.shares}")

    async def handle_failure(self, task: ScrapeTask, result: ScrapeResult, attempts: int) -> None:
        """
        Ветка ошибки. Retriable и попытки не исчерпаны → pending_retry + таймер
        на base_delay * 2**attempts (attempts до этой попытки). Иначе → failed,
        а ссылка на пост получает статус error с текстом ошибки.
        """
        message = sanitize_error(result.error or "Unknown error")
        kind = ErrorKind(result.error_kind) if result.error_kind else classify_error(message)
        error = TaskError(provider=result.provider, message=message, kind=kind)

        try:
            if self.retry_policy.should_retry(kind, attempts):
                delay = self.retry_policy.delay_seconds(task.attempts)
                await self.store.update_task(task.id, {
                    "status": "pending_retry",
                    "attempts": attempts,
                    "last_error": error,
                })
                self._schedule_retry(task.id, delay)
                logger.warning(f"[worker] Task {task.id} failed ({kind}), retry "
                               f"{attempts}/{self.config.max_attempts} in {delay:.1f}s: {message}")
                return

            await self.store.update_task(task.id, {
                "status": "failed",
                "attempts": attempts,
                "last_error": error,
            })
            await self.store.update_target_status(task.social_link_id, "error", message)
        except Exception as e:
            logger.error(f"[worker] Task {task.id}: failed to persist failure: {sanitize_error(str(e))}")
            return

        logger.warning(f"[worker] Task {task.id} failed permanently after "
                       f"{attempts} attempt(s) ({kind}): {message}")

    def _schedule_retry(self, task_id: int, delay: float) -> None:
        """Отложенный возврат задачи в queued — воркер на backoff не ждёт."""
        loop = asyncio.get_running_loop()
        previous = self._retry_timers.pop(task_id, None)
        if previous is not None:
            previous.cancel()
        self._retry_timers[task_id] = loop.call_later(delay, self._fire_retry, task_id)

    def _fire_retry(self, task_id: int) -> None:
        self._retry_timers.pop(task_id, None)
        t = asyncio.create_task(self._requeue(task_id))
        self._requeue_tasks.add(t)
        t.add_done_callback(self._requeue_tasks.discard)

    async def _requeue(self, task_id: int) -> None:
        try:
            await self.store.update_task(task_id, {"status": "queued"})
        except Exception as e:
            # Задача останется в pending_retry до рестарта воркера
            logger.error(f"[worker] Task {task_id}: failed to re-queue: {sanitize_error(str(e))}")
            return
        logger.debug(f"[worker] Task {task_id} re-queued")
        self.wake()

    async def update_job_statuses(self) -> None:
        """Пересчитать статус каждого нетерминального джоба по счётчикам его задач."""
        jobs = await self.store.get_active_jobs()
        for job in jobs:
            try:
                stats = await self.store.get_job_stats(job.id)
                if stats is None:
                    continue
                status = compute_job_status(
                    job.status, stats.total_tasks, stats.completed_tasks, stats.failed_tasks,
                )
                if status == job.status:
                    continue
                completed_at = datetime.now(UTC) if status in JOB_TERMINAL else None
                await self.store.update_job_status(job.id, status, completed_at)
                logger.info(f"[worker] Job {job.id} {status}: "
                            f"{stats.successful_tasks}/{stats.total_tasks} succeeded, "
                            f"{stats.failed_tasks} failed")
            except Exception as e:
                logger.error(f"[worker] Failed to update job {job.id}: {sanitize_error(str(e))}")
