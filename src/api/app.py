"""FastAPI-приложение скрапера метрик."""
import hmac
import time
from collections import defaultdict

from fastapi import Depends, FastAPI, HTTPException, Path, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger

from src.api.schemas import (
    EnqueueResponse,
    HealthResponse,
    JobStatusResponse,
    ProvidersResponse,
    ResetResponse,
    TaskListResponse,
    TaskStatusResponse,
)
from src.config import Settings
from src.database import sanitize_error
from src.worker.loop import TaskQueueWorker
from src.worker.queue import (
    EnqueueError,
    JobAlreadyActiveError,
    NothingToScrapeError,
    ScrapeQueue,
    TargetNotFoundError,
)

security = HTTPBearer(auto_error=False)

# Rate limiting: sliding window per IP
RATE_LIMIT_MAX_REQUESTS = 60
RATE_LIMIT_WINDOW_SECONDS = 60


def create_app(
    queue: ScrapeQueue,
    worker: TaskQueueWorker | None,
    settings: Settings,
) -> FastAPI:
    """Создать FastAPI-приложение с зависимостями."""
    app = FastAPI(title="Metrics Scraper API", version="0.1.0")

    # Сохраняем зависимости в app.state
    app.state.queue = queue
    app.state.worker = worker
    app.state.settings = settings

    rate_limit_store: dict[str, list[float]] = defaultdict(list)

    async def check_rate_limit(request: Request) -> None:
        """Простой in-memory rate limiter: sliding window per IP."""
        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        window_start = now - RATE_LIMIT_WINDOW_SECONDS

        timestamps = [t for t in rate_limit_store[client_ip] if t > window_start]
        if len(timestamps) >= RATE_LIMIT_MAX_REQUESTS:
            rate_limit_store[client_ip] = timestamps
            raise HTTPException(status_code=429, detail="Rate limit exceeded")
        timestamps.append(now)
        rate_limit_store[client_ip] = timestamps

        # Периодическая очистка стухших IP
        if len(rate_limit_store) > 100:
            for ip in [ip for ip, ts in rate_limit_store.items() if not ts or ts[-1] <= window_start]:
                del rate_limit_store[ip]

    async def verify_api_key(
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ) -> None:
        """Проверка API-ключа."""
        expected = settings.scraper_api_key.get_secret_value()
        if credentials is None or not hmac.compare_digest(
            credentials.credentials, expected
        ):
            raise HTTPException(status_code=401, detail="Invalid API key")

    protected = [Depends(check_rate_limit), Depends(verify_api_key)]

    @app.get("/api/health", response_model=HealthResponse)
    async def health(response: Response) -> HealthResponse:
        """Healthcheck — без авторизации."""
        providers = queue.get_providers_stats()
        try:
            jobs_active = len(await queue.store.get_active_jobs())
        except Exception as e:
            logger.error(f"[api] Health check: store unavailable: {sanitize_error(str(e))}")
            response.status_code = 503
            jobs_active = -1
            status = "degraded"
        else:
            status = "ok"

        return HealthResponse(
            status=status,
            worker_running=worker.is_running if worker is not None else False,
            providers_total=len(providers),
            providers_healthy=sum(1 for p in providers if p["healthy"]),
            jobs_active=jobs_active,
        )

    @app.post(
        "/api/campaigns/{campaign_id}/scrape", status_code=201,
        response_model=EnqueueResponse, dependencies=protected,
    )
    async def scrape_campaign(campaign_id: int = Path(ge=1, description="ID кампании")) -> EnqueueResponse:
        """Поставить re-scrape всех постов кампании."""
        try:
            result = await queue.enqueue(campaign_id)
        except JobAlreadyActiveError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except NothingToScrapeError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return EnqueueResponse(job_id=result.job_id, task_count=result.task_count)

    @app.post(
        "/api/social-links/{link_id}/scrape", status_code=201,
        response_model=EnqueueResponse, dependencies=protected,
    )
    async def scrape_link(link_id: int = Path(ge=1, description="ID ссылки на пост")) -> EnqueueResponse:
        """Скрап одного поста (джоб из одной задачи)."""
        try:
            result = await queue.enqueue_target(link_id)
        except TargetNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except JobAlreadyActiveError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except EnqueueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return EnqueueResponse(job_id=result.job_id, task_count=result.task_count)

    @app.get("/api/jobs/{job_id}", response_model=JobStatusResponse, dependencies=protected)
    async def get_job(job_id: int = Path(ge=1, description="ID джоба")) -> JobStatusResponse:
        """Агрегированный статус джоба."""
        stats = await queue.get_job_status(job_id)
        if stats is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return JobStatusResponse(**stats.model_dump())

    @app.get("/api/jobs/{job_id}/tasks", response_model=TaskListResponse, dependencies=protected)
    async def get_job_tasks(job_id: int = Path(ge=1, description="ID джоба")) -> TaskListResponse:
        """Прогресс по каждому посту джоба."""
        if await queue.get_job_status(job_id) is None:
            raise HTTPException(status_code=404, detail="Job not found")
        tasks = await queue.get_task_statuses(job_id)
        return TaskListResponse(
            job_id=job_id,
            tasks=[TaskStatusResponse.from_task(t) for t in tasks],
        )

    @app.get("/api/providers", response_model=ProvidersResponse, dependencies=protected)
    async def providers() -> ProvidersResponse:
        return ProvidersResponse(providers=queue.get_providers_stats())

    @app.post("/api/providers/reset", response_model=ResetResponse, dependencies=protected)
    async def reset_providers() -> ResetResponse:
        """Ручное восстановление: закрыть все circuit breaker-ы."""
        queue.reset_circuit_breakers()
        logger.warning("[api] Circuit breakers reset by operator")
        return ResetResponse(status="reset")

    return app
