"""
CronHalo FastAPI Backend
Scheduled task orchestrator API
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Optional

import requests
from fastapi import FastAPI

from CronHalo.backend.routes.cron import router as cron_router
from CronHalo.config import OrchestratorSettings, load_settings
from CronHalo.engine.executor import TaskExecutor
from CronHalo.engine.orchestrator import Orchestrator
from CronHalo.scheduler.registry import TaskRegistry, default_registry
from CronHalo.security.auth import AuthorizationPipeline
from CronHalo.security.rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from CronHalo.shared.redis_utils import RedisConfig, close_sync_redis, get_sync_redis_client

# Configure logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def build_rate_limiter(settings: OrchestratorSettings) -> RateLimiter:
    """Redis-backed limiter when REDIS_URL is set, otherwise in-process"""
    if settings.redis_url:
        client = get_sync_redis_client(RedisConfig(url=settings.redis_url))
        return RedisRateLimiter(
            client,
            limit=settings.rate_limit,
            window_seconds=settings.rate_window_seconds,
        )
    logger.warning("REDIS_URL not set - rate limiting uses in-memory storage only")
    return InMemoryRateLimiter(
        limit=settings.rate_limit, window_seconds=settings.rate_window_seconds
    )


def build_registry(settings: OrchestratorSettings) -> TaskRegistry:
    if settings.tasks_file:
        return TaskRegistry.from_file(settings.tasks_file)
    return default_registry()


def create_app(
    settings: Optional[OrchestratorSettings] = None,
    registry: Optional[TaskRegistry] = None,
    rate_limiter: Optional[RateLimiter] = None,
    session: Optional[requests.Session] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> FastAPI:
    """
    Build the orchestrator app.

    Every collaborator can be injected; anything left out is built from
    settings (which default to the environment).
    """
    settings = settings or load_settings()
    registry = registry or build_registry(settings)
    rate_limiter = rate_limiter or build_rate_limiter(settings)

    if not settings.cron_secret:
        logger.error("[ORCHESTRATOR] CRON_SECRET not set - every request will be rejected")

    app = FastAPI(
        title="CronHalo API",
        description="Scheduled task orchestrator with signed internal calls",
        version=VERSION,
    )

    pipeline_kwargs = {"sleep": sleep} if sleep else {}
    app.state.settings = settings
    app.state.registry = registry
    app.state.rate_limiter = rate_limiter
    app.state.auth_pipeline = AuthorizationPipeline(
        secret=settings.cron_secret,
        rate_limiter=rate_limiter,
        allowed_origins=settings.allowed_origins,
        **pipeline_kwargs,
    )
    app.state.executor = TaskExecutor(
        base_url=settings.app_base_url,
        secret=settings.cron_secret,
        session=session,
    )
    app.state.orchestrator = Orchestrator(registry, app.state.executor)

    app.include_router(cron_router)

    @app.get("/")
    async def root():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "CronHalo API",
            "version": VERSION,
            "tasks": len(registry),
            "rateLimiter": type(rate_limiter).__name__,
        }

    @app.on_event("startup")
    async def startup_event():
        logger.info(
            f"CronHalo API started with {len(registry)} task(s): "
            f"{', '.join(task.id for task in registry)}"
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        """Clean up resources"""
        app.state.executor.session.close()
        close_sync_redis()
        logger.info("CronHalo API shutdown complete")

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
