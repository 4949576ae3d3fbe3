import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cv_pipeline.api.v1.router import api_v1_router
from cv_pipeline.core.config import Settings, get_settings
from cv_pipeline.core.database import async_session_factory, engine
from cv_pipeline.services.crm_client import CrmClient, HttpCrmClient, UnconfiguredCrmClient
from cv_pipeline.services.crm_sync import CrmSyncEngine
from cv_pipeline.services.retry_scheduler import RetryPolicy, RetryScheduler

logger = logging.getLogger(__name__)


def build_crm_client(settings: Settings) -> CrmClient:
    if not settings.crm_configured:
        logger.warning("CRM_API_URL or CRM_API_KEY not set; CV uploads will fail to sync")
        return UnconfiguredCrmClient()
    return HttpCrmClient(
        settings.crm_api_url,
        settings.crm_api_key,
        timeout=settings.crm_push_timeout_seconds,
    )


def build_sync_engine(settings: Settings, crm_client: CrmClient) -> CrmSyncEngine:
    config = settings.pipeline_config()
    scheduler = RetryScheduler(
        RetryPolicy(
            max_attempts=config.crm_max_attempts,
            base_delay_ms=config.crm_retry_base_delay_ms,
            jitter_ms=config.crm_retry_jitter_ms,
        )
    )
    return CrmSyncEngine(async_session_factory, crm_client, scheduler, config)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Startup
    settings = get_settings()
    crm_client = build_crm_client(settings)
    sync_engine = build_sync_engine(settings, crm_client)
    app.state.sync_engine = sync_engine
    await sync_engine.resume_pending()
    sync_engine.scheduler.start()
    yield
    # Shutdown
    await sync_engine.scheduler.stop()
    await crm_client.aclose()
    await engine.dispose()


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.include_router(api_v1_router, prefix="/api/v1")
    return app
