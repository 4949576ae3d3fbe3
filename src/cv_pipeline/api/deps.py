from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cv_pipeline.core.config import PipelineConfig, get_settings
from cv_pipeline.core.database import async_session_factory, get_db
from cv_pipeline.services.crm_sync import CrmSyncEngine
from cv_pipeline.storage.base import FileStorage
from cv_pipeline.storage.local import LocalFileStorage

__all__ = [
    "get_db",
    "get_file_storage",
    "get_pipeline_config",
    "get_session_factory",
    "get_sync_engine",
]


def get_file_storage() -> FileStorage:
    settings = get_settings()
    return LocalFileStorage(settings.upload_dir)


def get_pipeline_config() -> PipelineConfig:
    return get_settings().pipeline_config()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


def get_sync_engine(request: Request) -> CrmSyncEngine:
    return request.app.state.sync_engine
