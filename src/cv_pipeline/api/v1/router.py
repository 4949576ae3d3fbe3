from fastapi import APIRouter

from cv_pipeline.api.v1 import candidates, crm_sync, cvs, health

api_v1_router = APIRouter()
api_v1_router.include_router(health.router)
api_v1_router.include_router(candidates.router)
api_v1_router.include_router(cvs.router)
api_v1_router.include_router(crm_sync.router)
