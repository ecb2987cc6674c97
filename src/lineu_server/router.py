from fastapi import APIRouter

from lineu_server.routers.jobs import router as jobs_router
from lineu_server.routers.jobs import stats_router
from lineu_server.routers.webhook import router as webhook_router

router = APIRouter()
router.include_router(webhook_router)
router.include_router(stats_router)
router.include_router(jobs_router)
