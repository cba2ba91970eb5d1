import logging

from fastapi import APIRouter

from webrelay.proxy.route import router as proxy_router
from webrelay.vars import PROXY_BASE_PATH

router = APIRouter()

logger = logging.getLogger("uvicorn.error")

if PROXY_BASE_PATH:
    router.prefix = PROXY_BASE_PATH
    logger.info(f"Using PROXY_BASE_PATH: {PROXY_BASE_PATH}")
else:
    logger.info("No PROXY_BASE_PATH set, using root path")


@router.get("/healthz")
async def healthz():
    return {"status": "ok"}


router.include_router(proxy_router)
