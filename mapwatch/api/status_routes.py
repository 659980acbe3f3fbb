"""MapWatch — Worker Status Routes."""

from fastapi import APIRouter, Depends

from mapwatch.core.logging import get_logger
from mapwatch.scheduler.jobs import Workers, get_workers, status_snapshot

logger = get_logger("api.status")

router = APIRouter(prefix="/workers", tags=["Workers"])


@router.get("/status")
async def workers_status(registry: Workers | None = Depends(get_workers)):
    """Last cycle of every job, current tier sizes and the cold rotation cursor."""
    return status_snapshot(registry)
