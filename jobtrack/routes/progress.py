from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter

from jobtrack.services.engine import get_engine

router = APIRouter(prefix="/api", tags=["progress"])


@router.get("/sov/{sov_item_id}/progress")
async def sov_progress(sov_item_id: str, job_id: Optional[str] = None) -> dict[str, Any]:
    return await get_engine().progress.calculate_sov_progress(sov_item_id, job_id)


@router.get("/work-orders/{work_order_id}/progress")
async def work_order_progress(work_order_id: str) -> dict[str, Any]:
    return await get_engine().progress.calculate_work_order_progress(work_order_id)
