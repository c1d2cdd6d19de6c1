from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from jobtrack.services.engine import get_engine

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


class CompareRequest(BaseModel):
    job_ids: list[str]


@router.get("")
async def list_jobs(
    status: Optional[str] = None,
    project_id: Optional[str] = None,
    job_manager: Optional[str] = None,
    q: Optional[str] = Query(None, description="matches name, job number or client"),
    limit: int = Query(100, ge=1, le=500),
) -> list[dict[str, Any]]:
    return await get_engine().data_access.get_all_jobs_summary(
        status=status,
        project_id=project_id,
        job_manager=job_manager,
        query=q,
        limit=limit,
    )


# Registered ahead of /{job_id} so the literal paths win
@router.get("/at-risk")
async def at_risk_jobs(
    limit: Optional[int] = Query(None, ge=1),
    min_risk_score: Optional[float] = Query(None, ge=0, le=100),
) -> dict[str, Any]:
    return await get_engine().insights.find_at_risk_jobs(limit=limit, min_risk_score=min_risk_score)


@router.post("/compare")
async def compare_jobs(body: CompareRequest) -> dict[str, Any]:
    return await get_engine().analytics.compare_jobs(body.job_ids)


@router.get("/{job_id}/metrics")
async def job_metrics(job_id: str) -> dict[str, Any]:
    return await get_engine().data_access.get_job_metrics(job_id)


@router.get("/{job_id}/cost-codes")
async def job_cost_codes(job_id: str) -> list[dict[str, Any]]:
    return await get_engine().data_access.get_cost_code_analysis(job_id)


@router.get("/{job_id}/schedule")
async def job_schedule(job_id: str) -> dict[str, Any]:
    return await get_engine().data_access.get_schedule_analysis(job_id)


@router.get("/{job_id}/team")
async def job_team(job_id: str) -> dict[str, Any]:
    return await get_engine().data_access.get_team_performance(job_id)


@router.get("/{job_id}/evm")
async def job_evm(job_id: str) -> dict[str, Any]:
    return await get_engine().analytics.calculate_evm(job_id)


@router.get("/{job_id}/variance")
async def job_variance(job_id: str) -> dict[str, Any]:
    return await get_engine().analytics.calculate_variance(job_id)


@router.get("/{job_id}/trends")
async def job_trends(job_id: str, days: Optional[int] = Query(None, ge=1, le=365)) -> dict[str, Any]:
    return await get_engine().analytics.calculate_trends(job_id, days)


@router.get("/{job_id}/health")
async def job_health(job_id: str) -> dict[str, Any]:
    return await get_engine().analytics.get_job_health_score(job_id)


@router.get("/{job_id}/forecast")
async def job_forecast(job_id: str, forecast_type: str = "both") -> dict[str, Any]:
    return await get_engine().insights.forecast_job(job_id, forecast_type)


@router.get("/{job_id}/risk")
async def job_risk(job_id: str) -> dict[str, Any]:
    return await get_engine().insights.analyze_job_risk(job_id)


@router.get("/{job_id}/recommendations")
async def job_recommendations(job_id: str) -> dict[str, Any]:
    return await get_engine().insights.get_job_recommendations(job_id)


@router.get("/{job_id}/progress")
async def job_progress(job_id: str) -> dict[str, Any]:
    return await get_engine().progress.get_job_progress_summary(job_id)
