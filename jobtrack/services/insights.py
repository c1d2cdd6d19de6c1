from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Optional

from jobtrack.services.analytics import AnalyticsEngine, JobSnapshot, earned_value_metrics
from jobtrack.services.data_access import iso
from jobtrack.services.errors import InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)

FORECAST_TYPES = {"completion", "cost", "both"}


def risk_level(score: float) -> str:
    if score < 50:
        return "high"
    if score < 70:
        return "medium"
    return "low"


def _clamp_score(score: float) -> float:
    return max(0, min(100, score))


class JobInsights:
    def __init__(self, analytics: AnalyticsEngine) -> None:
        self.analytics = analytics
        self.data_access = analytics.data_access
        self.settings = analytics.settings

    async def forecast_job(self, identifier: str, forecast_type: str = "both") -> dict[str, Any]:
        if forecast_type not in FORECAST_TYPES:
            raise InvalidInputError(f"forecast_type must be one of {sorted(FORECAST_TYPES)}")
        snapshot = await self.analytics.snapshot(identifier)
        evm = earned_value_metrics(snapshot.metrics, snapshot.schedule)
        confidence = self.settings.forecast_confidence
        result: dict[str, Any] = {"job_id": snapshot.job_id, "forecast_type": forecast_type}

        if forecast_type in {"completion", "both"}:
            days_remaining = snapshot.metrics["days_remaining"]
            predicted = None
            if days_remaining is not None and days_remaining > 0:
                padded = days_remaining * self.settings.forecast_schedule_factor
                predicted = iso(self.data_access.clock() + timedelta(days=padded))
            result["completion"] = {
                "predicted_date": predicted,
                "days_remaining": days_remaining,
                "confidence": confidence,
                "factors": {
                    "current_progress": snapshot.metrics["progress"],
                    "progress_variance": snapshot.schedule["progress_variance"],
                    "schedule_performance_index": evm["schedule_performance_index"],
                },
            }

        if forecast_type in {"cost", "both"}:
            result["cost"] = {
                "predicted_final_cost": evm["estimate_at_completion"],
                "variance_at_completion": evm["variance_at_completion"],
                "estimate_to_complete": evm["estimate_to_complete"],
                "confidence": confidence,
                "factors": {
                    "current_cost": snapshot.metrics["total_cost"],
                    "cost_performance_index": evm["cost_performance_index"],
                    "budget_variance_percent": snapshot.metrics["budget_variance_percent"],
                },
            }
        return result

    async def analyze_job_risk(self, identifier: str) -> dict[str, Any]:
        snapshot = await self.analytics.snapshot(identifier)
        evm = earned_value_metrics(snapshot.metrics, snapshot.schedule)
        health = self.analytics.health_of(snapshot, evm)

        budget_percent = snapshot.metrics["budget_variance_percent"]
        progress_variance = snapshot.schedule["progress_variance"]
        overdue = snapshot.schedule["overdue_tasks"]
        cpi = evm["cost_performance_index"]

        score = health["score"]
        factors = []
        if budget_percent < -5:
            score -= 20
            factors.append(
                {
                    "factor": "budget_overrun",
                    "severity": "high",
                    "description": f"Over budget by {abs(budget_percent):.1f}%",
                }
            )
        if progress_variance < -10:
            score -= 15
            factors.append(
                {
                    "factor": "schedule_delay",
                    "severity": "high",
                    "description": f"Behind schedule by {abs(progress_variance):.1f}%",
                }
            )
        if overdue > 0:
            score -= 10
            factors.append(
                {
                    "factor": "overdue_tasks",
                    "severity": "medium",
                    "description": f"{overdue} overdue tasks",
                }
            )
        if cpi < 0.9:
            score -= 15
            factors.append(
                {
                    "factor": "cost_efficiency",
                    "severity": "high",
                    "description": f"CPI of {cpi:.2f} indicates cost overruns",
                }
            )

        score = _clamp_score(score)
        return {
            "job_id": snapshot.job_id,
            "risk_score": score,
            "risk_level": risk_level(score),
            "risk_factors": factors,
            "health": health,
        }

    def _ranking_score(self, snapshot: JobSnapshot) -> tuple[float, dict[str, Any]]:
        evm = earned_value_metrics(snapshot.metrics, snapshot.schedule)
        health = self.analytics.health_of(snapshot, evm)
        budget_percent = snapshot.metrics["budget_variance_percent"]
        progress_variance = snapshot.schedule["progress_variance"]
        overdue = snapshot.schedule["overdue_tasks"]
        cpi = evm["cost_performance_index"]

        score = health["score"]
        if budget_percent < -5:
            score -= 20
        elif budget_percent < -2:
            score -= 10

        if abs(progress_variance) > 20:
            score -= 15
        elif abs(progress_variance) > 10:
            score -= 10

        if overdue > 5:
            score -= 15
        elif overdue > 0:
            score -= 10

        # CPI of 0 means no signal yet, not a cost overrun
        if 0 < cpi < 0.9:
            score -= 15
        elif 0 < cpi < 0.95:
            score -= 10

        return _clamp_score(score), {
            "budget_variance_percent": budget_percent,
            "progress_variance": progress_variance,
            "overdue_tasks": overdue,
            "cost_performance_index": cpi,
            "health_score": health["score"],
        }

    async def _scan_one(self, job_id: str) -> Optional[dict[str, Any]]:
        try:
            snapshot = await self.analytics.snapshot(job_id)
        except NotFoundError:
            logger.warning("find_at_risk_jobs: job %s disappeared during the scan, skipping", job_id)
            return None
        score, factors = self._ranking_score(snapshot)
        job = snapshot.metrics["job"]
        return {
            "job_id": job["id"],
            "job_number": job["job_number"],
            "name": job["name"],
            "status": job["status"],
            "risk_score": score,
            "risk_level": risk_level(score),
            "factors": factors,
        }

    async def find_at_risk_jobs(
        self,
        limit: Optional[int] = None,
        min_risk_score: Optional[float] = None,
    ) -> dict[str, Any]:
        limit = limit if limit is not None else self.settings.at_risk_limit
        threshold = min_risk_score if min_risk_score is not None else self.settings.at_risk_min_score

        jobs = await self.data_access.store.list_jobs(limit=self.settings.job_scan_limit)
        scanned = await asyncio.gather(*(self._scan_one(job.id) for job in jobs))
        at_risk = sorted(
            (row for row in scanned if row is not None and row["risk_score"] < threshold),
            key=lambda row: row["risk_score"],
        )
        logger.debug("find_at_risk_jobs: %d of %d scanned jobs below %s", len(at_risk), len(jobs), threshold)

        return {
            "jobs": at_risk[:limit],
            "total_at_risk": len(at_risk),
            "jobs_scanned": len(jobs),
            "min_risk_score": threshold,
            "summary": {
                "high": sum(1 for row in at_risk if row["risk_level"] == "high"),
                "medium": sum(1 for row in at_risk if row["risk_level"] == "medium"),
                "low": sum(1 for row in at_risk if row["risk_level"] == "low"),
            },
        }

    async def get_job_recommendations(self, identifier: str) -> dict[str, Any]:
        snapshot = await self.analytics.snapshot(identifier)
        health = self.analytics.health_of(snapshot)
        budget_percent = snapshot.metrics["budget_variance_percent"]
        progress_variance = snapshot.schedule["progress_variance"]
        overdue = snapshot.schedule["overdue_tasks"]

        recommendations = []
        if budget_percent < -5:
            recommendations.append(
                {
                    "priority": "high",
                    "category": "budget",
                    "title": "Address budget overrun",
                    "description": f"Job is {abs(budget_percent):.1f}% over budget.",
                    "actions": [
                        "Review cost codes with the largest variances",
                        "Identify scope changes or change orders",
                        "Tighten approval of overtime",
                    ],
                }
            )
        if progress_variance < -10:
            recommendations.append(
                {
                    "priority": "high",
                    "category": "schedule",
                    "title": "Recover schedule",
                    "description": f"Progress is {abs(progress_variance):.1f}% behind plan.",
                    "actions": [
                        "Re-sequence remaining work on the critical path",
                        "Add crew capacity where tasks are blocked",
                    ],
                }
            )
        if overdue > 0:
            recommendations.append(
                {
                    "priority": "medium",
                    "category": "tasks",
                    "title": "Clear overdue tasks",
                    "description": f"{overdue} tasks are past their due date.",
                    "actions": [
                        "Reassign or re-date overdue tasks",
                        "Confirm blockers with the field supervisor",
                    ],
                }
            )
        if health["score"] < 70:
            recommendations.append(
                {
                    "priority": "high",
                    "category": "overall",
                    "title": "Schedule a job review",
                    "description": f"Health score is {health['score']} ({health['status']}).",
                    "actions": ["Hold a project review with the job manager"],
                }
            )

        return {
            "job_id": snapshot.job_id,
            "health_score": health["score"],
            "recommendations": recommendations,
        }
