from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from jobtrack.services.data_access import (
    JobDataAccess,
    counts_toward_actuals,
    entry_cost,
    percent_of,
)
from jobtrack.services.errors import InvalidInputError

logger = logging.getLogger(__name__)


@dataclass
class JobSnapshot:
    """Everything the scoring functions need for one job, fetched once."""

    metrics: dict[str, Any]
    schedule: dict[str, Any]
    cost_codes: list[dict[str, Any]]

    @property
    def job_id(self) -> str:
        return self.metrics["job"]["id"]


def earned_value_metrics(metrics: dict[str, Any], schedule: dict[str, Any]) -> dict[str, Any]:
    contract_value = metrics["job"]["contract_value"]
    progress = metrics["progress"] / 100
    actual_cost = metrics["total_cost"]

    expected_percent = min(100.0, schedule["expected_progress"])
    planned_value = contract_value * expected_percent / 100
    earned_value = contract_value * progress

    if planned_value > 0:
        spi = earned_value / planned_value
    else:
        spi = 1.0 if progress > 0 else 0.0

    if actual_cost > 0:
        cpi = earned_value / actual_cost
    elif progress > 0:
        # work done with no recorded spend reads as on budget
        cpi = 1.0
    else:
        cpi = 0.0

    eac = contract_value / cpi if cpi > 0 else contract_value
    return {
        "job_id": metrics["job"]["id"],
        "contract_value": contract_value,
        "progress": progress,
        "expected_progress": expected_percent,
        "planned_value": planned_value,
        "earned_value": earned_value,
        "actual_cost": actual_cost,
        "schedule_performance_index": spi,
        "cost_performance_index": cpi,
        "schedule_variance": earned_value - planned_value,
        "cost_variance": earned_value - actual_cost,
        "estimate_at_completion": eac,
        "variance_at_completion": contract_value - eac,
        "estimate_to_complete": eac - actual_cost,
    }


class AnalyticsEngine:
    def __init__(self, data_access: JobDataAccess) -> None:
        self.data_access = data_access
        self.settings = data_access.settings

    async def snapshot(self, identifier: str) -> JobSnapshot:
        job = await self.data_access.load_job(identifier)
        metrics, schedule, cost_codes = await asyncio.gather(
            self.data_access.get_job_metrics(job.id),
            self.data_access.get_schedule_analysis(job.id),
            self.data_access.get_cost_code_analysis(job.id),
        )
        return JobSnapshot(metrics=metrics, schedule=schedule, cost_codes=cost_codes)

    def variance_of(self, snapshot: JobSnapshot) -> dict[str, Any]:
        metrics, schedule = snapshot.metrics, snapshot.schedule
        budget_percent = metrics["budget_variance_percent"]
        progress_variance = schedule["progress_variance"]

        threshold = self.settings.variance_threshold_percent
        flagged = sorted(
            (cc for cc in snapshot.cost_codes if abs(cc["cost_variance_percent"]) > threshold),
            key=lambda cc: abs(cc["cost_variance_percent"]),
            reverse=True,
        )
        return {
            "job_id": snapshot.job_id,
            "budget_variance": {
                "total": metrics["budget_variance"],
                "percent": budget_percent,
                "status": "under_budget" if budget_percent >= 0 else "over_budget",
            },
            "schedule_variance": {
                "days": schedule["schedule_variance"],
                "progress_variance": progress_variance,
                "status": "ahead" if progress_variance >= 0 else "behind",
            },
            "cost_code_variances": flagged,
            "critical_variances": flagged[: self.settings.critical_variance_limit],
        }

    @staticmethod
    def health_of(snapshot: JobSnapshot, evm: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        evm = evm or earned_value_metrics(snapshot.metrics, snapshot.schedule)
        budget_percent = snapshot.metrics["budget_variance_percent"]
        progress_variance = snapshot.schedule["progress_variance"]
        cpi = evm["cost_performance_index"]
        overdue = snapshot.schedule["overdue_tasks"]

        score = 100
        if budget_percent < -10:
            score -= 30
        elif budget_percent < -5:
            score -= 15
        elif budget_percent < 0:
            score -= 5

        if progress_variance < -20:
            score -= 30
        elif progress_variance < -10:
            score -= 15
        elif progress_variance < 0:
            score -= 5

        if cpi < 0.9:
            score -= 20
        elif cpi < 0.95:
            score -= 10

        if overdue > 5:
            score -= 15
        elif overdue > 0:
            score -= 5

        score = max(0, min(100, score))
        if score < 50:
            status = "critical"
        elif score < 70:
            status = "warning"
        elif score < 85:
            status = "good"
        else:
            status = "excellent"

        return {
            "job_id": snapshot.job_id,
            "score": score,
            "status": status,
            "factors": {
                "budget_variance_percent": budget_percent,
                "progress_variance": progress_variance,
                "cost_performance_index": cpi,
                "overdue_tasks": overdue,
            },
        }

    async def calculate_evm(self, identifier: str) -> dict[str, Any]:
        job = await self.data_access.load_job(identifier)
        metrics, schedule = await asyncio.gather(
            self.data_access.get_job_metrics(job.id),
            self.data_access.get_schedule_analysis(job.id),
        )
        return earned_value_metrics(metrics, schedule)

    async def calculate_variance(self, identifier: str) -> dict[str, Any]:
        return self.variance_of(await self.snapshot(identifier))

    async def get_job_health_score(self, identifier: str) -> dict[str, Any]:
        return self.health_of(await self.snapshot(identifier))

    async def calculate_trends(self, identifier: str, days: Optional[int] = None) -> dict[str, Any]:
        days = days if days is not None else self.settings.trend_window_days
        if days <= 0:
            raise InvalidInputError("days must be a positive number")
        job = await self.data_access.load_job(identifier)
        since = self.data_access.clock() - timedelta(days=days)
        entries = await self.data_access.store.list_time_entries(job_id=job.id, since=since)

        daily: dict[str, dict[str, Any]] = defaultdict(lambda: {"hours": 0.0, "cost": 0.0, "entries": 0})
        for entry in entries:
            if not counts_toward_actuals(entry, self.settings):
                continue
            bucket = daily[entry.date.date().isoformat()]
            bucket["hours"] += entry.hours
            bucket["cost"] += entry_cost(entry, self.settings)
            bucket["entries"] += 1

        series = [{"date": day, **daily[day]} for day in sorted(daily)]
        average = sum(point["hours"] for point in series) / len(series) if series else 0.0
        result: dict[str, Any] = {
            "job_id": job.id,
            "period_days": days,
            "trend_data": series,
            "average_daily_hours": average,
        }
        if len(series) < 2:
            result.update(trend="insufficient_data", trend_percent=0.0)
            return result

        middle = len(series) // 2
        first = sum(point["hours"] for point in series[:middle]) / middle
        second = sum(point["hours"] for point in series[middle:]) / (len(series) - middle)
        if second > first:
            trend = "increasing"
        elif second < first:
            trend = "decreasing"
        else:
            trend = "stable"
        result.update(
            trend=trend,
            trend_percent=percent_of(second - first, first) if first > 0 else 0.0,
        )
        return result

    async def compare_jobs(self, identifiers: list[str]) -> dict[str, Any]:
        if len(identifiers) < 2:
            raise InvalidInputError("At least two jobs are required for a comparison")

        resolved = await asyncio.gather(*(self.data_access.resolve_job_id(i) for i in identifiers))
        job_ids: list[str] = []
        for identifier, job_id in zip(identifiers, resolved):
            if job_id is None:
                logger.warning("compare_jobs: job %s does not resolve, dropping it", identifier)
            elif job_id not in job_ids:
                job_ids.append(job_id)
        if len(job_ids) < 2:
            raise InvalidInputError("At least two existing jobs are required for a comparison")

        snapshots = await asyncio.gather(*(self.snapshot(job_id) for job_id in job_ids))
        comparisons = []
        for snapshot in snapshots:
            comparisons.append(
                {
                    "job_id": snapshot.job_id,
                    "job": snapshot.metrics["job"],
                    "metrics": snapshot.metrics,
                    "evm": earned_value_metrics(snapshot.metrics, snapshot.schedule),
                    "variance": self.variance_of(snapshot),
                }
            )

        count = len(comparisons)
        best = worst = comparisons[0]
        for current in comparisons[1:]:
            cpi = current["evm"]["cost_performance_index"]
            if cpi > best["evm"]["cost_performance_index"]:
                best = current
            if cpi < worst["evm"]["cost_performance_index"]:
                worst = current

        return {
            "jobs": comparisons,
            "averages": {
                "progress": sum(c["metrics"]["progress"] for c in comparisons) / count,
                "budget_variance_percent": sum(c["metrics"]["budget_variance_percent"] for c in comparisons) / count,
                "cost_performance_index": sum(c["evm"]["cost_performance_index"] for c in comparisons) / count,
            },
            "best_performer": best,
            "worst_performer": worst,
        }
