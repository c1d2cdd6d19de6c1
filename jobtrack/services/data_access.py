from __future__ import annotations

import asyncio
import logging
import math
from collections import Counter, defaultdict
from datetime import datetime
from typing import Any, Callable, Optional

from jobtrack.services.config import Settings, get_settings
from jobtrack.services.errors import NotFoundError
from jobtrack.services.models import Job, Task, TimeEntry, utc_now
from jobtrack.services.store import JobStore

logger = logging.getLogger(__name__)

PENDING_STATUSES = {"draft", "submitted"}
UNKNOWN_COST_CODE = "UNKNOWN"


def entry_cost(entry: TimeEntry, settings: Settings) -> float:
    if entry.total_cost is not None:
        return entry.total_cost
    return (
        entry.regular_hours * settings.regular_rate
        + entry.overtime_hours * settings.overtime_rate
        + entry.double_time_hours * settings.double_time_rate
    )


def counts_toward_actuals(entry: TimeEntry, settings: Settings) -> bool:
    if entry.status == "approved":
        return True
    return settings.include_unapproved_time and entry.status in PENDING_STATUSES


def day_span(start: datetime, end: datetime) -> int:
    """Whole days from start to end, rounded up."""
    return math.ceil((end - start).total_seconds() / 86400)


def percent_of(part: float, whole: float) -> float:
    if whole == 0:
        return 0.0
    return part / whole * 100


def resolve_progress(job: Job, tasks: list[Task]) -> tuple[float, str]:
    # A stated overall_progress wins, 0 included
    if job.overall_progress is not None:
        stated = float(job.overall_progress)
        if not 0 <= stated <= 100:
            logger.warning("job %s states progress %s outside 0-100; clamping", job.id, stated)
            return max(0.0, min(100.0, stated)), f"job (clamped from {stated:g})"
        return stated, "job"
    completed = sum(1 for task in tasks if task.status == "completed")
    return percent_of(completed, len(tasks)), "tasks"


async def load_job(store: JobStore, identifier: str) -> Job:
    """Fetch a job by id, falling back to its job number."""
    job = await store.get_job(identifier)
    if job is None:
        job_id = await store.find_job_id(identifier)
        if job_id is not None:
            job = await store.get_job(job_id)
    if job is None:
        raise NotFoundError(f"Job not found: {identifier}")
    return job


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def job_header(job: Job) -> dict[str, Any]:
    return {
        "id": job.id,
        "job_number": job.job_number,
        "name": job.name,
        "status": job.status,
        "client_name": job.client_name,
        "location": job.location,
        "contract_value": job.contract_value,
        "overall_progress": job.overall_progress,
        "planned_start_date": iso(job.planned_start_date),
        "planned_end_date": iso(job.planned_end_date),
        "actual_start_date": iso(job.actual_start_date),
        "actual_end_date": iso(job.actual_end_date),
    }


class JobDataAccess:
    def __init__(
        self,
        store: JobStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock

    async def resolve_job_id(self, identifier: str) -> Optional[str]:
        return await self.store.find_job_id(identifier)

    async def load_job(self, identifier: str) -> Job:
        return await load_job(self.store, identifier)

    def _days_remaining(self, job: Job, now: datetime) -> Optional[int]:
        if job.planned_end_date is None:
            return None
        return day_span(now, job.planned_end_date)

    @staticmethod
    def _schedule_variance(job: Job) -> Optional[int]:
        if job.actual_end_date is None or job.planned_end_date is None:
            return None
        return day_span(job.planned_end_date, job.actual_end_date)

    async def get_job_metrics(self, identifier: str) -> dict[str, Any]:
        job = await self.load_job(identifier)
        tasks, entries, sov_items, reports = await asyncio.gather(
            self.store.list_tasks(job_id=job.id),
            self.store.list_time_entries(job_id=job.id),
            self.store.list_sov_items(job_id=job.id),
            self.store.list_progress_reports(job.id),
        )
        now = self.clock()

        total_hours = total_cost = pending_hours = pending_cost = 0.0
        counted = 0
        breakdown: dict[str, dict[str, float]] = defaultdict(lambda: {"hours": 0.0, "cost": 0.0, "entries": 0})
        for entry in entries:
            cost = entry_cost(entry, self.settings)
            if counts_toward_actuals(entry, self.settings):
                counted += 1
                total_hours += entry.hours
                total_cost += cost
                bucket = breakdown[entry.cost_code or UNKNOWN_COST_CODE]
                bucket["hours"] += entry.hours
                bucket["cost"] += cost
                bucket["entries"] += 1
            elif entry.status in PENDING_STATUSES:
                pending_hours += entry.hours
                pending_cost += cost

        progress, progress_source = resolve_progress(job, tasks)
        completed_tasks = sum(1 for task in tasks if task.status == "completed")
        budget = job.budget
        budget_variance = budget - total_cost
        latest_report = reports[0] if reports else None

        logger.debug(
            "metrics for job %s: %d tasks, %d/%d counted entries",
            job.id,
            len(tasks),
            counted,
            len(entries),
        )
        return {
            "job": job_header(job),
            "total_hours": total_hours,
            "total_cost": total_cost,
            "pending_hours": pending_hours,
            "pending_cost": pending_cost,
            "time_entry_count": counted,
            "cost_code_breakdown": dict(breakdown),
            "progress": progress,
            "progress_source": progress_source,
            "task_count": len(tasks),
            "completed_tasks": completed_tasks,
            "task_progress": percent_of(completed_tasks, len(tasks)),
            "budget": budget,
            "budget_variance": budget_variance,
            "budget_variance_percent": percent_of(budget_variance, budget),
            "days_remaining": self._days_remaining(job, now),
            "schedule_variance": self._schedule_variance(job),
            "sov_item_count": len(sov_items),
            "progress_report_count": len(reports),
            "latest_progress_report": (
                {
                    "id": latest_report.id,
                    "report_number": latest_report.report_number,
                    "report_date": iso(latest_report.report_date),
                    "status": latest_report.status,
                    "completion_percentage": latest_report.completion_percentage,
                }
                if latest_report
                else None
            ),
        }

    async def get_cost_code_analysis(self, identifier: str) -> list[dict[str, Any]]:
        job = await self.load_job(identifier)
        entries = await self.store.list_time_entries(job_id=job.id)

        actuals: dict[str, dict[str, float]] = defaultdict(lambda: {"hours": 0.0, "cost": 0.0, "entries": 0})
        for entry in entries:
            if not entry.cost_code or not counts_toward_actuals(entry, self.settings):
                continue
            bucket = actuals[entry.cost_code]
            bucket["hours"] += entry.hours
            bucket["cost"] += entry_cost(entry, self.settings)
            bucket["entries"] += 1

        analysis = []
        for cost_code in job.cost_codes:
            actual = actuals.get(cost_code.code, {"hours": 0.0, "cost": 0.0, "entries": 0})
            hours_variance = cost_code.budget_hours - actual["hours"]
            cost_variance = cost_code.budget_cost - actual["cost"]
            burn_rate = 0.0
            if cost_code.budget_hours > 0 and actual["hours"] > 0:
                burn_rate = actual["hours"] / cost_code.budget_hours * 100
            analysis.append(
                {
                    "code": cost_code.code,
                    "description": cost_code.description,
                    "category": cost_code.category,
                    "budget_hours": cost_code.budget_hours,
                    "budget_cost": cost_code.budget_cost,
                    "actual_hours": actual["hours"],
                    "actual_cost": actual["cost"],
                    "hours_variance": hours_variance,
                    "hours_variance_percent": percent_of(hours_variance, cost_code.budget_hours),
                    "cost_variance": cost_variance,
                    "cost_variance_percent": percent_of(cost_variance, cost_code.budget_cost),
                    "burn_rate": burn_rate,
                    "entry_count": int(actual["entries"]),
                }
            )
        return analysis

    async def get_schedule_analysis(self, identifier: str) -> dict[str, Any]:
        job = await self.load_job(identifier)
        tasks = await self.store.list_tasks(job_id=job.id)
        now = self.clock()

        elapsed_days = planned_duration = 0
        if job.planned_start_date is not None:
            elapsed_days = day_span(job.planned_start_date, now)
            if job.planned_end_date is not None:
                planned_duration = day_span(job.planned_start_date, job.planned_end_date)

        expected_raw = 0.0
        if planned_duration > 0:
            expected_raw = elapsed_days / planned_duration * 100
        # Progress variance is measured against the same capped value EVM plans with
        expected_progress = min(100.0, max(0.0, expected_raw))
        actual_progress, progress_source = resolve_progress(job, tasks)

        overdue = [
            task
            for task in tasks
            if task.due_date is not None and task.due_date < now and task.status != "completed"
        ]
        return {
            "job_id": job.id,
            "planned_start_date": iso(job.planned_start_date),
            "planned_end_date": iso(job.planned_end_date),
            "elapsed_days": elapsed_days,
            "planned_duration": planned_duration,
            "expected_progress": expected_progress,
            "expected_progress_raw": expected_raw,
            "actual_progress": actual_progress,
            "progress_source": progress_source,
            "progress_variance": actual_progress - expected_progress,
            "days_remaining": self._days_remaining(job, now),
            "schedule_variance": self._schedule_variance(job),
            "overdue_tasks": len(overdue),
            "overdue_task_list": [
                {
                    "id": task.id,
                    "title": task.title,
                    "status": task.status,
                    "due_date": iso(task.due_date),
                    "days_overdue": day_span(task.due_date, now),
                }
                for task in overdue
            ],
            "task_status_counts": dict(Counter(task.status for task in tasks)),
            "test_package_status_counts": dict(Counter(pkg.status for pkg in job.test_packages)),
        }

    async def get_team_performance(self, identifier: str) -> dict[str, Any]:
        job = await self.load_job(identifier)
        entries = [
            entry
            for entry in await self.store.list_time_entries(job_id=job.id)
            if counts_toward_actuals(entry, self.settings)
        ]
        workers = await self.store.list_workers({entry.worker_id for entry in entries if entry.worker_id})
        by_id = {worker.id: worker for worker in workers}

        stats: dict[str, dict[str, Any]] = {}
        for entry in entries:
            key = entry.worker_id or "unassigned"
            if key not in stats:
                worker = by_id.get(key)
                stats[key] = {
                    "worker_id": entry.worker_id,
                    "name": worker.name if worker else None,
                    "role": worker.role if worker else None,
                    "regular_hours": 0.0,
                    "overtime_hours": 0.0,
                    "double_time_hours": 0.0,
                    "total_hours": 0.0,
                    "total_cost": 0.0,
                    "entry_count": 0,
                    "cost_codes": defaultdict(float),
                }
            row = stats[key]
            row["regular_hours"] += entry.regular_hours
            row["overtime_hours"] += entry.overtime_hours
            row["double_time_hours"] += entry.double_time_hours
            row["total_hours"] += entry.hours
            row["total_cost"] += entry_cost(entry, self.settings)
            row["entry_count"] += 1
            row["cost_codes"][entry.cost_code or UNKNOWN_COST_CODE] += entry.hours

        team = []
        for row in sorted(stats.values(), key=lambda item: item["total_hours"], reverse=True):
            row["overtime_percent"] = percent_of(row["overtime_hours"] + row["double_time_hours"], row["total_hours"])
            row["cost_codes"] = dict(row["cost_codes"])
            team.append(row)

        return {
            "job_id": job.id,
            "job_manager": job.job_manager,
            "field_supervisor": job.field_supervisor,
            "worker_count": len(team),
            "total_hours": sum(row["total_hours"] for row in team),
            "workers": team,
        }

    async def get_all_jobs_summary(
        self,
        status: Optional[str] = None,
        project_id: Optional[str] = None,
        job_manager: Optional[str] = None,
        query: Optional[str] = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        jobs = await self.store.list_jobs(
            status=status,
            project_id=project_id,
            job_manager=job_manager,
            query=query,
            limit=limit,
        )
        return [
            {
                **job_header(job),
                "job_manager": job.job_manager,
                "project_id": job.project_id,
                "budget": job.budget,
            }
            for job in jobs
        ]
