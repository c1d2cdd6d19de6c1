"""Completion and earned value per line item, work order and job.

Tasks reach a schedule-of-values line item through more than one path. Each
path is a resolver; resolvers run in order and their candidates are merged,
first occurrence of a task id wins.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

from jobtrack.services.config import Settings, get_settings
from jobtrack.services.data_access import counts_toward_actuals, entry_cost, load_job
from jobtrack.services.errors import NotFoundError
from jobtrack.services.models import ScheduleOfValuesItem, Task, TimeEntry
from jobtrack.services.store import JobStore

logger = logging.getLogger(__name__)


class TaskResolver(Protocol):
    name: str

    async def resolve(self, store: JobStore, item: ScheduleOfValuesItem, job_id: str) -> list[Task]: ...


class DirectLinkResolver:
    name = "direct_task_links"

    async def resolve(self, store: JobStore, item: ScheduleOfValuesItem, job_id: str) -> list[Task]:
        return await store.list_tasks(job_id=job_id, schedule_of_values_id=item.id)


class CostCodeResolver:
    name = "cost_code_matches"

    async def resolve(self, store: JobStore, item: ScheduleOfValuesItem, job_id: str) -> list[Task]:
        if not item.cost_code:
            return []
        tasks = await store.list_tasks(job_id=job_id, cost_code=item.cost_code)
        return [task for task in tasks if task.schedule_of_values_id != item.id]


DEFAULT_RESOLVERS: tuple[TaskResolver, ...] = (DirectLinkResolver(), CostCodeResolver())


@dataclass
class TaskProgress:
    completion_percentage: float
    earned_value: float
    method: str
    total_tasks: int
    completed_tasks: int
    in_progress_tasks: int
    not_started_tasks: int


def calculate_progress_from_tasks(
    tasks: Sequence[Task],
    line_item: Optional[ScheduleOfValuesItem] = None,
) -> TaskProgress:
    if not tasks:
        return TaskProgress(0.0, 0.0, "none", 0, 0, 0, 0)

    total = len(tasks)
    completed = sum(1 for task in tasks if task.status == "completed")
    in_progress = sum(1 for task in tasks if task.status == "in_progress")
    not_started = sum(1 for task in tasks if task.status == "not_started")

    count_weighted = (completed + 0.5 * in_progress) / total * 100
    average = sum(task.percent for task in tasks) / total
    units = 0.0
    if line_item is not None and line_item.quantity > 0:
        units = sum(task.units for task in tasks) / line_item.quantity * 100

    if units > 0:
        percentage, method = units, "units"
    elif average == 0 and count_weighted > 0:
        percentage, method = count_weighted, "task_count"
    else:
        percentage, method = average, "completion_average"

    percentage = max(0.0, min(100.0, percentage))
    earned_value = percentage / 100 * line_item.total_value if line_item is not None else 0.0
    return TaskProgress(percentage, earned_value, method, total, completed, in_progress, not_started)


class ProgressReconciliationService:
    def __init__(
        self,
        store: JobStore,
        settings: Optional[Settings] = None,
        resolvers: Sequence[TaskResolver] = DEFAULT_RESOLVERS,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.resolvers = tuple(resolvers)

    def _actuals(self, entries: list[TimeEntry]) -> tuple[float, float]:
        counted = [entry for entry in entries if counts_toward_actuals(entry, self.settings)]
        return (
            sum(entry.hours for entry in counted),
            sum(entry_cost(entry, self.settings) for entry in counted),
        )

    async def resolve_tasks(self, item: ScheduleOfValuesItem, job_id: str) -> tuple[list[Task], dict[str, int]]:
        candidates = await asyncio.gather(
            *(resolver.resolve(self.store, item, job_id) for resolver in self.resolvers)
        )
        seen: set[str] = set()
        merged: list[Task] = []
        sources: dict[str, int] = {}
        for resolver, tasks in zip(self.resolvers, candidates):
            fresh = [task for task in tasks if task.id not in seen]
            seen.update(task.id for task in fresh)
            merged.extend(fresh)
            sources[resolver.name] = len(fresh)
        return merged, sources

    async def _cost_code_entries(self, item: ScheduleOfValuesItem, job_id: str) -> list[TimeEntry]:
        # a line item without a cost code has no time recorded against it
        if not item.cost_code:
            return []
        return await self.store.list_time_entries(job_id=job_id, cost_code=item.cost_code)

    async def _work_orders_for(self, direct_tasks: list[Task], job_id: str) -> list[dict[str, Any]]:
        ids = sorted({task.work_order_id for task in direct_tasks if task.work_order_id})
        if not ids:
            return []
        work_orders = await self.store.list_work_orders(job_id=job_id, ids=ids)
        return [
            {
                "work_order_id": wo.id,
                "work_order_number": wo.work_order_number,
                "title": wo.title,
                "status": wo.status,
                "completion_percentage": wo.completion_percentage,
            }
            for wo in work_orders
        ]

    async def calculate_sov_progress(self, sov_item_id: str, job_id: Optional[str] = None) -> dict[str, Any]:
        item = await self.store.get_sov_item(sov_item_id)
        if item is None:
            raise NotFoundError(f"Schedule of values item not found: {sov_item_id}")
        job_id = job_id or item.job_id

        (tasks, sources), entries = await asyncio.gather(
            self.resolve_tasks(item, job_id),
            self._cost_code_entries(item, job_id),
        )
        progress = calculate_progress_from_tasks(tasks, item)
        actual_hours, actual_cost = self._actuals(entries)
        direct = [task for task in tasks if task.schedule_of_values_id == item.id]

        return {
            "sov_item_id": item.id,
            "line_number": item.line_number,
            "description": item.description,
            "cost_code": item.cost_code,
            "completion_percentage": progress.completion_percentage,
            "earned_value": progress.earned_value,
            "method": progress.method,
            "total_value": item.total_value,
            "total_tasks": progress.total_tasks,
            "completed_tasks": progress.completed_tasks,
            "in_progress_tasks": progress.in_progress_tasks,
            "not_started_tasks": progress.not_started_tasks,
            "task_ids": [task.id for task in tasks],
            "estimated_hours": item.budget_hours,
            "actual_hours": actual_hours,
            "hours_variance": item.budget_hours - actual_hours,
            "estimated_cost": item.total_value,
            "actual_cost": actual_cost,
            "cost_variance": item.total_value - actual_cost,
            "progress_sources": sources,
            "work_orders": await self._work_orders_for(direct, job_id),
        }

    async def _sov_contributions(self, tasks: list[Task]) -> list[dict[str, Any]]:
        grouped: dict[str, list[Task]] = defaultdict(list)
        for task in tasks:
            if task.schedule_of_values_id:
                grouped[task.schedule_of_values_id].append(task)
        if not grouped:
            return []

        items = {item.id: item for item in await self.store.list_sov_items(ids=list(grouped))}
        contributions = []
        for item_id, linked in grouped.items():
            item = items.get(item_id)
            if item is None:
                logger.warning("tasks reference missing schedule of values item %s", item_id)
                continue
            average = sum(task.percent for task in linked) / len(linked)
            average = max(0.0, min(100.0, average))
            contributions.append(
                {
                    "sov_item_id": item.id,
                    "line_number": item.line_number,
                    "description": item.description,
                    "cost_code": item.cost_code,
                    "total_value": item.total_value,
                    "task_count": len(linked),
                    "average_completion_percentage": average,
                    "estimated_contribution": item.total_value * average / 100,
                }
            )
        return contributions

    async def calculate_work_order_progress(self, work_order_id: str) -> dict[str, Any]:
        work_order = await self.store.get_work_order(work_order_id)
        if work_order is None:
            raise NotFoundError(f"Work order not found: {work_order_id}")

        tasks = await self.store.list_tasks(work_order_id=work_order.id)
        entries, contributions = await asyncio.gather(
            self.store.list_time_entries(task_ids=[task.id for task in tasks]),
            self._sov_contributions(tasks),
        )
        progress = calculate_progress_from_tasks(tasks)
        actual_hours, actual_cost = self._actuals(entries)
        if work_order.estimated_cost is not None:
            estimated_cost = work_order.estimated_cost
        else:
            estimated_cost = work_order.actual_cost or 0.0

        return {
            "work_order_id": work_order.id,
            "work_order_number": work_order.work_order_number,
            "title": work_order.title,
            "status": work_order.status,
            "completion_percentage": progress.completion_percentage,
            "method": progress.method,
            "total_tasks": progress.total_tasks,
            "completed_tasks": progress.completed_tasks,
            "in_progress_tasks": progress.in_progress_tasks,
            "not_started_tasks": progress.not_started_tasks,
            "estimated_hours": work_order.estimated_hours,
            "actual_hours": actual_hours,
            "hours_variance": work_order.estimated_hours - actual_hours,
            "estimated_cost": estimated_cost,
            "actual_cost": actual_cost,
            "cost_variance": estimated_cost - actual_cost,
            "sov_contributions": contributions,
        }

    async def get_job_progress_summary(self, identifier: str) -> dict[str, Any]:
        job = await load_job(self.store, identifier)
        sov_items, work_orders, tasks = await asyncio.gather(
            self.store.list_sov_items(job_id=job.id),
            self.store.list_work_orders(job_id=job.id),
            self.store.list_tasks(job_id=job.id),
        )
        sov_progress, work_order_progress = await asyncio.gather(
            asyncio.gather(*(self.calculate_sov_progress(item.id, job.id) for item in sov_items)),
            asyncio.gather(*(self.calculate_work_order_progress(wo.id) for wo in work_orders)),
        )

        total_value = sum(item.total_value for item in sov_items)
        earned = sum(row["earned_value"] for row in sov_progress)
        overall = earned / total_value * 100 if total_value > 0 else 0.0
        attributed = {task_id for row in sov_progress for task_id in row["task_ids"]}
        unattributed = [task.id for task in tasks if task.id not in attributed]
        if unattributed:
            logger.debug("job %s: %d tasks not attributed to any line item", job.id, len(unattributed))

        return {
            "job_id": job.id,
            "job_number": job.job_number,
            "overall_completion_percentage": max(0.0, min(100.0, overall)),
            "total_sov_value": total_value,
            "total_earned_value": earned,
            "total_variance": total_value - earned,
            "sov_progress": list(sov_progress),
            "work_order_progress": list(work_order_progress),
            "total_sov_items": len(sov_items),
            "total_work_orders": len(work_orders),
            "total_tasks": len(tasks),
            "sov_items_with_tasks": sum(1 for row in sov_progress if row["total_tasks"] > 0),
            "sov_items_without_tasks": sum(1 for row in sov_progress if row["total_tasks"] == 0),
            "work_orders_with_tasks": sum(1 for row in work_order_progress if row["total_tasks"] > 0),
            "work_orders_without_tasks": sum(1 for row in work_order_progress if row["total_tasks"] == 0),
            "unattributed_tasks": len(unattributed),
        }

