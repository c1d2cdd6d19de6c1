"""Read-only access to the job record store."""
from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol, TypeVar

from pydantic import BaseModel

from jobtrack.services.database import connect_db
from jobtrack.services.models import (
    CostCode,
    Job,
    ProgressReport,
    ScheduleOfValuesItem,
    Task,
    TestPackage,
    TimeEntry,
    WorkOrder,
    Worker,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


class JobStore(Protocol):
    """Query contract for the records the engine reads."""

    async def get_job(self, job_id: str) -> Optional[Job]: ...

    async def find_job_id(self, identifier: str) -> Optional[str]: ...

    async def list_jobs(
        self,
        *,
        status: Optional[str] = None,
        project_id: Optional[str] = None,
        job_manager: Optional[str] = None,
        query: Optional[str] = None,
        limit: int = 100,
    ) -> list[Job]: ...

    async def list_tasks(
        self,
        *,
        job_id: Optional[str] = None,
        work_order_id: Optional[str] = None,
        schedule_of_values_id: Optional[str] = None,
        cost_code: Optional[str] = None,
    ) -> list[Task]: ...

    async def list_time_entries(
        self,
        *,
        job_id: Optional[str] = None,
        cost_code: Optional[str] = None,
        task_ids: Optional[Iterable[str]] = None,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[TimeEntry]: ...

    async def get_sov_item(self, item_id: str) -> Optional[ScheduleOfValuesItem]: ...

    async def list_sov_items(
        self,
        *,
        job_id: Optional[str] = None,
        ids: Optional[Iterable[str]] = None,
    ) -> list[ScheduleOfValuesItem]: ...

    async def get_work_order(self, work_order_id: str) -> Optional[WorkOrder]: ...

    async def list_work_orders(
        self,
        *,
        job_id: Optional[str] = None,
        ids: Optional[Iterable[str]] = None,
    ) -> list[WorkOrder]: ...

    async def list_progress_reports(self, job_id: str) -> list[ProgressReport]: ...

    async def list_workers(self, ids: Iterable[str]) -> list[Worker]: ...


def _to_model(model: type[ModelT], row: Any) -> ModelT:
    # NULL columns fall back to the model defaults
    data = {key: row[key] for key in row.keys() if row[key] is not None}
    return model(**data)


def _placeholders(values: list[Any]) -> str:
    return ", ".join("?" for _ in values)


class SQLiteJobStore:
    """JobStore backed by SQLite.

    Every query runs on its own connection; at most ``max_connections`` are
    open at once, however wide the callers fan out with ``asyncio.gather``.
    """

    def __init__(self, path: Optional[Path] = None, max_connections: int = 8) -> None:
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self._path = path
        self._max_connections = max_connections
        self._limit: Optional[asyncio.Semaphore] = None
        self._limit_loop: Optional[asyncio.AbstractEventLoop] = None

    def _connection_slot(self) -> asyncio.Semaphore:
        # A semaphore belongs to one event loop; the store may outlive it
        loop = asyncio.get_running_loop()
        if self._limit is None or self._limit_loop is not loop:
            self._limit = asyncio.Semaphore(self._max_connections)
            self._limit_loop = loop
        return self._limit

    async def _fetchall(self, query: str, params: tuple[Any, ...] = ()) -> list[Any]:
        async with self._connection_slot():
            conn = await connect_db(self._path)
            try:
                cursor = await conn.execute(query, params)
                return list(await cursor.fetchall())
            finally:
                await conn.close()

    async def _fetchone(self, query: str, params: tuple[Any, ...] = ()) -> Optional[Any]:
        async with self._connection_slot():
            conn = await connect_db(self._path)
            try:
                cursor = await conn.execute(query, params)
                return await cursor.fetchone()
            finally:
                await conn.close()

    # ------------------------------------------------------------------
    # jobs
    # ------------------------------------------------------------------
    async def _attach_children(self, job_row: Any) -> Job:
        cost_code_rows, package_rows = await asyncio.gather(
            self._fetchall(
                """
                SELECT code, description, category, budget_hours, budget_cost, actual_hours, actual_cost
                FROM job_cost_codes
                WHERE job_id = ?
                ORDER BY position, id
                """,
                (job_row["id"],),
            ),
            self._fetchall(
                "SELECT id, name, status FROM test_packages WHERE job_id = ? ORDER BY name",
                (job_row["id"],),
            ),
        )
        job = _to_model(Job, job_row)
        job.cost_codes = [_to_model(CostCode, row) for row in cost_code_rows]
        job.test_packages = [_to_model(TestPackage, row) for row in package_rows]
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        row = await self._fetchone("SELECT * FROM jobs WHERE id = ?", (job_id,))
        if row is None:
            return None
        return await self._attach_children(row)

    async def find_job_id(self, identifier: str) -> Optional[str]:
        row = await self._fetchone(
            "SELECT id FROM jobs WHERE id = ? OR job_number = ? ORDER BY id = ? DESC LIMIT 1",
            (identifier, identifier, identifier),
        )
        return row["id"] if row else None

    async def list_jobs(
        self,
        *,
        status: Optional[str] = None,
        project_id: Optional[str] = None,
        job_manager: Optional[str] = None,
        query: Optional[str] = None,
        limit: int = 100,
    ) -> list[Job]:
        clauses: list[str] = []
        params: list[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if project_id:
            clauses.append("project_id = ?")
            params.append(project_id)
        if job_manager:
            clauses.append("job_manager LIKE ?")
            params.append(f"%{job_manager}%")
        if query:
            # LIKE is case-insensitive for ASCII
            clauses.append("(name LIKE ? OR job_number LIKE ? OR client_name LIKE ?)")
            params.extend([f"%{query}%"] * 3)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._fetchall(
            f"SELECT * FROM jobs {where} ORDER BY created_at DESC, job_number LIMIT ?",
            (*params, limit),
        )
        return list(await asyncio.gather(*(self._attach_children(row) for row in rows)))

    # ------------------------------------------------------------------
    # tasks & time
    # ------------------------------------------------------------------
    async def list_tasks(
        self,
        *,
        job_id: Optional[str] = None,
        work_order_id: Optional[str] = None,
        schedule_of_values_id: Optional[str] = None,
        cost_code: Optional[str] = None,
    ) -> list[Task]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("job_id", job_id),
            ("work_order_id", work_order_id),
            ("schedule_of_values_id", schedule_of_values_id),
            ("cost_code", cost_code),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        if not clauses:
            raise ValueError("list_tasks requires at least one filter")
        rows = await self._fetchall(
            f"SELECT * FROM tasks WHERE {' AND '.join(clauses)} ORDER BY id",
            tuple(params),
        )
        return [_to_model(Task, row) for row in rows]

    async def list_time_entries(
        self,
        *,
        job_id: Optional[str] = None,
        cost_code: Optional[str] = None,
        task_ids: Optional[Iterable[str]] = None,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[TimeEntry]:
        clauses: list[str] = []
        params: list[Any] = []
        if job_id is not None:
            clauses.append("job_id = ?")
            params.append(job_id)
        if cost_code is not None:
            clauses.append("cost_code = ?")
            params.append(cost_code)
        if task_ids is not None:
            ids = list(task_ids)
            if not ids:
                return []
            clauses.append(f"task_id IN ({_placeholders(ids)})")
            params.extend(ids)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if since is not None:
            # dates may be stored with or without a time component
            clauses.append("datetime(date) >= datetime(?)")
            params.append(since.isoformat(sep=" "))
        if not clauses:
            raise ValueError("list_time_entries requires at least one filter")
        rows = await self._fetchall(
            f"SELECT * FROM time_entries WHERE {' AND '.join(clauses)} ORDER BY date, id",
            tuple(params),
        )
        return [_to_model(TimeEntry, row) for row in rows]

    # ------------------------------------------------------------------
    # schedule of values & work orders
    # ------------------------------------------------------------------
    async def get_sov_item(self, item_id: str) -> Optional[ScheduleOfValuesItem]:
        row = await self._fetchone("SELECT * FROM schedule_of_values WHERE id = ?", (item_id,))
        return _to_model(ScheduleOfValuesItem, row) if row else None

    async def list_sov_items(
        self,
        *,
        job_id: Optional[str] = None,
        ids: Optional[Iterable[str]] = None,
    ) -> list[ScheduleOfValuesItem]:
        clauses: list[str] = []
        params: list[Any] = []
        if job_id is not None:
            clauses.append("job_id = ?")
            params.append(job_id)
        if ids is not None:
            id_list = list(ids)
            if not id_list:
                return []
            clauses.append(f"id IN ({_placeholders(id_list)})")
            params.extend(id_list)
        if not clauses:
            raise ValueError("list_sov_items requires at least one filter")
        rows = await self._fetchall(
            f"""
            SELECT * FROM schedule_of_values
            WHERE {' AND '.join(clauses)}
            ORDER BY CAST(line_number AS INTEGER), line_number, id
            """,
            tuple(params),
        )
        return [_to_model(ScheduleOfValuesItem, row) for row in rows]

    async def get_work_order(self, work_order_id: str) -> Optional[WorkOrder]:
        row = await self._fetchone("SELECT * FROM work_orders WHERE id = ?", (work_order_id,))
        return _to_model(WorkOrder, row) if row else None

    async def list_work_orders(
        self,
        *,
        job_id: Optional[str] = None,
        ids: Optional[Iterable[str]] = None,
    ) -> list[WorkOrder]:
        clauses: list[str] = []
        params: list[Any] = []
        if job_id is not None:
            clauses.append("job_id = ?")
            params.append(job_id)
        if ids is not None:
            id_list = list(ids)
            if not id_list:
                return []
            clauses.append(f"id IN ({_placeholders(id_list)})")
            params.extend(id_list)
        if not clauses:
            raise ValueError("list_work_orders requires at least one filter")
        rows = await self._fetchall(
            f"SELECT * FROM work_orders WHERE {' AND '.join(clauses)} ORDER BY work_order_number, id",
            tuple(params),
        )
        return [_to_model(WorkOrder, row) for row in rows]

    # ------------------------------------------------------------------
    # reports & people
    # ------------------------------------------------------------------
    async def list_progress_reports(self, job_id: str) -> list[ProgressReport]:
        rows = await self._fetchall(
            "SELECT * FROM progress_reports WHERE job_id = ? ORDER BY report_date DESC, id",
            (job_id,),
        )
        return [_to_model(ProgressReport, row) for row in rows]

    async def list_workers(self, ids: Iterable[str]) -> list[Worker]:
        id_list = list(ids)
        if not id_list:
            return []
        rows = await self._fetchall(
            f"SELECT id, name, email, role FROM workers WHERE id IN ({_placeholders(id_list)}) ORDER BY name",
            tuple(id_list),
        )
        return [_to_model(Worker, row) for row in rows]
