from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import pytest

from jobtrack.services.config import Settings
from jobtrack.services.engine import Engine, build_engine
from jobtrack.services.store import SQLiteJobStore

SCHEMA = Path(__file__).resolve().parents[1] / "data" / "schema.sql"
NOW = datetime(2026, 3, 1, 12, 0)


def days(offset: int) -> str:
    return (NOW + timedelta(days=offset)).isoformat()


class Seeder:
    """Writes rows straight into a test database."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._counter = 0

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def _insert(self, table: str, row: dict[str, Any]) -> None:
        columns = ", ".join(row)
        marks = ", ".join("?" for _ in row)
        conn = sqlite3.connect(self.path)
        try:
            conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({marks})", tuple(row.values()))
            conn.commit()
        finally:
            conn.close()

    def job(
        self,
        job_id: Optional[str] = None,
        *,
        cost_codes: tuple[tuple[str, float, float], ...] = (),
        **fields: Any,
    ) -> str:
        job_id = job_id or self._next("job")
        row = {
            "id": job_id,
            "job_number": fields.pop("job_number", f"J-{job_id}"),
            "name": fields.pop("name", f"Job {job_id}"),
            "contract_value": 100_000,
            "planned_start_date": days(-50),
            "planned_end_date": days(50),
            "created_at": days(-60),
        }
        row.update(fields)
        self._insert("jobs", row)
        for position, (code, budget_hours, budget_cost) in enumerate(cost_codes):
            self._insert(
                "job_cost_codes",
                {
                    "job_id": job_id,
                    "position": position,
                    "code": code,
                    "budget_hours": budget_hours,
                    "budget_cost": budget_cost,
                },
            )
        return job_id

    def task(self, job_id: str, **fields: Any) -> str:
        row = {"id": self._next("task"), "job_id": job_id, "title": "Task"}
        row.update(fields)
        self._insert("tasks", row)
        return row["id"]

    def entry(self, job_id: str, **fields: Any) -> str:
        row = {
            "id": self._next("te"),
            "job_id": job_id,
            "date": days(-1),
            "status": "approved",
        }
        row.update(fields)
        self._insert("time_entries", row)
        return row["id"]

    def sov(self, job_id: str, **fields: Any) -> str:
        row = {"id": self._next("sov"), "job_id": job_id, "line_number": self._next("L")}
        row.update(fields)
        self._insert("schedule_of_values", row)
        return row["id"]

    def work_order(self, job_id: str, **fields: Any) -> str:
        row = {"id": self._next("wo"), "job_id": job_id, "work_order_number": self._next("WO")}
        row.update(fields)
        self._insert("work_orders", row)
        return row["id"]

    def report(self, job_id: str, **fields: Any) -> str:
        row = {
            "id": self._next("pr"),
            "job_id": job_id,
            "report_number": self._next("PR"),
            "report_date": days(-1),
        }
        row.update(fields)
        self._insert("progress_reports", row)
        return row["id"]

    def worker(self, worker_id: str, name: str, role: str = "journeyman") -> str:
        self._insert("workers", {"id": worker_id, "name": name, "role": role})
        return worker_id

    def test_package(self, job_id: str, status: str) -> str:
        row = {"id": self._next("tp"), "job_id": job_id, "name": "TP", "status": status}
        self._insert("test_packages", row)
        return row["id"]


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "jobtrack.db"
    conn = sqlite3.connect(path)
    try:
        conn.executescript(SCHEMA.read_text())
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def seed(db_path: Path) -> Seeder:
    return Seeder(db_path)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def engine(db_path: Path, settings: Settings) -> Engine:
    store = SQLiteJobStore(db_path, settings.max_concurrent_queries)
    return build_engine(store=store, settings=settings, clock=lambda: NOW)
