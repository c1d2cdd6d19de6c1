#!/usr/bin/env python3
from __future__ import annotations

import os
import random
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = BASE_DIR / "data"

RANDOM_SEED = 42

PROJECTS = [
    ("PRJ-01", "Riverside Campus", "2025-RC"),
    ("PRJ-02", "Eastgate Logistics Park", "2025-EL"),
]

WORKERS = [
    ("W-01", "Dale Hutchins", "dhutchins@example.com", "foreman"),
    ("W-02", "Rosa Delgado", "rdelgado@example.com", "journeyman"),
    ("W-03", "Kevin Park", "kpark@example.com", "journeyman"),
    ("W-04", "Tamika Ellis", "tellis@example.com", "apprentice"),
    ("W-05", "Hector Salas", "hsalas@example.com", "welder"),
]


@dataclass(frozen=True)
class CostCodeSeed:
    code: str
    description: str
    category: str
    budget_hours: float
    quantity: float
    unit: str
    total_value: float


@dataclass(frozen=True)
class JobSeed:
    id: str
    job_number: str
    name: str
    project_id: str
    client_name: str
    contract_value: float
    overall_progress: Optional[float]
    start_offset: int
    end_offset: int
    job_manager: str
    field_supervisor: str
    # fraction of each cost code budget already burned
    burn: float
    # fraction of each line item's quantity installed
    installed: float
    overdue_tasks: int
    cost_codes: tuple[CostCodeSeed, ...]


JOBS = [
    JobSeed(
        id="job-1001",
        job_number="J-1001",
        name="Riverside Medical Office - Mechanical",
        project_id="PRJ-01",
        client_name="Riverside Health",
        contract_value=850_000,
        overall_progress=52,
        start_offset=-60,
        end_offset=60,
        job_manager="Laura Finch",
        field_supervisor="Dale Hutchins",
        burn=0.45,
        installed=0.5,
        overdue_tasks=0,
        cost_codes=(
            CostCodeSeed("15-100", "Ductwork", "labor", 1800, 2400, "LF", 240_000),
            CostCodeSeed("15-200", "Hydronic piping", "labor", 1500, 1800, "LF", 210_000),
            CostCodeSeed("15-300", "Equipment setting", "labor", 600, 12, "EA", 90_000),
        ),
    ),
    JobSeed(
        id="job-1002",
        job_number="J-1002",
        name="Eastgate Distribution Center - Process Piping",
        project_id="PRJ-02",
        client_name="Eastgate Logistics",
        contract_value=1_200_000,
        overall_progress=60,
        start_offset=-90,
        end_offset=30,
        job_manager="Omar Bryce",
        field_supervisor="Hector Salas",
        burn=1.4,
        installed=0.6,
        overdue_tasks=2,
        cost_codes=(
            CostCodeSeed("22-100", "Process piping", "labor", 3200, 4000, "LF", 520_000),
            CostCodeSeed("22-200", "Welding", "labor", 1400, 900, "EA", 210_000),
            CostCodeSeed("22-300", "Hydrotest", "labor", 300, 8, "EA", 45_000),
        ),
    ),
    JobSeed(
        id="job-1003",
        job_number="J-1003",
        name="Lakeview School - Plumbing",
        project_id="PRJ-01",
        client_name="Lakeview Unified",
        contract_value=420_000,
        overall_progress=None,
        start_offset=-100,
        end_offset=20,
        job_manager="Laura Finch",
        field_supervisor="Rosa Delgado",
        burn=0.55,
        installed=0.3,
        overdue_tasks=6,
        cost_codes=(
            CostCodeSeed("22-400", "Domestic water", "labor", 900, 1500, "LF", 130_000),
            CostCodeSeed("22-500", "Waste and vent", "labor", 800, 1200, "LF", 115_000),
            CostCodeSeed("22-600", "Fixtures", "labor", 400, 140, "EA", 60_000),
        ),
    ),
]


def db_path() -> Path:
    configured = os.getenv("DATABASE_PATH")
    if configured:
        path = Path(configured)
        if not path.is_absolute():
            path = BASE_DIR / path
        return path
    return DATA_DIR / "jobtrack.db"


def load_sql(conn: sqlite3.Connection, path: Path) -> None:
    conn.executescript(path.read_text())


def stamp(day: date) -> str:
    return datetime.combine(day, time(7, 0)).isoformat()


def seed_job(conn: sqlite3.Connection, job: JobSeed, today: date, rng: random.Random) -> None:
    start = today + timedelta(days=job.start_offset)
    end = today + timedelta(days=job.end_offset)
    conn.execute(
        """
        INSERT INTO jobs (id, job_number, name, project_id, status, contract_value, overall_progress,
                          planned_start_date, planned_end_date, actual_start_date, client_name, location,
                          job_manager, field_supervisor, created_at)
        VALUES (?, ?, ?, ?, 'in_progress', ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            job.id,
            job.job_number,
            job.name,
            job.project_id,
            job.contract_value,
            job.overall_progress,
            stamp(start),
            stamp(end),
            stamp(start),
            job.client_name,
            "Charlotte, NC",
            job.job_manager,
            job.field_supervisor,
            stamp(start - timedelta(days=14)),
        ),
    )

    for position, cc in enumerate(job.cost_codes):
        budget_cost = cc.budget_hours * 55
        conn.execute(
            """
            INSERT INTO job_cost_codes (job_id, position, code, description, category, budget_hours, budget_cost)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (job.id, position, cc.code, cc.description, cc.category, cc.budget_hours, budget_cost),
        )
        sov_id = f"{job.id}-sov-{position + 1}"
        conn.execute(
            """
            INSERT INTO schedule_of_values (id, job_id, line_number, cost_code, description, quantity, unit,
                                            total_value, budget_hours)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (sov_id, job.id, f"{position + 1:03d}", cc.code, cc.description, cc.quantity, cc.unit,
             cc.total_value, cc.budget_hours),
        )

    work_orders = [f"{job.id}-wo-1", f"{job.id}-wo-2"]
    for index, wo_id in enumerate(work_orders, start=1):
        conn.execute(
            """
            INSERT INTO work_orders (id, job_id, work_order_number, title, status, estimated_hours, estimated_cost)
            VALUES (?, ?, ?, ?, 'in_progress', ?, ?)
            """,
            (wo_id, job.id, f"WO-{job.job_number[2:]}-{index}", f"Area {index} rough-in", 800, 44_000),
        )

    task_number = 0
    overdue_left = job.overdue_tasks
    for position, cc in enumerate(job.cost_codes):
        sov_id = f"{job.id}-sov-{position + 1}"
        installed_total = cc.quantity * job.installed
        for part in range(3):
            task_number += 1
            if part == 0:
                status, percent, units = "completed", 100.0, installed_total * 0.6
            elif part == 1:
                status, percent, units = "in_progress", 50.0, installed_total * 0.4
            else:
                status, percent, units = "not_started", 0.0, None
            due = today + timedelta(days=14 * part + 3)
            if overdue_left and status != "completed":
                due = today - timedelta(days=rng.randint(2, 12))
                overdue_left -= 1
            conn.execute(
                """
                INSERT INTO tasks (id, job_id, title, status, completion_percentage, units_installed, due_date,
                                   cost_code, schedule_of_values_id, work_order_id, assigned_to)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    f"{job.id}-t-{task_number}",
                    job.id,
                    f"{cc.description} - phase {part + 1}",
                    status,
                    percent,
                    units,
                    stamp(due),
                    cc.code,
                    sov_id,
                    work_orders[part % 2],
                    WORKERS[task_number % len(WORKERS)][0],
                ),
            )

    # Overdue quota larger than the open task count spills into punch-list tasks
    for extra in range(overdue_left):
        task_number += 1
        conn.execute(
            """
            INSERT INTO tasks (id, job_id, title, status, completion_percentage, due_date, cost_code)
            VALUES (?, ?, ?, 'in_progress', 25, ?, ?)
            """,
            (
                f"{job.id}-t-{task_number}",
                job.id,
                f"Punch list item {extra + 1}",
                stamp(today - timedelta(days=rng.randint(2, 12))),
                job.cost_codes[0].code,
            ),
        )

    elapsed = max(1, -job.start_offset)
    entry_number = 0
    for cc in job.cost_codes:
        target_hours = cc.budget_hours * job.burn
        days = sorted(rng.sample(range(elapsed), k=min(elapsed, 20)))
        per_day = target_hours / len(days)
        for offset in days:
            entry_number += 1
            worker = WORKERS[entry_number % len(WORKERS)][0]
            overtime = round(per_day * 0.1, 2)
            regular = round(per_day - overtime, 2)
            status = "approved" if offset < elapsed - 3 else rng.choice(["submitted", "draft"])
            conn.execute(
                """
                INSERT INTO time_entries (id, job_id, worker_id, task_id, date, regular_hours, overtime_hours,
                                          total_hours, cost_code, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    f"{job.id}-te-{entry_number}",
                    job.id,
                    worker,
                    None,
                    stamp(start + timedelta(days=offset)),
                    regular,
                    overtime,
                    regular + overtime,
                    cc.code,
                    status,
                ),
            )

    for number in range(1, 4):
        report_day = start + timedelta(days=number * elapsed // 4)
        reported = job.overall_progress if job.overall_progress is not None else 30
        conn.execute(
            """
            INSERT INTO progress_reports (id, job_id, report_number, report_date, status, completion_percentage)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                f"{job.id}-pr-{number}",
                job.id,
                f"PR-{number:03d}",
                stamp(report_day),
                "approved" if number < 3 else "submitted",
                round(reported * number / 3, 1),
            ),
        )

    conn.execute(
        "INSERT INTO test_packages (id, job_id, name, status) VALUES (?, ?, ?, ?)",
        (f"{job.id}-tp-1", job.id, "Hydro TP-01", "passed" if job.overall_progress else "not_started"),
    )


def seed_database(conn: sqlite3.Connection, today: Optional[date] = None) -> None:
    today = today or date.today()
    rng = random.Random(RANDOM_SEED)
    load_sql(conn, DATA_DIR / "schema.sql")
    conn.executemany("INSERT INTO projects (id, name, project_number) VALUES (?, ?, ?)", PROJECTS)
    conn.executemany("INSERT INTO workers (id, name, email, role) VALUES (?, ?, ?, ?)", WORKERS)
    for job in JOBS:
        seed_job(conn, job, today, rng)


def run_integrity_checks(conn: sqlite3.Connection) -> list[str]:
    """Report link and status problems the analytics engine tolerates but should surface."""
    checks = {
        "task_sov_link": (
            "SELECT COUNT(*) FROM tasks t LEFT JOIN schedule_of_values s ON t.schedule_of_values_id = s.id "
            "WHERE t.schedule_of_values_id IS NOT NULL AND s.id IS NULL"
        ),
        "task_work_order_link": (
            "SELECT COUNT(*) FROM tasks t LEFT JOIN work_orders w ON t.work_order_id = w.id "
            "WHERE t.work_order_id IS NOT NULL AND w.id IS NULL"
        ),
        "time_entry_task_link": (
            "SELECT COUNT(*) FROM time_entries e LEFT JOIN tasks t ON e.task_id = t.id "
            "WHERE e.task_id IS NOT NULL AND t.id IS NULL"
        ),
        "completed_task_below_100": (
            "SELECT COUNT(*) FROM tasks WHERE status = 'completed' AND COALESCE(completion_percentage, 0) <> 100"
        ),
        "not_started_task_above_0": (
            "SELECT COUNT(*) FROM tasks WHERE status = 'not_started' AND COALESCE(completion_percentage, 0) <> 0"
        ),
        "sov_cost_code_unknown": (
            "SELECT COUNT(*) FROM schedule_of_values s LEFT JOIN job_cost_codes c "
            "ON s.job_id = c.job_id AND s.cost_code = c.code WHERE s.cost_code IS NOT NULL AND c.id IS NULL"
        ),
    }

    findings = []
    for name, query in checks.items():
        count = conn.execute(query).fetchone()[0]
        if count != 0:
            findings.append(f"{name} ({count})")
    return findings


def main() -> None:
    database_path = db_path()
    database_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(database_path)
    conn.row_factory = sqlite3.Row
    try:
        seed_database(conn)
        findings = run_integrity_checks(conn)
        if findings:
            raise RuntimeError("Integrity checks failed: " + "; ".join(findings))
        conn.commit()
    finally:
        conn.close()

    print(f"Seed complete: {database_path}")
    print(f"- {len(JOBS)} jobs, {len(WORKERS)} workers seeded")
    print("- J-1001 on track, J-1002 over budget, J-1003 behind schedule")


if __name__ == "__main__":
    main()
