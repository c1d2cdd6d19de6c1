from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from jobtrack.services.config import Settings
from jobtrack.services.engine import build_engine
from jobtrack.services.errors import NotFoundError
from jobtrack.services.store import SQLiteJobStore
from tests.conftest import NOW, days


def _seed_costed_job(seed) -> str:
    job_id = seed.job(
        "costed",
        job_number="J-500",
        cost_codes=(("CC1", 100, 5000), ("CC2", 50, 2000), ("CC3", 0, 0)),
    )
    seed.entry(job_id, cost_code="CC1", regular_hours=8, overtime_hours=2)
    seed.entry(job_id, cost_code="CC2", total_hours=4, total_cost=300)
    seed.entry(job_id, regular_hours=2, double_time_hours=1)
    seed.entry(job_id, cost_code="CC1", regular_hours=5, status="submitted")
    seed.entry(job_id, cost_code="CC1", regular_hours=10, status="rejected")
    return job_id


def test_job_metrics_count_only_approved_time(engine, seed) -> None:
    job_id = _seed_costed_job(seed)

    metrics = asyncio.run(engine.data_access.get_job_metrics(job_id))

    assert metrics["total_hours"] == 17
    assert metrics["total_cost"] == 1050
    assert metrics["pending_hours"] == 5
    assert metrics["pending_cost"] == 250
    assert metrics["time_entry_count"] == 3
    assert metrics["cost_code_breakdown"]["CC1"] == {"hours": 10, "cost": 550, "entries": 1}
    assert metrics["cost_code_breakdown"]["UNKNOWN"]["cost"] == 200
    assert metrics["budget"] == 7000
    assert metrics["budget_variance"] == metrics["budget"] - metrics["total_cost"]
    assert metrics["budget_variance_percent"] == pytest.approx(85.0)


def test_unapproved_time_can_be_admitted_by_configuration(db_path, seed) -> None:
    job_id = _seed_costed_job(seed)
    settings = Settings(_env_file=None, include_unapproved_time=True)
    engine = build_engine(store=SQLiteJobStore(db_path), settings=settings, clock=lambda: NOW)

    metrics = asyncio.run(engine.data_access.get_job_metrics(job_id))

    assert metrics["total_hours"] == 22
    assert metrics["pending_hours"] == 0


def test_stated_progress_wins_even_when_zero(engine, seed) -> None:
    job_id = seed.job("stated", overall_progress=0)
    seed.task(job_id, status="completed", completion_percentage=100)

    metrics = asyncio.run(engine.data_access.get_job_metrics(job_id))

    assert metrics["progress"] == 0
    assert metrics["progress_source"] == "job"
    assert metrics["task_progress"] == 100


def test_stated_progress_outside_range_is_clamped(engine, seed) -> None:
    job_id = seed.job("overstated", overall_progress=120, contract_value=50_000)
    under_id = seed.job("understated", overall_progress=-5)

    metrics = asyncio.run(engine.data_access.get_job_metrics(job_id))
    schedule = asyncio.run(engine.data_access.get_schedule_analysis(under_id))
    evm = asyncio.run(engine.analytics.calculate_evm(job_id))

    assert metrics["progress"] == 100
    assert metrics["progress_source"] == "job (clamped from 120)"
    assert schedule["actual_progress"] == 0
    assert schedule["progress_source"] == "job (clamped from -5)"
    assert evm["earned_value"] == 50_000


def test_progress_derived_from_tasks_without_stated_value(engine, seed) -> None:
    job_id = seed.job("derived")
    seed.task(job_id, status="completed", completion_percentage=100)
    for _ in range(3):
        seed.task(job_id, status="in_progress", completion_percentage=40)
    empty_id = seed.job("empty")

    metrics = asyncio.run(engine.data_access.get_job_metrics(job_id))
    empty = asyncio.run(engine.data_access.get_job_metrics(empty_id))

    assert metrics["progress"] == 25
    assert metrics["progress_source"] == "tasks"
    assert empty["progress"] == 0


def test_job_metrics_dates_and_reports(engine, seed) -> None:
    job_id = seed.job("dated", actual_end_date=days(53))
    seed.report(job_id, report_date=days(-10), completion_percentage=20)
    newest = seed.report(job_id, report_date=days(-2), completion_percentage=35)
    seed.sov(job_id, total_value=1000)

    metrics = asyncio.run(engine.data_access.get_job_metrics(job_id))

    assert metrics["days_remaining"] == 50
    assert metrics["schedule_variance"] == 3
    assert metrics["progress_report_count"] == 2
    assert metrics["latest_progress_report"]["id"] == newest
    assert metrics["sov_item_count"] == 1


def test_job_lookup_accepts_job_number_and_rejects_unknown(engine, seed) -> None:
    job_id = _seed_costed_job(seed)

    metrics = asyncio.run(engine.data_access.get_job_metrics("J-500"))

    assert metrics["job"]["id"] == job_id
    with pytest.raises(NotFoundError):
        asyncio.run(engine.data_access.get_job_metrics("missing"))


def test_cost_code_analysis_variances_and_burn_rate(engine, seed) -> None:
    job_id = _seed_costed_job(seed)

    analysis = asyncio.run(engine.data_access.get_cost_code_analysis(job_id))
    by_code = {row["code"]: row for row in analysis}

    assert [row["code"] for row in analysis] == ["CC1", "CC2", "CC3"]
    assert by_code["CC1"]["actual_hours"] == 10
    assert by_code["CC1"]["hours_variance"] == 90
    assert by_code["CC1"]["cost_variance"] == 4450
    assert by_code["CC1"]["cost_variance_percent"] == pytest.approx(89.0)
    assert by_code["CC1"]["burn_rate"] == pytest.approx(10.0)
    assert by_code["CC1"]["entry_count"] == 1
    assert by_code["CC3"]["burn_rate"] == 0
    assert by_code["CC3"]["cost_variance_percent"] == 0


def test_schedule_analysis_expected_progress_and_overdue(engine, seed) -> None:
    job_id = seed.job("sched", overall_progress=40)
    seed.task(job_id, status="in_progress", completion_percentage=30, due_date=days(-3))
    seed.task(job_id, status="completed", completion_percentage=100, due_date=days(-3))
    seed.task(job_id, status="not_started", due_date=days(5))
    seed.task(job_id, status="on_hold")
    seed.test_package(job_id, "passed")
    seed.test_package(job_id, "not_started")

    schedule = asyncio.run(engine.data_access.get_schedule_analysis(job_id))

    assert schedule["elapsed_days"] == 50
    assert schedule["planned_duration"] == 100
    assert schedule["expected_progress"] == 50
    assert schedule["progress_variance"] == -10
    assert schedule["overdue_tasks"] == 1
    assert schedule["overdue_task_list"][0]["days_overdue"] == 3
    assert schedule["task_status_counts"] == {"in_progress": 1, "completed": 1, "not_started": 1, "on_hold": 1}
    assert schedule["test_package_status_counts"] == {"passed": 1, "not_started": 1}


def test_schedule_analysis_caps_expected_progress(engine, seed) -> None:
    late = seed.job("late", overall_progress=80, planned_start_date=days(-150), planned_end_date=days(-50))
    early = seed.job("early", planned_start_date=days(10), planned_end_date=days(110))
    undated = seed.job("undated", planned_start_date=None, planned_end_date=None)

    late_schedule = asyncio.run(engine.data_access.get_schedule_analysis(late))
    early_schedule = asyncio.run(engine.data_access.get_schedule_analysis(early))
    undated_schedule = asyncio.run(engine.data_access.get_schedule_analysis(undated))

    assert late_schedule["expected_progress_raw"] == 150
    assert late_schedule["expected_progress"] == 100
    assert late_schedule["progress_variance"] == -20
    assert early_schedule["expected_progress"] == 0
    assert undated_schedule["planned_duration"] == 0
    assert undated_schedule["expected_progress"] == 0
    assert undated_schedule["days_remaining"] is None


def test_team_performance_groups_by_worker(engine, seed) -> None:
    job_id = seed.job("team", job_manager="Laura Finch", field_supervisor="Dale Hutchins")
    seed.worker("W1", "Rosa Delgado")
    seed.worker("W2", "Kevin Park")
    seed.entry(job_id, worker_id="W1", cost_code="CC1", regular_hours=8, overtime_hours=2)
    seed.entry(job_id, worker_id="W1", cost_code="CC2", regular_hours=6)
    seed.entry(job_id, worker_id="W2", cost_code="CC1", regular_hours=4)
    seed.entry(job_id, worker_id="W1", regular_hours=9, status="submitted")

    team = asyncio.run(engine.data_access.get_team_performance(job_id))

    assert team["job_manager"] == "Laura Finch"
    assert team["worker_count"] == 2
    first = team["workers"][0]
    assert first["name"] == "Rosa Delgado"
    assert first["total_hours"] == 16
    assert first["total_cost"] == 850
    assert first["overtime_percent"] == pytest.approx(12.5)
    assert first["cost_codes"] == {"CC1": 10, "CC2": 6}
    assert team["total_hours"] == 20


def test_all_jobs_summary_filters(engine, seed) -> None:
    seed.job("a", status="in_progress", job_manager="Laura Finch", cost_codes=(("CC1", 10, 500),))
    seed.job("b", status="completed", job_manager="Omar Bryce")
    seed.job("c", status="in_progress", job_manager="Omar Bryce")

    active = asyncio.run(engine.data_access.get_all_jobs_summary(status="in_progress"))
    omar = asyncio.run(engine.data_access.get_all_jobs_summary(job_manager="omar"))
    limited = asyncio.run(engine.data_access.get_all_jobs_summary(limit=1))

    assert {row["id"] for row in active} == {"a", "c"}
    assert {row["id"] for row in omar} == {"b", "c"}
    assert len(limited) == 1
    assert next(row for row in active if row["id"] == "a")["budget"] == 500


def test_store_filters_time_entries_by_date(db_path, seed) -> None:
    job_id = seed.job("window")
    seed.entry(job_id, date=days(-40)[:10])
    recent = seed.entry(job_id, date=days(-5)[:10])
    store = SQLiteJobStore(db_path)

    rows = asyncio.run(store.list_time_entries(job_id=job_id, since=NOW - timedelta(days=10)))

    assert [entry.id for entry in rows] == [recent]
