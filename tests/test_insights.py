from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from jobtrack.services.errors import InvalidInputError, NotFoundError
from tests.conftest import NOW, days


def _seed_troubled(seed, job_id: str = "troubled") -> str:
    job_id = seed.job(job_id, overall_progress=10, cost_codes=(("A", 100, 10_000),))
    seed.entry(job_id, cost_code="A", regular_hours=10, total_cost=20_000)
    for _ in range(6):
        seed.task(job_id, status="in_progress", due_date=days(-2))
    return job_id


def _seed_healthy(seed, job_id: str = "healthy") -> str:
    job_id = seed.job(job_id, overall_progress=60, cost_codes=(("A", 100, 10_000),))
    seed.entry(job_id, cost_code="A", regular_hours=10, total_cost=5000)
    return job_id


def test_forecast_completion_and_cost(engine, seed) -> None:
    job_id = _seed_healthy(seed)

    forecast = asyncio.run(engine.insights.forecast_job(job_id, "both"))

    completion = forecast["completion"]
    assert completion["days_remaining"] == 50
    assert completion["predicted_date"] == (NOW + timedelta(days=60)).isoformat()
    assert completion["confidence"] == 0.75
    assert forecast["cost"]["predicted_final_cost"] == pytest.approx(100_000 / 12)
    assert forecast["cost"]["factors"]["current_cost"] == 5000


def test_forecast_without_remaining_days_has_no_date(engine, seed) -> None:
    job_id = seed.job("past", overall_progress=90, planned_start_date=days(-100), planned_end_date=days(-5))

    forecast = asyncio.run(engine.insights.forecast_job(job_id, "completion"))

    assert forecast["completion"]["predicted_date"] is None
    assert "cost" not in forecast


def test_forecast_rejects_unknown_type(engine, seed) -> None:
    job_id = _seed_healthy(seed)

    with pytest.raises(InvalidInputError):
        asyncio.run(engine.insights.forecast_job(job_id, "revenue"))


def test_analyze_job_risk_lists_factors(engine, seed) -> None:
    job_id = _seed_troubled(seed)

    risk = asyncio.run(engine.insights.analyze_job_risk(job_id))

    assert risk["risk_score"] == 0
    assert risk["risk_level"] == "high"
    assert [factor["factor"] for factor in risk["risk_factors"]] == [
        "budget_overrun",
        "schedule_delay",
        "overdue_tasks",
        "cost_efficiency",
    ]
    assert risk["health"]["score"] == 5


def test_analyze_job_risk_of_healthy_job(engine, seed) -> None:
    job_id = _seed_healthy(seed)

    risk = asyncio.run(engine.insights.analyze_job_risk(job_id))

    assert risk["risk_score"] == 100
    assert risk["risk_level"] == "low"
    assert risk["risk_factors"] == []


def test_find_at_risk_jobs_ranks_lowest_score_first(engine, seed) -> None:
    _seed_healthy(seed)
    troubled = _seed_troubled(seed)
    # slightly over budget, behind plan and a single overdue task
    middling = seed.job("middling", overall_progress=35, cost_codes=(("A", 100, 10_000),))
    seed.entry(middling, cost_code="A", regular_hours=10, total_cost=10_400)
    seed.task(middling, status="in_progress", due_date=days(-1))

    result = asyncio.run(engine.insights.find_at_risk_jobs())

    scores = [row["risk_score"] for row in result["jobs"]]
    assert [row["job_id"] for row in result["jobs"]] == [troubled, middling]
    assert scores == sorted(scores)
    assert all(0 <= score <= 100 for score in scores)
    assert result["jobs_scanned"] == 3
    assert result["summary"]["high"] == 2
    assert result["total_at_risk"] == 2


def test_find_at_risk_jobs_threshold_and_limit(engine, seed) -> None:
    _seed_troubled(seed, "t1")
    _seed_troubled(seed, "t2")
    _seed_healthy(seed)

    limited = asyncio.run(engine.insights.find_at_risk_jobs(limit=1))
    everything = asyncio.run(engine.insights.find_at_risk_jobs(min_risk_score=101))

    assert len(limited["jobs"]) == 1
    assert limited["total_at_risk"] == 2
    assert len(everything["jobs"]) == 3


def test_find_at_risk_jobs_skips_jobs_that_vanish(engine, seed, monkeypatch) -> None:
    _seed_troubled(seed, "t1")
    _seed_troubled(seed, "t2")
    original = engine.analytics.snapshot

    async def flaky_snapshot(identifier: str):
        if identifier == "t2":
            raise NotFoundError(f"Job not found: {identifier}")
        return await original(identifier)

    monkeypatch.setattr(engine.analytics, "snapshot", flaky_snapshot)

    result = asyncio.run(engine.insights.find_at_risk_jobs())

    assert [row["job_id"] for row in result["jobs"]] == ["t1"]
    assert result["jobs_scanned"] == 2


def test_find_at_risk_jobs_propagates_store_failures(engine, seed, monkeypatch) -> None:
    _seed_troubled(seed, "t1")

    async def broken_snapshot(identifier: str):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(engine.analytics, "snapshot", broken_snapshot)

    with pytest.raises(RuntimeError, match="locked"):
        asyncio.run(engine.insights.find_at_risk_jobs())


def test_recommendations_follow_the_job_state(engine, seed) -> None:
    troubled = _seed_troubled(seed)
    healthy = _seed_healthy(seed)

    bad = asyncio.run(engine.insights.get_job_recommendations(troubled))
    good = asyncio.run(engine.insights.get_job_recommendations(healthy))

    assert [(row["priority"], row["category"]) for row in bad["recommendations"]] == [
        ("high", "budget"),
        ("high", "schedule"),
        ("medium", "tasks"),
        ("high", "overall"),
    ]
    assert good["recommendations"] == []
