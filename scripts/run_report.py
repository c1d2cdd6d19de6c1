#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from jobtrack.services.engine import Engine, build_engine
from jobtrack.services.errors import AnalyticsError

REPORTS = {
    "metrics": lambda engine, job: engine.data_access.get_job_metrics(job),
    "cost-codes": lambda engine, job: engine.data_access.get_cost_code_analysis(job),
    "schedule": lambda engine, job: engine.data_access.get_schedule_analysis(job),
    "team": lambda engine, job: engine.data_access.get_team_performance(job),
    "evm": lambda engine, job: engine.analytics.calculate_evm(job),
    "variance": lambda engine, job: engine.analytics.calculate_variance(job),
    "trends": lambda engine, job: engine.analytics.calculate_trends(job),
    "health": lambda engine, job: engine.analytics.get_job_health_score(job),
    "forecast": lambda engine, job: engine.insights.forecast_job(job),
    "risk": lambda engine, job: engine.insights.analyze_job_risk(job),
    "recommendations": lambda engine, job: engine.insights.get_job_recommendations(job),
    "progress": lambda engine, job: engine.progress.get_job_progress_summary(job),
}


async def _run(engine: Engine, report: str, job: str) -> None:
    try:
        if report == "at-risk":
            result = await engine.insights.find_at_risk_jobs()
        elif report == "jobs":
            result = await engine.data_access.get_all_jobs_summary(query=job)
        else:
            result = await REPORTS[report](engine, job)
    except AnalyticsError as exc:
        print(f"Report failed: {exc}")
        raise SystemExit(1)

    print(json.dumps(result, indent=2, default=str))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a jobtrack analytics report from CLI")
    parser.add_argument("report", choices=sorted([*REPORTS, "at-risk", "jobs"]))
    parser.add_argument("job", nargs="?", help="job id or job number; search text for the jobs report")
    args = parser.parse_args()
    if args.report in REPORTS and not args.job:
        parser.error(f"report '{args.report}' needs a job id or job number")
    return args


def main() -> None:
    args = parse_args()
    asyncio.run(_run(build_engine(), args.report, args.job))


if __name__ == "__main__":
    main()
