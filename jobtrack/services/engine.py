from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from jobtrack.services.analytics import AnalyticsEngine
from jobtrack.services.config import get_settings
from jobtrack.services.data_access import JobDataAccess
from jobtrack.services.insights import JobInsights
from jobtrack.services.models import utc_now
from jobtrack.services.progress import ProgressReconciliationService
from jobtrack.services.store import SQLiteJobStore


@dataclass
class Engine:
    data_access: JobDataAccess
    analytics: AnalyticsEngine
    insights: JobInsights
    progress: ProgressReconciliationService


def build_engine(store=None, settings=None, clock=utc_now) -> Engine:
    settings = settings or get_settings()
    if store is None:
        store = SQLiteJobStore(settings.resolved_database_path, settings.max_concurrent_queries)
    data_access = JobDataAccess(store, settings, clock)
    analytics = AnalyticsEngine(data_access)
    return Engine(
        data_access=data_access,
        analytics=analytics,
        insights=JobInsights(analytics),
        progress=ProgressReconciliationService(store, settings),
    )


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return build_engine()
