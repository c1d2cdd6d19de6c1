"""Read models for the records the analytics engine consumes."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

TaskStatus = Literal["not_started", "in_progress", "completed", "on_hold", "cancelled"]
TimeEntryStatus = Literal["draft", "submitted", "approved", "rejected"]


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Record(BaseModel):
    @field_validator("*", mode="after")
    @classmethod
    def _strip_timezone(cls, value):
        if isinstance(value, datetime):
            return _naive_utc(value)
        return value


class CostCode(Record):
    code: str
    description: Optional[str] = None
    category: Optional[str] = None
    budget_hours: float = 0.0
    budget_cost: float = 0.0
    actual_hours: float = 0.0
    actual_cost: float = 0.0


class TestPackage(Record):
    id: str
    name: str
    status: str = "not_started"


class Job(Record):
    id: str
    job_number: str
    name: str
    project_id: Optional[str] = None
    status: str = "in_progress"
    contract_value: float = 0.0
    # Authoritative when set, including 0; None means "derive from tasks".
    overall_progress: Optional[float] = None
    planned_start_date: Optional[datetime] = None
    planned_end_date: Optional[datetime] = None
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    client_name: Optional[str] = None
    location: Optional[str] = None
    job_manager: Optional[str] = None
    field_supervisor: Optional[str] = None
    cost_codes: list[CostCode] = Field(default_factory=list)
    test_packages: list[TestPackage] = Field(default_factory=list)

    @property
    def budget(self) -> float:
        return sum(cc.budget_cost for cc in self.cost_codes)


class Task(Record):
    id: str
    job_id: str
    title: str = ""
    status: TaskStatus = "not_started"
    completion_percentage: Optional[float] = None
    units_installed: Optional[float] = None
    due_date: Optional[datetime] = None
    cost_code: Optional[str] = None
    schedule_of_values_id: Optional[str] = None
    work_order_id: Optional[str] = None
    assigned_to: Optional[str] = None

    @property
    def percent(self) -> float:
        return self.completion_percentage or 0.0

    @property
    def units(self) -> float:
        return self.units_installed or 0.0


class TimeEntry(Record):
    id: str
    job_id: str
    worker_id: Optional[str] = None
    task_id: Optional[str] = None
    date: datetime
    regular_hours: float = 0.0
    overtime_hours: float = 0.0
    double_time_hours: float = 0.0
    total_hours: Optional[float] = None
    total_cost: Optional[float] = None
    cost_code: Optional[str] = None
    status: TimeEntryStatus = "draft"

    @property
    def hours(self) -> float:
        if self.total_hours is not None:
            return self.total_hours
        return self.regular_hours + self.overtime_hours + self.double_time_hours


class ScheduleOfValuesItem(Record):
    id: str
    job_id: str
    line_number: str
    cost_code: Optional[str] = None
    description: Optional[str] = None
    quantity: float = 0.0
    unit: Optional[str] = None
    total_value: float = 0.0
    budget_hours: float = 0.0


class WorkOrder(Record):
    id: str
    job_id: str
    work_order_number: str
    title: Optional[str] = None
    status: str = "pending"
    estimated_hours: float = 0.0
    estimated_cost: Optional[float] = None
    actual_cost: Optional[float] = None
    completion_percentage: float = 0.0


class ProgressReport(Record):
    id: str
    job_id: str
    report_number: str
    report_date: datetime
    status: str = "draft"
    completion_percentage: Optional[float] = None


class Worker(Record):
    id: str
    name: str
    email: Optional[str] = None
    role: Optional[str] = None
