"""Pydantic schemas for scan triggers, run status and scan history."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from correlator.schemas.findings import SeveritySummary


class ScanTriggerResponse(BaseModel):
    """Returned by POST /scan. run_id is the new run, or the active one when already running."""

    status: Literal["started", "already_running"]
    run_id: int | None = None


class SourceTiming(BaseModel):
    duration_ms: int = 0
    findings: int = 0


class ScanRunSummary(BaseModel):
    """Status and telemetry of one scan run."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    status: Literal["running", "completed", "failed"]
    trigger_type: str
    triggered_by: str | None = None
    started_at: datetime
    completed_at: datetime | None = None
    duration_seconds: float | None = None
    total_products: int = 0
    total_components: int = 0
    total_unique_components: int = 0
    total_findings: int = 0
    new_findings_count: int = 0
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    match_failures: int = 0
    per_source_timing: dict[str, SourceTiming] = Field(default_factory=dict)
    error_message: str | None = None


class ScanRunDetail(ScanRunSummary):
    """A run plus its finding counts per product."""

    products: dict[str, SeveritySummary] = Field(default_factory=dict)


class ScanHistoryResponse(BaseModel):
    """One page of scan runs, newest first."""

    runs: list[ScanRunSummary]
    page: int
    limit: int
    total: int
