"""Pydantic schemas for per-product findings and finding triage."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from correlator.services.severity import SeverityLevel

FindingStatus = Literal["open", "mitigated", "dismissed", "closed"]
# Statuses a user may set; 'closed' is assigned by scans when a finding disappears.
SettableStatus = Literal["open", "mitigated", "dismissed"]

STATUS_REASON_MAX_LENGTH = 2_000


class FindingOut(BaseModel):
    """One finding of the latest completed scan run for a product."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    severity: SeverityLevel
    dependency_name: str
    dependency_version: str
    ecosystem: str
    fixed_version: str | None = None
    status: FindingStatus
    status_reason: str | None = None
    source: str = Field(description="Matching source: 'advisory' or 'cpe'.")
    source_id: str = Field(description="Advisory id (GHSA-..., PYSEC-...) or CVE id.")
    cvss_score: float | None = None
    title: str = ""


class SeveritySummary(BaseModel):
    """Finding counts per severity."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    total: int = 0


class ProductFindingsResponse(BaseModel):
    """Findings of one product in the latest completed scan run."""

    product_id: str
    scan_run_id: int | None = Field(
        default=None,
        description="Run the findings belong to; null when no scan has completed yet.",
    )
    scanned_at: datetime | None = None
    summary: SeveritySummary
    findings: list[FindingOut]


class FindingStatusUpdate(BaseModel):
    """Request body to triage a finding."""

    status: SettableStatus
    reason: str | None = Field(default=None, max_length=STATUS_REASON_MAX_LENGTH)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None
