"""Pydantic schemas for vulnerability database sync triggers and status."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class SyncTriggerRequest(BaseModel):
    """Optional body of POST /vulnerability-db/sync; omit ecosystems to sync all."""

    ecosystems: list[str] | None = Field(
        default=None,
        max_length=20,
        description="Ecosystems to sync (npm, PyPI, Maven, Go, NuGet, crates.io, Packagist, RubyGems, nvd).",
    )


class EcosystemTrigger(BaseModel):
    ecosystem: str
    status: Literal["started", "already_running"]


class SyncTriggerResponse(BaseModel):
    results: list[EcosystemTrigger]


class EcosystemSyncStatus(BaseModel):
    """Latest sync state of one ecosystem. Counts describe the data currently served."""

    ecosystem: str
    status: Literal["never", "running", "completed", "error"]
    last_sync_at: datetime | None = None
    last_full_sync_at: datetime | None = None
    advisory_count: int = 0
    package_count: int = 0
    duration_seconds: float | None = None
    error_message: str | None = None


class VulnDbStatusResponse(BaseModel):
    ecosystems: list[EcosystemSyncStatus]
    total_advisories: int
    total_cves: int
    cpe_index_entries: int
