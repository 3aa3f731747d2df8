"""Parsed feed records: the tagged variants produced at the feed sync boundary."""

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator

from correlator.services.severity import SeverityLevel


def _ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AffectedRange(BaseModel):
    """One affected interval in the ecosystem's native version scheme."""

    introduced: str | None = Field(
        default=None,
        description="First affected version; None or '0' means from the first release.",
    )
    fixed: str | None = Field(
        default=None,
        description="First version that is no longer affected (exclusive upper bound).",
    )
    last_affected: str | None = Field(
        default=None,
        description="Last affected version (inclusive upper bound).",
    )


class AdvisoryRecord(BaseModel):
    """A package advisory for one (ecosystem, package) pair, severity already normalized."""

    kind: Literal["advisory"] = "advisory"
    source: Literal["osv", "github"] = "osv"
    advisory_id: str = Field(..., min_length=1, max_length=255)
    ecosystem: str = Field(..., min_length=1, max_length=64)
    package_name: str = Field(..., min_length=1)
    package_purl: str | None = None
    aliases: list[str] = Field(default_factory=list)
    severity: SeverityLevel
    cvss_score: float | None = Field(default=None, ge=0, le=10)
    cvss_vector: str | None = None
    summary: str = ""
    details: str = ""
    affected_ranges: list[AffectedRange] = Field(default_factory=list)
    affected_versions: list[str] = Field(default_factory=list)
    fixed_version: str | None = None
    references: list[str] = Field(default_factory=list)
    published_at: datetime | None = None
    modified_at: datetime | None = None
    withdrawn_at: datetime | None = None

    @field_validator("published_at", "modified_at", "withdrawn_at")
    @classmethod
    def attach_utc(cls, v: datetime | None) -> datetime | None:
        return _ensure_utc(v)


class CpeMatch(BaseModel):
    """One vulnerable cpeMatch entry of a CVE configuration."""

    criteria: str = Field(..., min_length=1)
    version_start_including: str | None = None
    version_start_excluding: str | None = None
    version_end_including: str | None = None
    version_end_excluding: str | None = None


class CveFeedRecord(BaseModel):
    """A CVE record with its vulnerable CPE matches, severity already normalized."""

    kind: Literal["cve"] = "cve"
    cve_id: str = Field(..., min_length=1, max_length=64)
    description: str = ""
    severity: SeverityLevel
    cvss_score: float | None = Field(default=None, ge=0, le=10)
    cvss_vector: str | None = None
    cpe_matches: list[CpeMatch] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
    published_at: datetime | None = None
    modified_at: datetime | None = None
    vuln_status: str | None = None

    @field_validator("published_at", "modified_at")
    @classmethod
    def attach_utc(cls, v: datetime | None) -> datetime | None:
        return _ensure_utc(v)


FeedRecord = Annotated[Union[AdvisoryRecord, CveFeedRecord], Field(discriminator="kind")]
