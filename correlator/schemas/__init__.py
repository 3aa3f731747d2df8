"""Pydantic request/response schemas."""

from correlator.schemas.components import ComponentIn, ComponentsReplaceResponse
from correlator.schemas.feeds import AdvisoryRecord, AffectedRange, CpeMatch, CveFeedRecord, FeedRecord
from correlator.schemas.findings import (
    FindingOut,
    FindingStatusUpdate,
    ProductFindingsResponse,
    SeveritySummary,
)
from correlator.schemas.health import HealthResponse
from correlator.schemas.scans import (
    ScanHistoryResponse,
    ScanRunDetail,
    ScanRunSummary,
    ScanTriggerResponse,
)
from correlator.schemas.vulndb import (
    EcosystemSyncStatus,
    SyncTriggerRequest,
    SyncTriggerResponse,
    VulnDbStatusResponse,
)

__all__ = [
    "AdvisoryRecord",
    "AffectedRange",
    "ComponentIn",
    "ComponentsReplaceResponse",
    "CpeMatch",
    "CveFeedRecord",
    "EcosystemSyncStatus",
    "FeedRecord",
    "FindingOut",
    "FindingStatusUpdate",
    "HealthResponse",
    "ProductFindingsResponse",
    "ScanHistoryResponse",
    "ScanRunDetail",
    "ScanRunSummary",
    "ScanTriggerResponse",
    "SeveritySummary",
    "SyncTriggerRequest",
    "SyncTriggerResponse",
    "VulnDbStatusResponse",
]
