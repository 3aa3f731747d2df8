"""SQLAlchemy ORM models."""

from correlator.models.advisory import Advisory
from correlator.models.base import Base
from correlator.models.component import ProductComponent
from correlator.models.cve import CpeIndexEntry, CpeIndexState, CveRecord
from correlator.models.finding import Finding
from correlator.models.job_lock import JobLock
from correlator.models.scan_run import ScanRun
from correlator.models.sync_status import SyncStatus

__all__ = [
    "Advisory",
    "Base",
    "CpeIndexEntry",
    "CpeIndexState",
    "CveRecord",
    "Finding",
    "JobLock",
    "ProductComponent",
    "ScanRun",
    "SyncStatus",
]
