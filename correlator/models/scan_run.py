"""ORM model for platform-wide scan runs and their telemetry."""

from sqlalchemy import Column, DateTime, Float, Integer, String, Text

from correlator.models.base import Base, JSONType


class ScanRun(Base):
    """
    One platform-wide scan invocation.

    status: 'running', 'completed' or 'failed'. per_source_timing maps a source
    ('advisory', 'cpe') to {"duration_ms": int, "findings": int}.
    """

    __tablename__ = "scan_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(String(32), nullable=False, index=True, default="running")
    trigger_type = Column(String(32), nullable=False, default="manual")
    triggered_by = Column(String(255), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    deadline_at = Column(DateTime(timezone=True), nullable=False)
    duration_seconds = Column(Float, nullable=True)
    total_products = Column(Integer, nullable=False, default=0)
    total_components = Column(Integer, nullable=False, default=0)
    total_unique_components = Column(Integer, nullable=False, default=0)
    total_findings = Column(Integer, nullable=False, default=0)
    new_findings_count = Column(Integer, nullable=False, default=0)
    critical_count = Column(Integer, nullable=False, default=0)
    high_count = Column(Integer, nullable=False, default=0)
    medium_count = Column(Integer, nullable=False, default=0)
    low_count = Column(Integer, nullable=False, default=0)
    match_failures = Column(Integer, nullable=False, default=0)
    per_source_timing = Column(JSONType, nullable=False, default=dict)
    error_message = Column(Text, nullable=True)
