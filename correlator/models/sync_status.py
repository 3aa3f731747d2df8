"""ORM model for per-ecosystem feed sync status."""

from sqlalchemy import Column, DateTime, Float, Integer, String, Text, func

from correlator.models.base import Base


class SyncStatus(Base):
    """
    Latest sync state for one ecosystem ('npm', 'PyPI', ..., or 'nvd').

    status: 'never', 'running', 'completed' or 'error'. The counts always describe
    the data currently served, i.e. the last successful sync.
    """

    __tablename__ = "sync_status"

    ecosystem = Column(String(64), primary_key=True)
    status = Column(String(32), nullable=False, default="never")
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_full_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_modified_marker = Column(DateTime(timezone=True), nullable=True)
    advisory_count = Column(Integer, nullable=False, default=0)
    package_count = Column(Integer, nullable=False, default=0)
    duration_seconds = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
