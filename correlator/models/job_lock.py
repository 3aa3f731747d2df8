"""ORM model for persisted job locks (platform scan singleton, per-ecosystem sync)."""

from sqlalchemy import Column, DateTime, String

from correlator.models.base import Base


class JobLock(Base):
    """A named lock row; holder is NULL when free. Acquired by compare-and-swap on holder."""

    __tablename__ = "job_locks"

    name = Column(String(128), primary_key=True)
    holder = Column(String(255), nullable=True)
    acquired_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
