"""ORM model for persisted vulnerability findings."""

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, func

from correlator.models.base import Base


class Finding(Base):
    """
    One component matched against one vulnerability record, for one product, in one scan run.

    Rows are written fresh by every run. status carries over between runs by the
    natural key (product_id, ecosystem, dependency_name, source_id).
    """

    __tablename__ = "findings"
    __table_args__ = (
        Index("ix_findings_run_product", "scan_run_id", "product_id"),
        Index(
            "ix_findings_natural_key",
            "product_id",
            "ecosystem",
            "dependency_name",
            "source_id",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    scan_run_id = Column(
        Integer,
        ForeignKey("scan_runs.id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id = Column(String(255), nullable=False)
    dependency_name = Column(String(1024), nullable=False)
    dependency_version = Column(String(255), nullable=False)
    ecosystem = Column(String(64), nullable=False)
    dependency_purl = Column(String(2048), nullable=True)
    source = Column(String(32), nullable=False)
    source_id = Column(String(255), nullable=False, index=True)
    severity = Column(String(32), nullable=False, index=True)
    cvss_score = Column(Float, nullable=True)
    title = Column(Text, nullable=False, default="")
    fixed_version = Column(String(255), nullable=True)
    status = Column(String(32), nullable=False, default="open")
    status_reason = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
