"""ORM model for package-ecosystem advisories (OSV / GHSA)."""

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from correlator.models.base import Base, JSONType


class Advisory(Base):
    """
    One row per advisory per (ecosystem, package).

    affected_ranges holds a list of {introduced, fixed, last_affected} dicts in the
    ecosystem's native version scheme. Rows are replaced on re-sync; rows whose
    sync_batch_id differs from the latest full sync are deleted.
    """

    __tablename__ = "advisories"
    __table_args__ = (
        UniqueConstraint(
            "advisory_id", "ecosystem", "package_name", name="uq_advisories_id_ecosystem_package"
        ),
        Index("ix_advisories_ecosystem_package", "ecosystem", "package_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(String(32), nullable=False, default="osv")
    advisory_id = Column(String(255), nullable=False)
    ecosystem = Column(String(64), nullable=False)
    package_name = Column(String(1024), nullable=False)
    package_purl = Column(String(2048), nullable=True)
    severity = Column(String(32), nullable=False)
    cvss_score = Column(Float, nullable=True)
    cvss_vector = Column(String(255), nullable=True)
    summary = Column(Text, nullable=False, default="")
    details = Column(Text, nullable=False, default="")
    aliases = Column(JSONType, nullable=False, default=list)
    affected_ranges = Column(JSONType, nullable=False, default=list)
    affected_versions = Column(JSONType, nullable=False, default=list)
    fixed_version = Column(String(255), nullable=True)
    reference_urls = Column(JSONType, nullable=False, default=list)
    published_at = Column(DateTime(timezone=True), nullable=True)
    modified_at = Column(DateTime(timezone=True), nullable=True)
    withdrawn_at = Column(DateTime(timezone=True), nullable=True)
    sync_batch_id = Column(String(64), nullable=False, index=True)
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
