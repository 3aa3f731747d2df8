"""ORM models for CVE records and the flattened CPE index."""

from sqlalchemy import Column, DateTime, Float, Index, Integer, String, Text, func

from correlator.models.base import Base, JSONType


class CveRecord(Base):
    """One row per CVE (NVD). cpe_matches keeps the vulnerable NVD cpeMatch entries verbatim."""

    __tablename__ = "cve_records"

    cve_id = Column(String(64), primary_key=True)
    description = Column(Text, nullable=False, default="")
    severity = Column(String(32), nullable=False)
    cvss_score = Column(Float, nullable=True)
    cvss_vector = Column(String(255), nullable=True)
    cpe_matches = Column(JSONType, nullable=False, default=list)
    reference_urls = Column(JSONType, nullable=False, default=list)
    published_at = Column(DateTime(timezone=True), nullable=True)
    modified_at = Column(DateTime(timezone=True), nullable=True)
    vuln_status = Column(String(64), nullable=True)
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


class CpeIndexEntry(Base):
    """
    Flattened projection of every vulnerable cpeMatch across all CVE records.

    Entries are written under a generation number; only the generation named by
    CpeIndexState is visible to queries, so a rebuild in progress is never read.
    """

    __tablename__ = "cpe_index_entries"
    __table_args__ = (
        Index("ix_cpe_index_generation_product_target", "generation", "product", "target_sw"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    generation = Column(Integer, nullable=False)
    cve_id = Column(String(64), nullable=False)
    vendor = Column(String(255), nullable=False, default="")
    product = Column(String(255), nullable=False)
    target_sw = Column(String(255), nullable=False)
    version_exact = Column(String(255), nullable=True)
    version_start_incl = Column(String(255), nullable=True)
    version_start_excl = Column(String(255), nullable=True)
    version_end_incl = Column(String(255), nullable=True)
    version_end_excl = Column(String(255), nullable=True)


class CpeIndexState(Base):
    """Single-row pointer to the active CPE index generation."""

    __tablename__ = "cpe_index_state"

    id = Column(Integer, primary_key=True, default=1)
    active_generation = Column(Integer, nullable=False, default=0)
    entry_count = Column(Integer, nullable=False, default=0)
    rebuilt_at = Column(DateTime(timezone=True), nullable=True)
