"""Initial schema: vulnerability store, SBOM components, scan runs, findings, sync status, job locks.

Revision ID: 20261017000000
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261017000000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _jsonb() -> postgresql.JSONB:
    return postgresql.JSONB(astext_type=sa.Text())


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "advisories",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("advisory_id", sa.String(length=255), nullable=False),
        sa.Column("ecosystem", sa.String(length=64), nullable=False),
        sa.Column("package_name", sa.String(length=1024), nullable=False),
        sa.Column("package_purl", sa.String(length=2048), nullable=True),
        sa.Column("severity", sa.String(length=32), nullable=False),
        sa.Column("cvss_score", sa.Float(), nullable=True),
        sa.Column("cvss_vector", sa.String(length=255), nullable=True),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("details", sa.Text(), nullable=False),
        sa.Column("aliases", _jsonb(), nullable=False),
        sa.Column("affected_ranges", _jsonb(), nullable=False),
        sa.Column("affected_versions", _jsonb(), nullable=False),
        sa.Column("fixed_version", sa.String(length=255), nullable=True),
        sa.Column("reference_urls", _jsonb(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_batch_id", sa.String(length=64), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "advisory_id", "ecosystem", "package_name", name="uq_advisories_id_ecosystem_package"
        ),
    )
    op.create_index(
        "ix_advisories_ecosystem_package", "advisories", ["ecosystem", "package_name"], unique=False
    )
    op.create_index(
        op.f("ix_advisories_sync_batch_id"), "advisories", ["sync_batch_id"], unique=False
    )

    op.create_table(
        "cve_records",
        sa.Column("cve_id", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("severity", sa.String(length=32), nullable=False),
        sa.Column("cvss_score", sa.Float(), nullable=True),
        sa.Column("cvss_vector", sa.String(length=255), nullable=True),
        sa.Column("cpe_matches", _jsonb(), nullable=False),
        sa.Column("reference_urls", _jsonb(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("vuln_status", sa.String(length=64), nullable=True),
        sa.Column("sync_batch_id", sa.String(length=64), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("cve_id"),
    )
    op.create_index(
        op.f("ix_cve_records_sync_batch_id"), "cve_records", ["sync_batch_id"], unique=False
    )

    op.create_table(
        "cpe_index_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("generation", sa.Integer(), nullable=False),
        sa.Column("cve_id", sa.String(length=64), nullable=False),
        sa.Column("vendor", sa.String(length=255), nullable=False),
        sa.Column("product", sa.String(length=255), nullable=False),
        sa.Column("target_sw", sa.String(length=255), nullable=False),
        sa.Column("version_exact", sa.String(length=255), nullable=True),
        sa.Column("version_start_incl", sa.String(length=255), nullable=True),
        sa.Column("version_start_excl", sa.String(length=255), nullable=True),
        sa.Column("version_end_incl", sa.String(length=255), nullable=True),
        sa.Column("version_end_excl", sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_cpe_index_generation_product_target",
        "cpe_index_entries",
        ["generation", "product", "target_sw"],
        unique=False,
    )

    op.create_table(
        "cpe_index_state",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("active_generation", sa.Integer(), nullable=False),
        sa.Column("entry_count", sa.Integer(), nullable=False),
        sa.Column("rebuilt_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "product_components",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("product_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=1024), nullable=False),
        sa.Column("version", sa.String(length=255), nullable=False),
        sa.Column("ecosystem", sa.String(length=64), nullable=False),
        sa.Column("purl", sa.String(length=2048), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_product_components_product_id"), "product_components", ["product_id"], unique=False
    )

    op.create_table(
        "scan_runs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("trigger_type", sa.String(length=32), nullable=False),
        sa.Column("triggered_by", sa.String(length=255), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deadline_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("total_products", sa.Integer(), nullable=False),
        sa.Column("total_components", sa.Integer(), nullable=False),
        sa.Column("total_unique_components", sa.Integer(), nullable=False),
        sa.Column("total_findings", sa.Integer(), nullable=False),
        sa.Column("new_findings_count", sa.Integer(), nullable=False),
        sa.Column("critical_count", sa.Integer(), nullable=False),
        sa.Column("high_count", sa.Integer(), nullable=False),
        sa.Column("medium_count", sa.Integer(), nullable=False),
        sa.Column("low_count", sa.Integer(), nullable=False),
        sa.Column("match_failures", sa.Integer(), nullable=False),
        sa.Column("per_source_timing", _jsonb(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_scan_runs_status"), "scan_runs", ["status"], unique=False)
    op.create_index(op.f("ix_scan_runs_started_at"), "scan_runs", ["started_at"], unique=False)

    op.create_table(
        "findings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("scan_run_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.String(length=255), nullable=False),
        sa.Column("dependency_name", sa.String(length=1024), nullable=False),
        sa.Column("dependency_version", sa.String(length=255), nullable=False),
        sa.Column("ecosystem", sa.String(length=64), nullable=False),
        sa.Column("dependency_purl", sa.String(length=2048), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("source_id", sa.String(length=255), nullable=False),
        sa.Column("severity", sa.String(length=32), nullable=False),
        sa.Column("cvss_score", sa.Float(), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("fixed_version", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("status_reason", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["scan_run_id"], ["scan_runs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_findings_run_product", "findings", ["scan_run_id", "product_id"], unique=False)
    op.create_index(
        "ix_findings_natural_key",
        "findings",
        ["product_id", "ecosystem", "dependency_name", "source_id"],
        unique=False,
    )
    op.create_index(op.f("ix_findings_source_id"), "findings", ["source_id"], unique=False)
    op.create_index(op.f("ix_findings_severity"), "findings", ["severity"], unique=False)

    op.create_table(
        "sync_status",
        sa.Column("ecosystem", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_full_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_modified_marker", sa.DateTime(timezone=True), nullable=True),
        sa.Column("advisory_count", sa.Integer(), nullable=False),
        sa.Column("package_count", sa.Integer(), nullable=False),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("ecosystem"),
    )

    op.create_table(
        "job_locks",
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("holder", sa.String(length=255), nullable=True),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("name"),
    )


def downgrade() -> None:
    op.drop_table("job_locks")
    op.drop_table("sync_status")
    op.drop_index(op.f("ix_findings_severity"), table_name="findings")
    op.drop_index(op.f("ix_findings_source_id"), table_name="findings")
    op.drop_index("ix_findings_natural_key", table_name="findings")
    op.drop_index("ix_findings_run_product", table_name="findings")
    op.drop_table("findings")
    op.drop_index(op.f("ix_scan_runs_started_at"), table_name="scan_runs")
    op.drop_index(op.f("ix_scan_runs_status"), table_name="scan_runs")
    op.drop_table("scan_runs")
    op.drop_index(op.f("ix_product_components_product_id"), table_name="product_components")
    op.drop_table("product_components")
    op.drop_table("cpe_index_state")
    op.drop_index("ix_cpe_index_generation_product_target", table_name="cpe_index_entries")
    op.drop_table("cpe_index_entries")
    op.drop_index(op.f("ix_cve_records_sync_batch_id"), table_name="cve_records")
    op.drop_table("cve_records")
    op.drop_index(op.f("ix_advisories_sync_batch_id"), table_name="advisories")
    op.drop_index("ix_advisories_ecosystem_package", table_name="advisories")
    op.drop_table("advisories")
