"""Shared helpers for storage-backed tests: a throwaway SQLite database and feed fixtures."""

import io
import json
import lzma
import os
import tempfile
import zipfile
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from correlator.core.config import Settings
from correlator.models import Base


class SqliteDatabase:
    """
    File-backed SQLite database created from the ORM metadata.

    A file (not :memory:) lets worker threads open their own connections. The
    connect/begin hooks are the SQLAlchemy recipe that makes SAVEPOINT work on pysqlite.
    """

    def __init__(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        path = os.path.join(self._tmpdir.name, "correlator-test.db")
        self.engine = create_engine(
            f"sqlite:///{path}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(self.engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, _record) -> None:
            dbapi_connection.isolation_level = None

        @event.listens_for(self.engine, "begin")
        def _emit_begin(conn) -> None:
            conn.exec_driver_sql("BEGIN")

        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def session(self):
        return self.SessionLocal()

    def close(self) -> None:
        self.engine.dispose()
        self._tmpdir.cleanup()


def make_settings(**overrides: Any) -> Settings:
    """Settings with defaults (no .env) and the given fields replaced without re-validation."""
    base = Settings(_env_file=None)
    return base.model_copy(update=overrides)


def osv_advisory(
    advisory_id: str = "GHSA-35jh-r3h4-6jhm",
    package: str = "lodash",
    ecosystem: str = "npm",
    introduced: str = "4.0.0",
    fixed: str | None = "4.17.21",
    severity: str = "HIGH",
    aliases: list[str] | None = None,
    modified: str = "2024-03-01T10:00:00Z",
    withdrawn: str | None = None,
) -> dict[str, Any]:
    """A realistic OSV advisory document with one affected package and one ECOSYSTEM range."""
    events: list[dict[str, str]] = [{"introduced": introduced}]
    if fixed:
        events.append({"fixed": fixed})
    doc: dict[str, Any] = {
        "schema_version": "1.6.0",
        "id": advisory_id,
        "modified": modified,
        "published": "2021-05-06T16:05:51Z",
        "aliases": aliases if aliases is not None else ["CVE-2021-23337"],
        "summary": f"Command Injection in {package}",
        "details": f"{package} versions prior to {fixed} are vulnerable to Command Injection.",
        "severity": [
            {"type": "CVSS_V3", "score": "CVSS:3.1/AV:N/AC:L/PR:H/UI:N/S:U/C:H/I:H/A:H"}
        ],
        "affected": [
            {
                "package": {
                    "ecosystem": ecosystem,
                    "name": package,
                    "purl": f"pkg:{ecosystem.lower()}/{package}",
                },
                "ranges": [{"type": "ECOSYSTEM", "events": events}],
            }
        ],
        "references": [{"type": "ADVISORY", "url": f"https://github.com/advisories/{advisory_id}"}],
        "database_specific": {"severity": severity},
    }
    if withdrawn:
        doc["withdrawn"] = withdrawn
    return doc


def nvd_item(
    cve_id: str = "CVE-2024-0001",
    criteria: str = "cpe:2.3:a:expressjs:express:*:*:*:*:*:node.js:*:*",
    start_incl: str | None = None,
    end_excl: str | None = None,
    score: float = 7.5,
    severity: str = "HIGH",
    status: str = "Analyzed",
    last_modified: str = "2024-02-01T00:00:00.000",
) -> dict[str, Any]:
    """A CVE item in the NVD 2.0 / fkie-cad feed layout with one vulnerable cpeMatch."""
    match: dict[str, Any] = {"vulnerable": True, "criteria": criteria, "matchCriteriaId": "X"}
    if start_incl:
        match["versionStartIncluding"] = start_incl
    if end_excl:
        match["versionEndExcluding"] = end_excl
    return {
        "id": cve_id,
        "published": "2024-01-10T00:00:00.000",
        "lastModified": last_modified,
        "vulnStatus": status,
        "descriptions": [
            {"lang": "en", "value": f"{cve_id} allows remote attackers to do bad things."},
            {"lang": "es", "value": "Descripcion."},
        ],
        "metrics": {
            "cvssMetricV31": [
                {
                    "source": "nvd@nist.gov",
                    "cvssData": {
                        "version": "3.1",
                        "vectorString": "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:N/I:N/A:H",
                        "baseScore": score,
                        "baseSeverity": severity,
                    },
                }
            ]
        },
        "configurations": [{"nodes": [{"operator": "OR", "cpeMatch": [match]}]}],
        "references": [{"url": f"https://nvd.nist.gov/vuln/detail/{cve_id}"}],
    }


def osv_zip(advisories: list[dict[str, Any]]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for advisory in advisories:
            archive.writestr(f"{advisory['id']}.json", json.dumps(advisory))
    return buffer.getvalue()


def nvd_feed(items: list[dict[str, Any]]) -> bytes:
    return lzma.compress(json.dumps({"cve_count": len(items), "cve_items": items}).encode())
