"""HTTP API tests: FastAPI TestClient with the database dependencies pointed at SQLite."""

import unittest
from datetime import timedelta

import httpx
from fastapi.testclient import TestClient

from correlator.api.v1.vulndb import get_sync_service
from correlator.core.config import get_settings
from correlator.core.database import get_db, get_session_factory
from correlator.main import app
from correlator.services.feed_clients import NvdFeedClient, OsvFeedClient
from correlator.services.feed_parsers import parse_osv_advisory
from correlator.services.feed_sync import FeedSyncService
from correlator.services.locks import acquire_lock, sync_lock_name
from correlator.services.scan_orchestrator import ScanOrchestrator
from correlator.services.vuln_store import VulnerabilityStore
from tests.support import SqliteDatabase, make_settings, osv_advisory, osv_zip

API = "/api/v1"


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = SqliteDatabase()
        self.settings = make_settings(MATCH_WORKERS=2)
        with self.db.session() as session:
            VulnerabilityStore(session).upsert_advisories(parse_osv_advisory(osv_advisory()), "b1")
            session.commit()

        def override_get_db():
            db = self.db.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        archive = osv_zip([osv_advisory(), osv_advisory("GHSA-2222", package="minimist")])

        def feeds(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/npm/all.zip":
                return httpx.Response(200, content=archive)
            return httpx.Response(404)

        def override_sync_service() -> FeedSyncService:
            transport = httpx.MockTransport(feeds)
            return FeedSyncService(
                self.db.SessionLocal,
                self.settings,
                osv_client=OsvFeedClient("https://osv.test", 5.0, client=httpx.Client(transport=transport)),
                nvd_client=NvdFeedClient("https://nvd.test", 5.0, client=httpx.Client(transport=transport)),
            )

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_session_factory] = lambda: self.db.SessionLocal
        app.dependency_overrides[get_settings] = lambda: self.settings
        app.dependency_overrides[get_sync_service] = override_sync_service
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def put_components(self, product_id: str, components: list[dict]) -> httpx.Response:
        return self.client.put(f"{API}/products/{product_id}/components", json=components)

    def scan(self) -> int:
        resp = self.client.post(f"{API}/scan")
        self.assertEqual(resp.status_code, 202)
        self.assertEqual(resp.json()["status"], "started")
        return resp.json()["run_id"]


class TestHealth(ApiTestCase):
    def test_health(self) -> None:
        resp = self.client.get(f"{API}/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok", "environment": "dev", "database": "connected"})

    def test_root(self) -> None:
        self.assertEqual(self.client.get("/").status_code, 200)


class TestScansAndFindings(ApiTestCase):
    def test_components_validation(self) -> None:
        ok = self.put_components(
            "prod-a",
            [
                {"name": "lodash", "version": "4.17.20", "ecosystem": "npm"},
                {"name": "express", "version": "4.18.0", "ecosystem": "npm", "purl": "pkg:npm/express@4.18.0"},
            ],
        )
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json(), {"product_id": "prod-a", "component_count": 2})
        bad = self.put_components("prod-a", [{"name": "  ", "version": "1.0.0", "ecosystem": "npm"}])
        self.assertEqual(bad.status_code, 422)

    def test_scan_then_read_findings(self) -> None:
        self.put_components("prod-a", [{"name": "lodash", "version": "4.17.20", "ecosystem": "npm"}])
        run_id = self.scan()

        run = self.client.get(f"{API}/scan/{run_id}").json()
        self.assertEqual(run["status"], "completed")
        self.assertEqual(run["total_findings"], 1)
        self.assertEqual(run["products"]["prod-a"]["high"], 1)

        body = self.client.get(f"{API}/products/prod-a/findings").json()
        self.assertEqual(body["scan_run_id"], run_id)
        self.assertEqual(body["summary"]["high"], 1)
        self.assertEqual(body["summary"]["total"], 1)
        [finding] = body["findings"]
        self.assertEqual(finding["source_id"], "GHSA-35jh-r3h4-6jhm")
        self.assertEqual(finding["fixed_version"], "4.17.21")
        self.assertEqual(finding["status"], "open")

        filtered = self.client.get(f"{API}/products/prod-a/findings", params={"status": "mitigated"})
        self.assertEqual(filtered.json()["findings"], [])

    def test_findings_before_any_scan(self) -> None:
        body = self.client.get(f"{API}/products/prod-a/findings").json()
        self.assertIsNone(body["scan_run_id"])
        self.assertEqual(body["findings"], [])

    def test_unknown_run(self) -> None:
        self.assertEqual(self.client.get(f"{API}/scan/999").status_code, 404)

    def test_scan_already_running(self) -> None:
        start = ScanOrchestrator(self.db.SessionLocal, self.settings).try_start()
        resp = self.client.post(f"{API}/scan")
        self.assertEqual(resp.status_code, 202)
        self.assertEqual(resp.json(), {"status": "already_running", "run_id": start.run_id})

    def test_scan_history(self) -> None:
        first = self.scan()
        second = self.scan()
        body = self.client.get(f"{API}/scan-history", params={"page": 1, "limit": 1}).json()
        self.assertEqual(body["total"], 2)
        self.assertEqual([r["id"] for r in body["runs"]], [second])
        page2 = self.client.get(f"{API}/scan-history", params={"page": 2, "limit": 1}).json()
        self.assertEqual([r["id"] for r in page2["runs"]], [first])
        self.assertEqual(self.client.get(f"{API}/scan-history", params={"limit": 0}).status_code, 422)
        self.assertEqual(self.client.get(f"{API}/scan-history", params={"limit": 101}).status_code, 422)

    def test_triage_finding(self) -> None:
        self.put_components("prod-a", [{"name": "lodash", "version": "4.17.20", "ecosystem": "npm"}])
        self.scan()
        finding_id = self.client.get(f"{API}/products/prod-a/findings").json()["findings"][0]["id"]

        resp = self.client.put(
            f"{API}/findings/{finding_id}", json={"status": "dismissed", "reason": " test fixture only "}
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "dismissed")
        self.assertEqual(resp.json()["status_reason"], "test fixture only")

        self.assertEqual(
            self.client.put(f"{API}/findings/{finding_id}", json={"status": "closed"}).status_code, 422
        )
        self.assertEqual(
            self.client.put(f"{API}/findings/424242", json={"status": "open"}).status_code, 404
        )

        self.scan()
        carried = self.client.get(f"{API}/products/prod-a/findings").json()["findings"][0]
        self.assertEqual(carried["status"], "dismissed")

    def test_closed_finding_cannot_be_triaged(self) -> None:
        self.put_components("prod-a", [{"name": "lodash", "version": "4.17.20", "ecosystem": "npm"}])
        self.scan()
        finding_id = self.client.get(f"{API}/products/prod-a/findings").json()["findings"][0]["id"]
        self.put_components("prod-a", [{"name": "lodash", "version": "4.17.21", "ecosystem": "npm"}])
        self.scan()
        resp = self.client.put(f"{API}/findings/{finding_id}", json={"status": "mitigated"})
        self.assertEqual(resp.status_code, 409)


class TestVulnerabilityDb(ApiTestCase):
    def test_sync_then_status(self) -> None:
        resp = self.client.post(f"{API}/vulnerability-db/sync", json={"ecosystems": ["NPM"]})
        self.assertEqual(resp.status_code, 202)
        self.assertEqual(resp.json(), {"results": [{"ecosystem": "npm", "status": "started"}]})

        status = self.client.get(f"{API}/vulnerability-db/status").json()
        npm = next(e for e in status["ecosystems"] if e["ecosystem"] == "npm")
        self.assertEqual(npm["status"], "completed")
        self.assertEqual(npm["advisory_count"], 2)
        self.assertEqual(status["total_advisories"], 2)
        self.assertEqual(status["cpe_index_entries"], 0)

    def test_sync_already_running(self) -> None:
        with self.db.session() as session:
            acquire_lock(session, sync_lock_name("npm"), "other-worker", timedelta(hours=1))
        resp = self.client.post(f"{API}/vulnerability-db/sync", json={"ecosystems": ["npm"]})
        self.assertEqual(resp.json()["results"], [{"ecosystem": "npm", "status": "already_running"}])

    def test_unknown_ecosystem_rejected(self) -> None:
        resp = self.client.post(f"{API}/vulnerability-db/sync", json={"ecosystems": ["cobol"]})
        self.assertEqual(resp.status_code, 422)


if __name__ == "__main__":
    unittest.main()
