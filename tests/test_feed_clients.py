"""Feed client tests against an in-process httpx transport."""

import json
import unittest
from datetime import datetime, timezone

import httpx

from correlator.services.feed_clients import FeedFetchError, NvdFeedClient, OsvFeedClient
from tests.support import nvd_feed, nvd_item, osv_advisory, osv_zip

OSV_BASE = "https://osv.test/v1"
NVD_BASE = "https://nvd.test/feeds"


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestOsvFeedClient(unittest.TestCase):
    def test_export_yields_json_members(self) -> None:
        archive = osv_zip([osv_advisory("GHSA-aaaa"), osv_advisory("GHSA-bbbb")])

        def handler(request: httpx.Request) -> httpx.Response:
            self.assertEqual(str(request.url), f"{OSV_BASE}/npm/all.zip")
            return httpx.Response(200, content=archive)

        client = OsvFeedClient(OSV_BASE, 5.0, client=_client(handler))
        members = dict(client.iter_ecosystem_export("npm"))
        self.assertEqual(sorted(members), ["GHSA-aaaa.json", "GHSA-bbbb.json"])
        self.assertEqual(json.loads(members["GHSA-aaaa.json"])["id"], "GHSA-aaaa")

    def test_export_http_error(self) -> None:
        client = OsvFeedClient(OSV_BASE, 5.0, client=_client(lambda r: httpx.Response(503)))
        with self.assertRaises(FeedFetchError) as ctx:
            list(client.iter_ecosystem_export("npm"))
        self.assertEqual(ctx.exception.status_code, 503)

    def test_export_not_a_zip(self) -> None:
        client = OsvFeedClient(OSV_BASE, 5.0, client=_client(lambda r: httpx.Response(200, content=b"nope")))
        with self.assertRaises(FeedFetchError):
            list(client.iter_ecosystem_export("npm"))

    def test_modified_since_stops_at_marker(self) -> None:
        csv = "\n".join(
            [
                "2024-03-03T00:00:00Z,GHSA-new2",
                "2024-03-02T00:00:00Z,GHSA-new1",
                "2024-03-01T00:00:00Z,GHSA-old",
                "2024-02-01T00:00:00Z,GHSA-older",
            ]
        )
        client = OsvFeedClient(OSV_BASE, 5.0, client=_client(lambda r: httpx.Response(200, text=csv)))
        marker = datetime(2024, 3, 1, tzinfo=timezone.utc)
        entries = client.modified_since("npm", marker)
        self.assertEqual([advisory_id for _, advisory_id in entries], ["GHSA-new2", "GHSA-new1"])

    def test_fetch_advisory_missing_returns_none(self) -> None:
        client = OsvFeedClient(OSV_BASE, 5.0, client=_client(lambda r: httpx.Response(404)))
        self.assertIsNone(client.fetch_advisory("npm", "GHSA-gone"))

    def test_fetch_advisory(self) -> None:
        doc = osv_advisory("GHSA-cccc")

        def handler(request: httpx.Request) -> httpx.Response:
            self.assertEqual(request.url.path, "/v1/npm/GHSA-cccc.json")
            return httpx.Response(200, json=doc)

        client = OsvFeedClient(OSV_BASE, 5.0, client=_client(handler))
        self.assertEqual(client.fetch_advisory("npm", "GHSA-cccc")["id"], "GHSA-cccc")

    def test_transport_error_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = OsvFeedClient(OSV_BASE, 5.0, client=_client(handler))
        with self.assertRaises(FeedFetchError):
            client.fetch_advisory("npm", "GHSA-cccc")


class TestNvdFeedClient(unittest.TestCase):
    def test_fetch_feed_decompresses(self) -> None:
        payload = nvd_feed([nvd_item("CVE-2024-0001")])

        def handler(request: httpx.Request) -> httpx.Response:
            self.assertEqual(str(request.url), f"{NVD_BASE}/CVE-2024.json.xz")
            return httpx.Response(200, content=payload)

        client = NvdFeedClient(NVD_BASE, 5.0, client=_client(handler))
        data = client.fetch_feed("CVE-2024")
        self.assertEqual(data["cve_items"][0]["id"], "CVE-2024-0001")

    def test_fetch_feed_bad_payload(self) -> None:
        client = NvdFeedClient(NVD_BASE, 5.0, client=_client(lambda r: httpx.Response(200, content=b"plain")))
        with self.assertRaises(FeedFetchError):
            client.fetch_feed("CVE-Modified")

    def test_fetch_feed_not_found(self) -> None:
        client = NvdFeedClient(NVD_BASE, 5.0, client=_client(lambda r: httpx.Response(404)))
        with self.assertRaises(FeedFetchError) as ctx:
            client.fetch_feed("CVE-1999")
        self.assertEqual(ctx.exception.status_code, 404)


if __name__ == "__main__":
    unittest.main()
