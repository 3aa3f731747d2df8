"""HTTP clients for the OSV bucket and the NVD JSON feeds."""

from __future__ import annotations

import json
import logging
import lzma
import tempfile
import zipfile
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from correlator.core.config import Settings

logger = logging.getLogger(__name__)

_DOWNLOAD_CHUNK_BYTES = 1024 * 1024
# Spill downloads to disk beyond this size.
_SPOOL_MAX_BYTES = 64 * 1024 * 1024


class FeedFetchError(Exception):
    """Raised when a feed cannot be downloaded or decoded."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _raise_for_status(resp: httpx.Response, url: str) -> None:
    if resp.status_code >= 400:
        raise FeedFetchError(f"GET {url} returned {resp.status_code}", resp.status_code)


def _parse_marker(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class OsvFeedClient:
    """Reads per-ecosystem OSV exports: all.zip, modified_id.csv and single advisories."""

    def __init__(self, base_url: str, timeout: float, client: httpx.Client | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.Client(follow_redirects=True, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> OsvFeedClient:
        return cls(settings.OSV_BASE_URL, settings.FEED_REQUEST_TIMEOUT_SEC)

    def close(self) -> None:
        self._client.close()

    def iter_ecosystem_export(self, ecosystem: str) -> Iterator[tuple[str, bytes]]:
        """
        Download {base}/{ecosystem}/all.zip and yield (file name, raw JSON bytes)
        for each advisory file. The archive is buffered in a spooled temp file.
        """
        url = f"{self.base_url}/{ecosystem}/all.zip"
        logger.info("Downloading %s", url)
        with tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_BYTES) as buffer:
            try:
                with self._client.stream("GET", url, timeout=self.timeout) as resp:
                    _raise_for_status(resp, url)
                    for chunk in resp.iter_bytes(_DOWNLOAD_CHUNK_BYTES):
                        buffer.write(chunk)
            except httpx.HTTPError as e:
                raise FeedFetchError(f"GET {url} failed: {e!s}") from e
            size_mb = buffer.tell() / (1024 * 1024)
            logger.info("Downloaded %s export (%.1fMB)", ecosystem, size_mb)
            buffer.seek(0)
            try:
                archive = zipfile.ZipFile(buffer)
            except zipfile.BadZipFile as e:
                raise FeedFetchError(f"{url} is not a valid zip archive") from e
            with archive:
                for name in archive.namelist():
                    if name.endswith(".json"):
                        yield name, archive.read(name)

    def modified_since(self, ecosystem: str, marker: datetime) -> list[tuple[datetime, str]]:
        """
        Read {base}/{ecosystem}/modified_id.csv (reverse-chronological 'iso_date,id' lines)
        and return the entries strictly newer than marker.
        """
        url = f"{self.base_url}/{ecosystem}/modified_id.csv"
        try:
            resp = self._client.get(url, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise FeedFetchError(f"GET {url} failed: {e!s}") from e
        _raise_for_status(resp, url)

        entries: list[tuple[datetime, str]] = []
        for line in resp.text.splitlines():
            date_str, sep, advisory_id = line.partition(",")
            if not sep:
                continue
            modified = _parse_marker(date_str)
            if modified is None:
                continue
            if modified <= marker:
                break
            entries.append((modified, advisory_id.strip()))
        return entries

    def fetch_advisory(self, ecosystem: str, advisory_id: str) -> dict[str, Any] | None:
        """Fetch one advisory JSON; returns None when it no longer exists."""
        url = f"{self.base_url}/{ecosystem}/{advisory_id}.json"
        try:
            resp = self._client.get(url, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise FeedFetchError(f"GET {url} failed: {e!s}") from e
        if resp.status_code == 404:
            return None
        _raise_for_status(resp, url)
        try:
            return resp.json()
        except json.JSONDecodeError as e:
            raise FeedFetchError(f"Invalid JSON in {url}: {e!s}") from e


class NvdFeedClient:
    """Reads xz-compressed NVD JSON feeds (CVE-<year>, CVE-Modified, CVE-Recent)."""

    def __init__(self, base_url: str, timeout: float, client: httpx.Client | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.Client(follow_redirects=True, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> NvdFeedClient:
        return cls(settings.NVD_FEEDS_BASE_URL, settings.FEED_REQUEST_TIMEOUT_SEC)

    def close(self) -> None:
        self._client.close()

    def fetch_feed(self, feed_name: str) -> dict[str, Any]:
        """Download {base}/{feed_name}.json.xz and return the decoded JSON document."""
        url = f"{self.base_url}/{feed_name}.json.xz"
        logger.info("NVD: downloading %s", url)
        try:
            resp = self._client.get(url, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise FeedFetchError(f"GET {url} failed: {e!s}") from e
        _raise_for_status(resp, url)
        try:
            raw = lzma.decompress(resp.content)
            data = json.loads(raw)
        except (lzma.LZMAError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FeedFetchError(f"Could not decode {url}: {e!s}") from e
        if not isinstance(data, dict):
            raise FeedFetchError(f"Unexpected document shape in {url}")
        return data
