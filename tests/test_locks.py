"""Persisted job lock tests against SQLite."""

import unittest
from datetime import datetime, timedelta, timezone

from correlator.models import JobLock
from correlator.services.errors import ConcurrencyConflict
from correlator.services.locks import (
    SCAN_LOCK_NAME,
    acquire_lock,
    clear_lock,
    current_holder,
    make_holder,
    release_lock,
    sync_lock_name,
)
from tests.support import SqliteDatabase


class TestJobLocks(unittest.TestCase):
    def setUp(self) -> None:
        self.db = SqliteDatabase()
        self.session = self.db.session()

    def tearDown(self) -> None:
        self.session.close()
        self.db.close()

    def test_acquire_then_conflict(self) -> None:
        acquire_lock(self.session, SCAN_LOCK_NAME, "worker-1", timedelta(minutes=5))
        with self.assertRaises(ConcurrencyConflict) as ctx:
            acquire_lock(self.session, SCAN_LOCK_NAME, "worker-2", timedelta(minutes=5))
        self.assertEqual(ctx.exception.holder, "worker-1")
        self.assertEqual(current_holder(self.session, SCAN_LOCK_NAME), "worker-1")

    def test_release_frees_lock(self) -> None:
        acquire_lock(self.session, SCAN_LOCK_NAME, "worker-1", timedelta(minutes=5))
        self.assertTrue(release_lock(self.session, SCAN_LOCK_NAME, "worker-1"))
        self.assertIsNone(current_holder(self.session, SCAN_LOCK_NAME))
        acquire_lock(self.session, SCAN_LOCK_NAME, "worker-2", timedelta(minutes=5))
        self.assertEqual(current_holder(self.session, SCAN_LOCK_NAME), "worker-2")

    def test_release_by_other_holder_is_ignored(self) -> None:
        acquire_lock(self.session, SCAN_LOCK_NAME, "worker-1", timedelta(minutes=5))
        self.assertFalse(release_lock(self.session, SCAN_LOCK_NAME, "worker-2"))
        self.assertEqual(current_holder(self.session, SCAN_LOCK_NAME), "worker-1")

    def test_clear_frees_a_live_lease(self) -> None:
        acquire_lock(self.session, SCAN_LOCK_NAME, "dead-worker", timedelta(minutes=5))
        clear_lock(self.session, SCAN_LOCK_NAME)
        self.session.commit()
        self.assertIsNone(current_holder(self.session, SCAN_LOCK_NAME))
        acquire_lock(self.session, SCAN_LOCK_NAME, "worker-2", timedelta(minutes=5))
        self.assertEqual(current_holder(self.session, SCAN_LOCK_NAME), "worker-2")

    def test_expired_lease_can_be_taken_over(self) -> None:
        acquire_lock(self.session, SCAN_LOCK_NAME, "dead-worker", timedelta(minutes=5))
        lock = self.session.get(JobLock, SCAN_LOCK_NAME)
        lock.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        self.session.commit()
        acquire_lock(self.session, SCAN_LOCK_NAME, "worker-2", timedelta(minutes=5))
        self.assertEqual(current_holder(self.session, SCAN_LOCK_NAME), "worker-2")

    def test_locks_are_independent_by_name(self) -> None:
        acquire_lock(self.session, sync_lock_name("npm"), "a", timedelta(minutes=5))
        acquire_lock(self.session, sync_lock_name("PyPI"), "b", timedelta(minutes=5))
        self.assertEqual(current_holder(self.session, "sync:npm"), "a")
        self.assertEqual(current_holder(self.session, "sync:PyPI"), "b")

    def test_holder_tokens_are_unique(self) -> None:
        self.assertNotEqual(make_holder("scan"), make_holder("scan"))
        self.assertTrue(make_holder("scan").startswith("scan:"))


if __name__ == "__main__":
    unittest.main()
