"""Persisted job locks acquired by compare-and-swap on the job_locks table."""

import logging
import os
import socket
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from correlator.models import JobLock
from correlator.services.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

SCAN_LOCK_NAME = "platform-scan"


def sync_lock_name(ecosystem: str) -> str:
    return f"sync:{ecosystem}"


def _ensure_row(session: Session, name: str) -> None:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Locks are not supported on dialect {dialect!r}")
    session.execute(insert(JobLock).values(name=name).on_conflict_do_nothing(index_elements=["name"]))


def acquire_lock(session: Session, name: str, holder: str, ttl: timedelta) -> datetime:
    """
    Take the named lock for holder until now + ttl and commit.

    The lock is taken only if it is free or its previous holder's lease expired.
    Raises ConcurrencyConflict (after rolling back) when it is held. Returns the expiry.
    """
    now = datetime.now(timezone.utc)
    expires_at = now + ttl
    _ensure_row(session, name)
    result = session.execute(
        update(JobLock)
        .where(
            JobLock.name == name,
            or_(JobLock.holder.is_(None), JobLock.expires_at < now),
        )
        .values(holder=holder, acquired_at=now, expires_at=expires_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        raise ConcurrencyConflict(name, current_holder(session, name))
    session.commit()
    logger.debug("Lock %s acquired by %s until %s", name, holder, expires_at.isoformat())
    return expires_at


def release_lock(session: Session, name: str, holder: str) -> bool:
    """Release the lock if holder still owns it and commit. Returns whether it was released."""
    result = session.execute(
        update(JobLock)
        .where(JobLock.name == name, JobLock.holder == holder)
        .values(holder=None, acquired_at=None, expires_at=None)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    if result.rowcount != 1:
        logger.warning("Lock %s was not held by %s at release", name, holder)
        return False
    return True


def clear_lock(session: Session, name: str) -> None:
    """Free the lock whatever its holder. Does not commit; used when the holder is known dead."""
    session.execute(
        update(JobLock)
        .where(JobLock.name == name)
        .values(holder=None, acquired_at=None, expires_at=None)
        .execution_options(synchronize_session=False)
    )


def current_holder(session: Session, name: str) -> str | None:
    return session.scalar(select(JobLock.holder).where(JobLock.name == name))


def make_holder(prefix: str) -> str:
    """Unique holder token naming the process that owns a lock."""
    return f"{prefix}:{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:12]}"
