"""
Error taxonomy for feed sync, index rebuild, matching and scan orchestration.

CorrelatorError (base)
  ├── SyncFailure          one ecosystem's feed fetch/parse/store failed
  ├── IndexRebuildFailure  CPE index rebuild aborted before the swap
  ├── MatchFailure         one component could not be matched
  ├── RunFailure           the whole scan run is aborted
  │     └── RunTimeout     the run exceeded its maximum duration
  └── ConcurrencyConflict  a job is already running (reported as a status, not an error)
"""


class CorrelatorError(Exception):
    """Base error; message is safe to surface on status records and API responses."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class SyncFailure(CorrelatorError):
    """Raised when syncing one ecosystem fails. Previously synced data stays served."""

    def __init__(self, ecosystem: str, message: str) -> None:
        self.ecosystem = ecosystem
        super().__init__(f"[{ecosystem}] {message}")


class IndexRebuildFailure(CorrelatorError):
    """Raised when the CPE index rebuild fails; the previous generation remains active."""


class MatchFailure(CorrelatorError):
    """Raised when a single component cannot be matched. Isolated to that component."""

    def __init__(self, component_key: tuple[str, str, str], message: str) -> None:
        self.component_key = component_key
        super().__init__(message)


class RunFailure(CorrelatorError):
    """Raised when a scan run must be aborted; none of its writes are committed."""


class RunTimeout(RunFailure):
    """Raised when a scan run passes its deadline."""


class ConcurrencyConflict(CorrelatorError):
    """Raised when a lock is already held; callers translate it to 'already_running'."""

    def __init__(self, lock_name: str, holder: str | None) -> None:
        self.lock_name = lock_name
        self.holder = holder
        super().__init__(f"{lock_name} is already running")
