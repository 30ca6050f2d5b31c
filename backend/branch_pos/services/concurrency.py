# Overview: Row locking and transaction deadline helpers shared by the branch services.

from __future__ import annotations

import time

from ..errors import BranchConnectionError, ConnectionErrorKind


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; SQLite write transactions are
    already serialized by BEGIN IMMEDIATE. Other engines honor it.
    """
    return query.with_for_update()


class Deadline:
    """
    Caller-supplied time budget for one branch transaction.

    check() raises BranchConnectionError(TIMEOUT) once the budget is spent;
    callers invoke it before committing so an expired transaction rolls back
    instead of being applied late. timeout=None never expires.
    """

    def __init__(self, timeout: float | None, *, clock=time.monotonic):
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = timeout
        self._clock = clock
        self._started = clock()

    @property
    def remaining(self) -> float | None:
        if self.timeout is None:
            return None
        return self.timeout - (self._clock() - self._started)

    @property
    def expired(self) -> bool:
        remaining = self.remaining
        return remaining is not None and remaining <= 0

    def check(self, stage: str, branch_id: int | None = None) -> None:
        if self.expired:
            raise BranchConnectionError(
                ConnectionErrorKind.TIMEOUT,
                f"Branch transaction timed out during {stage}",
                details={"branch_id": branch_id, "stage": stage, "timeout": self.timeout},
            )
