"""
auth/lockout.py -- Account lockout policy.

Pure decision logic: no I/O, no clock reads. The caller passes "now" in and
persists the result through UserStore.record_failed_attempt().

Policy:
  Every wrong password adds one to the stored counter. When the counter
  reaches max_attempts (default 5) the account is locked for lockout_seconds
  (default 30 minutes) from the moment of that failure. The counter is not
  reset when a lock expires, so a wrong password right after expiry locks the
  account again immediately. Only a successful login resets it.

Concurrency: the counter increment is read-then-write. Two simultaneous
failures may both write the same value (last writer wins); the account then
locks one attempt late. That is accepted for a hardening counter.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class LockoutDecision:
    failed_attempts: int
    locked_until: datetime | None
    attempts_remaining: int


class LockoutPolicy:
    def __init__(self, max_attempts: int = 5, lockout_seconds: int = 30 * 60) -> None:
        self.max_attempts = max_attempts
        self.lockout = timedelta(seconds=lockout_seconds)

    def is_locked(self, locked_until: datetime | None, now: datetime) -> bool:
        """Return True while a lock is in force. A past lock-until is not a lock."""
        return locked_until is not None and locked_until > now

    def register_failure(self, current_attempts: int, now: datetime) -> LockoutDecision:
        """Map the stored failure count to the state after one more failure."""
        attempts = current_attempts + 1
        locked_until = now + self.lockout if attempts >= self.max_attempts else None
        return LockoutDecision(
            failed_attempts=attempts,
            locked_until=locked_until,
            attempts_remaining=max(0, self.max_attempts - attempts),
        )
