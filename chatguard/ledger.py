"""In-memory admission ledger.

Tracks per-key counts using a fixed window plus a lockout: once a key spends
more than ``max_count`` units inside one window it is blocked for
``block_duration_seconds`` and every call is rejected until the block elapses.
Each ledger owns one lock, so a check is atomic with respect to other checks
and to the janitor's sweep.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from chatguard.config import Policy


@dataclass
class CounterRecord:
    """Fixed-window counter for a single key."""

    count: int = 0
    window_start: Optional[float] = None
    blocked_until: Optional[float] = None

    def reset(self) -> None:
        self.count = 0
        self.window_start = None
        self.blocked_until = None


@dataclass
class AdmissionDecision:
    """Outcome of an admission check.

    ``retry_after`` is set on denials, ``remaining`` and ``reset_at`` on
    successful rate checks. ``code`` names the reason for a denial.
    """

    allowed: bool
    code: Optional[str] = None
    retry_after: Optional[float] = None
    remaining: Optional[int] = None
    reset_at: Optional[float] = None
    limit: Optional[int] = None


@dataclass
class AdmissionLedger:
    """Keyed counter store with fixed-window-plus-block semantics."""

    policy: Policy
    clock: Callable[[], float] = time.time
    _records: Dict[str, CounterRecord] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def check(self, key: str) -> AdmissionDecision:
        """Count one unit of work for ``key`` and decide whether it may proceed.

        The unit that overflows the window (the ``max_count + 1``-th) is itself
        rejected and starts the block. Blocked calls are not counted.

        Args:
            key: Client identity (network address, session id, ...).

        Returns:
            An AdmissionDecision. Denials carry ``retry_after`` in seconds.
        """
        policy = self.policy
        with self._lock:
            now = self.clock()
            record = self._records.get(key)
            if record is None:
                record = CounterRecord()
                self._records[key] = record

            if record.blocked_until is not None:
                if now < record.blocked_until:
                    return AdmissionDecision(
                        allowed=False,
                        retry_after=record.blocked_until - now,
                        limit=policy.max_count,
                    )
                record.reset()

            if (
                record.window_start is not None
                and now - record.window_start > policy.window_seconds
            ):
                record.reset()

            if record.window_start is None:
                record.window_start = now

            record.count += 1

            if record.count > policy.max_count:
                record.blocked_until = now + policy.block_duration_seconds
                return AdmissionDecision(
                    allowed=False,
                    retry_after=policy.block_duration_seconds,
                    limit=policy.max_count,
                )

            return AdmissionDecision(
                allowed=True,
                remaining=max(0, policy.max_count - record.count),
                reset_at=record.window_start + policy.window_seconds,
                limit=policy.max_count,
            )

    def peek(self, key: str) -> Optional[CounterRecord]:
        """Return a copy of the record for ``key`` without counting anything."""
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            return CounterRecord(record.count, record.window_start, record.blocked_until)

    def reset(self, key: str) -> None:
        """Forget ``key`` entirely."""
        with self._lock:
            self._records.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def sweep(self) -> int:
        """Reset records whose block or window has elapsed.

        Records that were already idle (no window, no block) are evicted so
        long-idle keys do not accumulate.

        Returns:
            The number of records reset or evicted.
        """
        touched = 0
        with self._lock:
            now = self.clock()
            for key in list(self._records):
                record = self._records[key]
                if record.blocked_until is not None:
                    if now >= record.blocked_until:
                        record.reset()
                        touched += 1
                elif record.window_start is None:
                    del self._records[key]
                    touched += 1
                elif now - record.window_start > self.policy.window_seconds:
                    record.reset()
                    touched += 1
        return touched

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
