"""Spam detection for inbound chat-user traffic.

The detector only classifies; it never drops a message itself. Callers decide
whether to suppress processing, send a warning, or blacklist the user based
on the verdict.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from chatguard.access import user_key
from chatguard.config import SpamPolicy


@dataclass
class SpamRecord:
    """Per ``session:chat_user`` counter with warning and auto-reply state."""

    count: int = 0
    window_start: Optional[float] = None
    blocked_until: Optional[float] = None
    warned: bool = False
    last_auto_reply: Optional[float] = None

    def reset_window(self) -> None:
        self.count = 0
        self.window_start = None
        self.blocked_until = None
        self.warned = False


@dataclass
class SpamVerdict:
    """Result of observing one inbound message."""

    is_spam: bool
    should_warn: bool
    message_count: int
    can_auto_reply: bool


class SpamDetector:
    """Counts inbound messages per chat user and reports spam eligibility."""

    def __init__(
        self,
        policy: SpamPolicy,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy
        self._clock = clock
        self._lock = threading.Lock()
        self._records: Dict[str, SpamRecord] = {}

    def observe(self, session: str, chat_user: str) -> SpamVerdict:
        """Record one inbound message from ``chat_user`` and classify it.

        ``should_warn`` fires at most once per window.
        """
        key = user_key(session, chat_user)
        policy = self.policy
        with self._lock:
            now = self._clock()
            record = self._records.get(key)
            if record is None:
                record = SpamRecord()
                self._records[key] = record

            if (
                record.window_start is not None
                and now - record.window_start > policy.window_seconds
            ):
                record.reset_window()

            if record.window_start is None:
                record.window_start = now

            record.count += 1

            should_warn = record.count >= policy.warn_threshold and not record.warned
            if should_warn:
                record.warned = True

            return SpamVerdict(
                is_spam=record.count > policy.max_count,
                should_warn=should_warn,
                message_count=record.count,
                can_auto_reply=(
                    record.last_auto_reply is None
                    or now - record.last_auto_reply > policy.auto_reply_throttle_seconds
                ),
            )

    def mark_auto_reply_sent(self, session: str, chat_user: str) -> None:
        """Remember that an automatic reply went out (no-op for unknown users)."""
        with self._lock:
            record = self._records.get(user_key(session, chat_user))
            if record is not None:
                record.last_auto_reply = self._clock()

    def sweep(self) -> int:
        """Reset lapsed windows; evict records with nothing left to remember."""
        touched = 0
        with self._lock:
            now = self._clock()
            for key in list(self._records):
                record = self._records[key]
                if record.window_start is None:
                    throttled = (
                        record.last_auto_reply is not None
                        and now - record.last_auto_reply
                        <= self.policy.auto_reply_throttle_seconds
                    )
                    if not throttled:
                        del self._records[key]
                        touched += 1
                elif now - record.window_start > self.policy.window_seconds:
                    record.reset_window()
                    touched += 1
        return touched

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
