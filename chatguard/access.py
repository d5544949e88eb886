"""Blacklist and whitelist management.

Two blacklists are kept: one for network addresses and one for chat users
(keyed ``session:chat_user``). Entries carry an optional expiry; an expired
entry is evicted the first time it is read. The whitelist holds network
addresses that bypass every rate check. At every call site the blacklist is
consulted first and wins over whitelist membership.
"""

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import yaml

_logger = logging.getLogger("chatguard")


def user_key(session: str, chat_user: str) -> str:
    """Composite key for a chat user within one chat session."""
    return "{}:{}".format(session, chat_user)


@dataclass
class BlacklistEntry:
    """A single blacklist record. ``expires_at`` of None means permanent."""

    reason: str
    created_at: float
    expires_at: Optional[float] = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def remaining(self, now: float) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - now)


class _Blacklist:
    """Expiring key -> BlacklistEntry map. Callers hold the manager lock."""

    def __init__(self) -> None:
        self.entries: Dict[str, BlacklistEntry] = {}

    def contains(self, key: str, now: float) -> bool:
        entry = self.entries.get(key)
        if entry is None:
            return False
        if entry.expired(now):
            del self.entries[key]
            return False
        return True

    def sweep(self, now: float) -> int:
        expired = [k for k, e in self.entries.items() if e.expired(now)]
        for key in expired:
            del self.entries[key]
        return len(expired)


class AccessListManager:
    """Fast-path accept/reject lists that preempt all other policies.

    Thread-safe via a single lock; every operation is a short in-memory
    lookup or mutation.
    """

    def __init__(
        self,
        whitelist: Iterable[str] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._ips = _Blacklist()
        self._users = _Blacklist()
        self._whitelist = set(whitelist)

    # --- Network identities ---

    def is_blacklisted(self, key: str) -> bool:
        """Return True if ``key`` holds a live blacklist entry.

        An expired entry is removed as a side effect and reported as absent.
        """
        with self._lock:
            return self._ips.contains(key, self._clock())

    def blacklist(
        self,
        key: str,
        reason: str = "Manual",
        duration: Optional[float] = None,
    ) -> BlacklistEntry:
        """Add or replace a blacklist entry.

        Args:
            key: Network address to block.
            reason: Free-form reason shown to operators.
            duration: Seconds until the entry expires; None or 0 is permanent.
        """
        with self._lock:
            entry = self._make_entry(reason, duration)
            self._ips.entries[key] = entry
        _logger.info("IP blacklisted: %s (%s)", key, reason)
        return entry

    def unblacklist(self, key: str) -> bool:
        """Remove ``key`` from the blacklist. Returns False if it was not listed."""
        with self._lock:
            removed = self._ips.entries.pop(key, None) is not None
        if removed:
            _logger.info("IP unblacklisted: %s", key)
        return removed

    def is_whitelisted(self, key: str) -> bool:
        with self._lock:
            return key in self._whitelist

    def whitelist(self, key: str) -> None:
        with self._lock:
            self._whitelist.add(key)
        _logger.info("IP whitelisted: %s", key)

    def unwhitelist(self, key: str) -> bool:
        with self._lock:
            if key not in self._whitelist:
                return False
            self._whitelist.discard(key)
        _logger.info("IP removed from whitelist: %s", key)
        return True

    # --- Chat users ---

    def is_user_blacklisted(self, session: str, chat_user: str) -> bool:
        with self._lock:
            return self._users.contains(user_key(session, chat_user), self._clock())

    def blacklist_user(
        self,
        session: str,
        chat_user: str,
        reason: str = "Spam",
        duration: Optional[float] = 24 * 60 * 60,
    ) -> BlacklistEntry:
        """Blacklist a chat user within one session (24 hours by default)."""
        with self._lock:
            entry = self._make_entry(reason, duration)
            self._users.entries[user_key(session, chat_user)] = entry
        _logger.info("User blacklisted: %s in session %s (%s)", chat_user, session, reason)
        return entry

    def unblacklist_user(self, session: str, chat_user: str) -> bool:
        with self._lock:
            removed = self._users.entries.pop(user_key(session, chat_user), None) is not None
        if removed:
            _logger.info("User unblacklisted: %s in session %s", chat_user, session)
        return removed

    # --- Maintenance and introspection ---

    def sweep(self) -> int:
        """Evict every expired entry from both blacklists."""
        with self._lock:
            now = self._clock()
            return self._ips.sweep(now) + self._users.sweep(now)

    def sizes(self) -> Dict[str, int]:
        with self._lock:
            return {
                "blacklisted_ips": len(self._ips.entries),
                "blacklisted_users": len(self._users.entries),
                "whitelisted_ips": len(self._whitelist),
            }

    def describe(self) -> Dict[str, List[Dict[str, Any]]]:
        """Enumerate both blacklists with their remaining time in seconds."""
        with self._lock:
            now = self._clock()
            ips = [
                {
                    "ip": key,
                    "reason": entry.reason,
                    "created_at": entry.created_at,
                    "expires_at": entry.expires_at,
                    "remaining_seconds": entry.remaining(now),
                }
                for key, entry in self._ips.entries.items()
                if not entry.expired(now)
            ]
            users = []
            for key, entry in self._users.entries.items():
                if entry.expired(now):
                    continue
                # Chat user ids may contain ':' themselves; the session id does not.
                session, _, chat_user = key.partition(":")
                users.append(
                    {
                        "session_id": session,
                        "chat_user": chat_user,
                        "reason": entry.reason,
                        "created_at": entry.created_at,
                        "expires_at": entry.expires_at,
                        "remaining_seconds": entry.remaining(now),
                    }
                )
        return {"ips": ips, "users": users}

    def whitelisted(self) -> List[str]:
        with self._lock:
            return sorted(self._whitelist)

    def _make_entry(self, reason: str, duration: Optional[float]) -> BlacklistEntry:
        now = self._clock()
        expires_at = now + duration if duration else None
        return BlacklistEntry(reason=reason, created_at=now, expires_at=expires_at)

    def load_seed_file(self, path: str) -> None:
        """Seed the lists from a YAML file.

        Expected shape::

            whitelist: ["10.0.0.5"]
            blacklist:
              - ip: 203.0.113.7
                reason: scraper
                duration_seconds: 86400   # omit for permanent

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the YAML is not a mapping or an entry has no ip.
        """
        seed_path = Path(path)
        if not seed_path.exists():
            raise FileNotFoundError("Access list file not found: {}".format(path))

        with open(seed_path, "r") as f:
            raw = yaml.safe_load(f) or {}

        if not isinstance(raw, dict):
            raise ValueError("Access list file must contain a YAML mapping at the top level")

        for ip in raw.get("whitelist", []) or []:
            self.whitelist(str(ip))

        for item in raw.get("blacklist", []) or []:
            if not isinstance(item, dict) or "ip" not in item:
                raise ValueError("Blacklist entries need an 'ip' field: {!r}".format(item))
            self.blacklist(
                str(item["ip"]),
                reason=item.get("reason", "Seeded"),
                duration=item.get("duration_seconds"),
            )
