"""Concurrent-connection cap for persistent channels.

This gate is not time-windowed: an identity may hold at most
``max_connections_per_identity`` open connections, and a slot frees up as
soon as one of them disconnects.
"""

import logging
import threading
from typing import Dict, Set

from chatguard.access import AccessListManager
from chatguard.config import SocketPolicy
from chatguard.errors import IP_BLACKLISTED, TOO_MANY_CONNECTIONS
from chatguard.ledger import AdmissionDecision

_logger = logging.getLogger("chatguard")


class ConnectionAdmissionController:
    """Tracks open connection ids per network identity.

    Admit and release both run under one lock so that a disconnect racing a
    new connect for the same identity cannot over-admit.
    """

    def __init__(self, policy: SocketPolicy, access: AccessListManager) -> None:
        self.policy = policy
        self._access = access
        self._lock = threading.Lock()
        self._connections: Dict[str, Set[str]] = {}

    def admit(self, identity: str, connection_id: str) -> AdmissionDecision:
        """Admit a new connection for ``identity`` if it is under the cap."""
        if self._access.is_blacklisted(identity):
            return AdmissionDecision(allowed=False, code=IP_BLACKLISTED)

        limit = self.policy.max_connections_per_identity
        whitelisted = self._access.is_whitelisted(identity)

        with self._lock:
            open_ids = self._connections.get(identity, set())
            if not whitelisted and len(open_ids) >= limit:
                _logger.info("Connection limit exceeded for %s", identity)
                return AdmissionDecision(allowed=False, code=TOO_MANY_CONNECTIONS, limit=limit)
            open_ids.add(connection_id)
            self._connections[identity] = open_ids
            return AdmissionDecision(
                allowed=True,
                remaining=max(0, limit - len(open_ids)),
                limit=limit,
            )

    def release(self, identity: str, connection_id: str) -> None:
        """Forget a closed connection; drop the identity once none remain."""
        with self._lock:
            open_ids = self._connections.get(identity)
            if open_ids is None:
                return
            open_ids.discard(connection_id)
            if not open_ids:
                del self._connections[identity]

    def connection_count(self, identity: str) -> int:
        with self._lock:
            return len(self._connections.get(identity, ()))

    def clear(self) -> None:
        with self._lock:
            self._connections.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)
