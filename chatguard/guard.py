"""The admission-control subsystem as a single owned instance.

``AntiSpamGuard`` builds every ledger, the access lists, the spam detector,
the broadcast guard, the connection controller and the janitor from one
GuardConfig. The web layer holds one instance and calls into it; nothing in
this module is a process-wide global.

Ordering at every gate: blacklist first, then whitelist, then the
category's rate check.
"""

import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Collection, Dict, Mapping, Optional

from chatguard.access import AccessListManager
from chatguard.broadcast import BroadcastDecision, BroadcastGuard
from chatguard.config import GuardConfig
from chatguard.connections import ConnectionAdmissionController
from chatguard.errors import (
    IP_BLACKLISTED,
    RATE_LIMITED,
    USER_BLACKLISTED,
    AdmissionDenied,
)
from chatguard.janitor import Janitor
from chatguard.ledger import AdmissionDecision, AdmissionLedger
from chatguard.spam import SpamDetector, SpamVerdict
from chatguard.telemetry import log_admission

RATE_CATEGORIES = ("api", "auth", "message")

# Inbound message screening actions.
SUPPRESS = "suppress"
SPAM = "spam"
WARN = "warn"
PROCESS = "process"


def get_client_ip(
    headers: Mapping[str, str],
    peer: Optional[str],
    trusted_proxies: Collection[str] = (),
) -> str:
    """Resolve the client address.

    X-Forwarded-For (first entry) and then X-Real-IP are honoured only when
    the direct peer is one of ``trusted_proxies``; any other peer is taken at
    its socket address so it cannot claim a whitelisted or unlisted address.
    """
    if peer is None:
        return "unknown"
    if peer not in trusted_proxies:
        return peer

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return peer


@dataclass
class InboundScreening:
    """What the ingestion layer should do with one inbound chat message.

    ``action`` is one of ``suppress`` (user is blacklisted), ``spam`` (user
    was just blacklisted; send the spam notice once), ``warn`` (send a
    slow-down warning and skip automated replies) or ``process``.
    """

    action: str
    verdict: Optional[SpamVerdict] = None
    can_auto_reply: bool = False


class AntiSpamGuard:
    """Owns all admission-control state for one process."""

    def __init__(
        self,
        config: Optional[GuardConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or GuardConfig()
        self._clock = clock

        self.access = AccessListManager(self.config.whitelist, clock=clock)
        if self.config.access_list_file:
            self.access.load_seed_file(self.config.access_list_file)

        self.ledgers: Dict[str, AdmissionLedger] = {
            name: AdmissionLedger(getattr(self.config, name), clock=clock)
            for name in RATE_CATEGORIES
        }
        self.broadcasts = BroadcastGuard(self.config.broadcast, clock=clock)
        self.spam = SpamDetector(self.config.wa_user, clock=clock)
        self.connections = ConnectionAdmissionController(self.config.socket, self.access)

        stores: Dict[str, Any] = dict(self.ledgers)
        stores["broadcast"] = self.broadcasts.ledger
        stores["wa_user"] = self.spam
        stores["blacklist"] = self.access
        self.janitor = Janitor(stores, self.config.janitor.interval_seconds)

    # --- Request gates ---

    def check_request(
        self, category: str, ip: str, key: Optional[str] = None
    ) -> AdmissionDecision:
        """Run the access lists and then the ``category`` ledger.

        Args:
            category: One of "api", "auth", "message".
            ip: Client network address (consulted against the access lists).
            key: Ledger key; defaults to ``ip``.
        """
        ledger = self.ledgers[category]
        if self.access.is_blacklisted(ip):
            return AdmissionDecision(allowed=False, code=IP_BLACKLISTED)
        if self.access.is_whitelisted(ip):
            return AdmissionDecision(allowed=True)

        decision = ledger.check(key if key is not None else ip)
        if not decision.allowed:
            decision.code = RATE_LIMITED
        return decision

    def enforce_request(
        self, category: str, ip: str, key: Optional[str] = None
    ) -> AdmissionDecision:
        """Like check_request, but raise AdmissionDenied on denial.

        Raises:
            AdmissionDenied: With IP_BLACKLISTED or RATE_LIMITED.
        """
        decision = self.check_request(category, ip, key)
        if decision.allowed:
            return decision

        if decision.code == IP_BLACKLISTED:
            self._deny_blacklisted(category, ip)

        log_admission(
            category=category,
            key=key if key is not None else ip,
            outcome="denied",
            code=RATE_LIMITED,
            retry_after=decision.retry_after,
        )
        raise AdmissionDenied(
            RATE_LIMITED,
            "Too many {} requests. Try again in {} seconds.".format(
                category, math.ceil(decision.retry_after or 0)
            ),
            retry_after=decision.retry_after,
        )

    def enforce_address(self, category: str, ip: str) -> None:
        """Apply only the IP blacklist; no ledger is consulted.

        Raises:
            AdmissionDenied: With IP_BLACKLISTED.
        """
        if self.access.is_blacklisted(ip):
            self._deny_blacklisted(category, ip)

    def _deny_blacklisted(self, category: str, ip: str) -> None:
        log_admission(category=category, key=ip, outcome="blacklisted", code=IP_BLACKLISTED)
        raise AdmissionDenied(IP_BLACKLISTED, "Access denied: this address is blacklisted.")

    def enforce_broadcast(self, session: str, recipient_count: int) -> BroadcastDecision:
        """Run the broadcast guard for ``session``.

        Raises:
            AdmissionDenied: With TOO_MANY_RECIPIENTS or BROADCAST_LIMITED.
        """
        decision = self.broadcasts.check(session, recipient_count)
        if decision.allowed:
            return decision

        log_admission(
            category="broadcast",
            key=session,
            outcome="denied",
            code=decision.code,
            retry_after=decision.retry_after,
            detail=decision.detail,
        )
        raise AdmissionDenied(decision.code or "", decision.detail, retry_after=decision.retry_after)

    # --- Inbound chat messages ---

    def screen_inbound(self, session: str, chat_user: str) -> InboundScreening:
        """Classify one inbound message and promote spammers to the blacklist."""
        if self.access.is_user_blacklisted(session, chat_user):
            return InboundScreening(action=SUPPRESS)

        verdict = self.spam.observe(session, chat_user)
        if verdict.is_spam:
            self.access.blacklist_user(
                session,
                chat_user,
                reason="Auto-blacklisted for spam",
                duration=self.config.spam.auto_blacklist_seconds,
            )
            log_admission(
                category="wa_user",
                key="{}:{}".format(session, chat_user),
                outcome="blacklisted",
                code=USER_BLACKLISTED,
                detail="{} messages in window".format(verdict.message_count),
            )
            return InboundScreening(action=SPAM, verdict=verdict)

        if verdict.should_warn:
            return InboundScreening(action=WARN, verdict=verdict)

        return InboundScreening(
            action=PROCESS, verdict=verdict, can_auto_reply=verdict.can_auto_reply
        )

    def mark_auto_reply_sent(self, session: str, chat_user: str) -> None:
        self.spam.mark_auto_reply_sent(session, chat_user)

    # --- Persistent connections ---

    def admit_connection(self, identity: str, connection_id: str) -> AdmissionDecision:
        decision = self.connections.admit(identity, connection_id)
        if not decision.allowed:
            log_admission(category="socket", key=identity, outcome="denied", code=decision.code)
        return decision

    def release_connection(self, identity: str, connection_id: str) -> None:
        self.connections.release(identity, connection_id)

    # --- Stats and admin surface ---

    def get_stats(self) -> Dict[str, int]:
        """Counts of tracked keys per category plus access-list sizes."""
        stats = {name: len(ledger) for name, ledger in self.ledgers.items()}
        stats["broadcast"] = len(self.broadcasts.ledger)
        stats["wa_user"] = len(self.spam)
        stats["socket"] = len(self.connections)
        stats.update(self.access.sizes())
        return stats

    def get_blacklist_info(self) -> Dict[str, Any]:
        return self.access.describe()

    def clear_all_limits(self) -> None:
        """Reset every ledger and the spam detector. Access lists are kept."""
        for ledger in self.ledgers.values():
            ledger.clear()
        self.broadcasts.ledger.clear()
        self.spam.clear()
        log_admission(category="admin", key="*", outcome="limits_cleared")

    def blacklist_ip(self, ip: str, reason: str = "Manual", duration: Optional[float] = None) -> None:
        self.access.blacklist(ip, reason=reason, duration=duration)
        log_admission(category="admin", key=ip, outcome="blacklisted", detail=reason)

    def unblacklist_ip(self, ip: str) -> bool:
        return self.access.unblacklist(ip)

    def whitelist_ip(self, ip: str) -> None:
        self.access.whitelist(ip)

    def unwhitelist_ip(self, ip: str) -> bool:
        return self.access.unwhitelist(ip)

    def blacklist_user(
        self,
        session: str,
        chat_user: str,
        reason: str = "Spam",
        duration: Optional[float] = 24 * 60 * 60,
    ) -> None:
        self.access.blacklist_user(session, chat_user, reason=reason, duration=duration)

    def unblacklist_user(self, session: str, chat_user: str) -> bool:
        return self.access.unblacklist_user(session, chat_user)

    # --- Lifecycle ---

    def start(self) -> None:
        """Start the background janitor (needs a running event loop)."""
        self.janitor.start()

    async def shutdown(self) -> None:
        """Stop the janitor and drop all in-memory admission state."""
        await self.janitor.stop()
        self.clear_all_limits()
        self.connections.clear()
