"""Broadcast admission: a recipient cap per operation plus a windowed count."""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from chatguard.config import BroadcastPolicy
from chatguard.errors import BROADCAST_LIMITED, TOO_MANY_RECIPIENTS
from chatguard.ledger import AdmissionLedger


@dataclass
class BroadcastDecision:
    """Outcome of a broadcast check.

    On success ``delay_between_messages`` tells the caller how to pace the
    per-recipient sends; pacing itself is the caller's job.
    """

    allowed: bool
    code: Optional[str] = None
    detail: str = ""
    retry_after: Optional[float] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_at: Optional[float] = None
    delay_between_messages: Optional[float] = None


class BroadcastGuard:
    """Gates broadcast operations per originating session."""

    def __init__(
        self,
        policy: BroadcastPolicy,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy
        self.ledger = AdmissionLedger(policy.ledger_policy, clock=clock)

    def check(self, session: str, recipient_count: int) -> BroadcastDecision:
        """Decide whether ``session`` may broadcast to ``recipient_count`` users.

        An oversized recipient list is rejected before the window is consulted,
        so it does not consume a broadcast unit.
        """
        cap = self.policy.max_recipients_per_broadcast
        if recipient_count > cap:
            return BroadcastDecision(
                allowed=False,
                code=TOO_MANY_RECIPIENTS,
                detail="At most {} recipients per broadcast ({} given).".format(
                    cap, recipient_count
                ),
            )

        decision = self.ledger.check(session)
        if not decision.allowed:
            return BroadcastDecision(
                allowed=False,
                code=BROADCAST_LIMITED,
                detail="At most {} broadcasts per {:.0f} minutes.".format(
                    self.policy.max_count, self.policy.window_seconds / 60
                ),
                retry_after=decision.retry_after,
            )

        return BroadcastDecision(
            allowed=True,
            limit=decision.limit,
            remaining=decision.remaining,
            reset_at=decision.reset_at,
            delay_between_messages=self.policy.delay_between_messages_seconds,
        )
