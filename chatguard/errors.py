"""Denial taxonomy for the admission-control layer.

Every denial carries a stable machine-readable code, a human-readable message
and, for rate conditions, a retry hint in seconds so that clients can back off
without parsing prose.
"""

import math
from typing import Optional

IP_BLACKLISTED = "IP_BLACKLISTED"
USER_BLACKLISTED = "USER_BLACKLISTED"
RATE_LIMITED = "RATE_LIMITED"
BROADCAST_LIMITED = "BROADCAST_LIMITED"
TOO_MANY_RECIPIENTS = "TOO_MANY_RECIPIENTS"
TOO_MANY_CONNECTIONS = "TOO_MANY_CONNECTIONS"

# HTTP status for each denial code.
STATUS_BY_CODE = {
    IP_BLACKLISTED: 403,
    USER_BLACKLISTED: 403,
    RATE_LIMITED: 429,
    BROADCAST_LIMITED: 429,
    TOO_MANY_RECIPIENTS: 400,
    TOO_MANY_CONNECTIONS: 429,
}


class AdmissionDenied(Exception):
    """Raised when a unit of work is not admitted."""

    def __init__(
        self,
        code: str,
        detail: str,
        retry_after: Optional[float] = None,
    ) -> None:
        self.code = code
        self.detail = detail
        self.retry_after = retry_after
        super().__init__(detail)

    @property
    def status_code(self) -> int:
        return STATUS_BY_CODE.get(self.code, 403)

    @property
    def retry_after_seconds(self) -> Optional[int]:
        """Retry hint rounded up to whole seconds (None when not applicable)."""
        if self.retry_after is None:
            return None
        return int(math.ceil(self.retry_after))
