"""Operator key authentication for the chatguard admin surface.

The ``/admin`` routes change the access lists and can wipe every rate
counter, so when ``admin.enabled`` is set each request must carry an
``X-Admin-Key`` header. Its SHA-256 hash is compared in constant time against
the configured ``admin.api_keys`` (operator name -> hash); only hashes appear
in the configuration. Business traffic on ``/v1`` never passes through here.
"""

import hashlib
import hmac
from typing import Dict, Optional


class AdminAuthError(Exception):
    """Raised when operator key validation fails.

    The app turns this into a 401 with code ``ADMIN_AUTH_FAILED`` and logs the
    caller's address; ``detail`` never echoes the submitted key.
    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


def hash_admin_key(raw_key: str) -> str:
    """Compute the SHA-256 hash of a raw operator key.

    Use this to generate the hash value for config files::

        python -c "from chatguard.auth import hash_admin_key; print(hash_admin_key('key'))"
    """
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def validate_admin_key(
    header_value: Optional[str],
    api_keys: Dict[str, str],
) -> str:
    """Validate an operator key and return the operator name it belongs to.

    Args:
        header_value: The value from the X-Admin-Key header (may be None).
        api_keys: Mapping of operator_name -> sha256_hash from config.

    An empty ``api_keys`` mapping rejects every key, so enabling admin auth
    without keys locks the admin surface rather than opening it.

    Raises:
        AdminAuthError: If the key is missing or unknown.
    """
    if not header_value:
        raise AdminAuthError("Missing operator key. Provide X-Admin-Key header.")

    incoming_hash = hash_admin_key(header_value)

    for operator, expected_hash in api_keys.items():
        if hmac.compare_digest(incoming_hash, expected_hash):
            return operator

    raise AdminAuthError("Invalid operator key.")
