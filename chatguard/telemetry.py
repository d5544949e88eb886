"""Logging for the chatguard admission-control layer.

Emits structured log records to stdout and appends them to an append-only
log file for local review. Denials are informational events, not failures.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("chatguard")


def setup_logging(log_file: str) -> None:
    """Configure the chatguard logger with stdout and file handlers.

    Args:
        log_file: Path to the append-only log file.
    """
    logger.setLevel(logging.INFO)

    if not logger.handlers:
        stdout_handler = logging.StreamHandler()
        stdout_handler.setLevel(logging.INFO)
        fmt = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
        stdout_handler.setFormatter(fmt)
        logger.addHandler(stdout_handler)

        log_path = Path(log_file)
        os.makedirs(log_path.parent, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="a")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(fmt)
        logger.addHandler(file_handler)


def log_admission(
    *,
    category: str,
    key: str,
    outcome: str,
    code: Optional[str] = None,
    retry_after: Optional[float] = None,
    detail: Optional[str] = None,
) -> None:
    """Log a single admission event as one JSON line.

    Args:
        category: Policy category (api, auth, message, broadcast, socket, wa_user, admin).
        key: The identity the decision was made for.
        outcome: Short outcome label (e.g. "denied", "blacklisted", "admin").
        code: Machine-readable denial code, if any.
        retry_after: Seconds until the key may retry.
        detail: Free-form detail.
    """
    record: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "category": category,
        "key": key,
        "outcome": outcome,
    }

    if code:
        record["code"] = code

    if retry_after is not None:
        record["retry_after"] = round(retry_after, 3)

    if detail:
        record["detail"] = detail

    logger.info(json.dumps(record))
