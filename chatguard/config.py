"""Configuration loader for the chatguard admission-control layer.

Reads a JSON config file containing per-category rate-limit policies, the
static whitelist, janitor and spam-promotion settings, and operator keys.
Every value is validated once at load time so that a bad policy is fatal at
startup rather than discoverable at request time.
"""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union


class ConfigError(ValueError):
    """Raised when the configuration is missing values or holds invalid ones."""


@dataclass(frozen=True)
class Policy:
    """Fixed-window-plus-block policy for one rate-limited category."""

    window_seconds: float
    max_count: int
    block_duration_seconds: float


@dataclass(frozen=True)
class SpamPolicy:
    """Inbound chat-user policy (per session:chat_user key)."""

    window_seconds: float = 60.0
    max_count: int = 20
    warn_threshold: int = 15
    auto_reply_throttle_seconds: float = 5.0


@dataclass(frozen=True)
class BroadcastPolicy:
    """Broadcast operations per session plus a per-operation recipient cap."""

    window_seconds: float = 3600.0
    max_count: int = 3
    block_duration_seconds: float = 3600.0
    max_recipients_per_broadcast: int = 500
    delay_between_messages_seconds: float = 2.0

    @property
    def ledger_policy(self) -> Policy:
        return Policy(
            window_seconds=self.window_seconds,
            max_count=self.max_count,
            block_duration_seconds=self.block_duration_seconds,
        )


@dataclass(frozen=True)
class SocketPolicy:
    """Concurrent persistent-connection cap per network identity."""

    max_connections_per_identity: int = 10


@dataclass(frozen=True)
class JanitorConfig:
    """Background sweep schedule."""

    interval_seconds: float = 300.0


@dataclass(frozen=True)
class SpamPromotionConfig:
    """How long a chat user stays blacklisted after being caught spamming."""

    auto_blacklist_seconds: float = 3600.0


@dataclass
class AdminConfig:
    """Operator API key authentication for the admin surface."""

    enabled: bool = False
    api_keys: Dict[str, str] = field(default_factory=dict)  # key_name -> sha256_hash


def _default_api() -> Policy:
    return Policy(window_seconds=60.0, max_count=100, block_duration_seconds=300.0)


def _default_auth() -> Policy:
    return Policy(window_seconds=900.0, max_count=10, block_duration_seconds=1800.0)


def _default_message() -> Policy:
    return Policy(window_seconds=60.0, max_count=30, block_duration_seconds=300.0)


DEFAULT_WHITELIST = ("127.0.0.1", "::1", "localhost")

# Peers whose X-Forwarded-For / X-Real-IP headers are believed.
DEFAULT_TRUSTED_PROXIES = ("127.0.0.1", "::1")


@dataclass
class GuardConfig:
    """Top-level admission-control configuration."""

    api: Policy = field(default_factory=_default_api)
    auth: Policy = field(default_factory=_default_auth)
    message: Policy = field(default_factory=_default_message)
    wa_user: SpamPolicy = field(default_factory=SpamPolicy)
    broadcast: BroadcastPolicy = field(default_factory=BroadcastPolicy)
    socket: SocketPolicy = field(default_factory=SocketPolicy)
    janitor: JanitorConfig = field(default_factory=JanitorConfig)
    spam: SpamPromotionConfig = field(default_factory=SpamPromotionConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    whitelist: List[str] = field(default_factory=lambda: list(DEFAULT_WHITELIST))
    trusted_proxies: List[str] = field(default_factory=lambda: list(DEFAULT_TRUSTED_PROXIES))
    access_list_file: Optional[str] = None
    log_file: str = "logs/chatguard.log"

    def validate(self) -> "GuardConfig":
        """Check every numeric policy value; raise ConfigError on the first bad one."""
        for name in ("api", "auth", "message"):
            _check_policy(name, getattr(self, name))
        _require_positive("wa_user.window_seconds", self.wa_user.window_seconds)
        _require_count("wa_user.max_count", self.wa_user.max_count)
        _require_count("wa_user.warn_threshold", self.wa_user.warn_threshold)
        _check_policy("broadcast", self.broadcast)

        if self.wa_user.warn_threshold > self.wa_user.max_count:
            raise ConfigError(
                "wa_user.warn_threshold ({}) must not exceed wa_user.max_count ({})".format(
                    self.wa_user.warn_threshold, self.wa_user.max_count
                )
            )
        _require_positive("wa_user.auto_reply_throttle_seconds",
                          self.wa_user.auto_reply_throttle_seconds, allow_zero=True)
        _require_count("broadcast.max_recipients_per_broadcast",
                       self.broadcast.max_recipients_per_broadcast)
        _require_positive("broadcast.delay_between_messages_seconds",
                          self.broadcast.delay_between_messages_seconds, allow_zero=True)
        _require_count("socket.max_connections_per_identity",
                       self.socket.max_connections_per_identity)
        _require_positive("janitor.interval_seconds", self.janitor.interval_seconds)
        _require_positive("spam.auto_blacklist_seconds",
                          self.spam.auto_blacklist_seconds, allow_zero=True)
        return self


def _require_positive(name: str, value: Any, allow_zero: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError("{} must be a number, got {!r}".format(name, value))
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError("{} must be positive, got {!r}".format(name, value))


def _require_count(name: str, value: Any) -> None:
    _require_positive(name, value)
    if not isinstance(value, int):
        raise ConfigError("{} must be an integer, got {!r}".format(name, value))


def _check_policy(name: str, policy: Any) -> None:
    _require_positive(name + ".window_seconds", policy.window_seconds)
    _require_count(name + ".max_count", policy.max_count)
    _require_positive(name + ".block_duration_seconds", policy.block_duration_seconds)


def _address_list(name: str, value: Any) -> List[str]:
    if not isinstance(value, list):
        raise ConfigError("{} must be a list of addresses".format(name))
    return [str(ip) for ip in value]


def _build(cls: Any, name: str, raw: Any, default: Any) -> Any:
    """Build a frozen section dataclass, overlaying raw values on the default.

    Unknown keys are rejected so that a typo cannot silently fall back to a
    default value.
    """
    if raw is None:
        return default
    if not isinstance(raw, dict):
        raise ConfigError("Section '{}' must be a JSON object".format(name))

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(
            "Unknown key(s) in section '{}': {}".format(name, ", ".join(unknown))
        )

    values = {f.name: getattr(default, f.name) for f in fields(cls)}
    values.update(raw)
    return cls(**values)


_SECTIONS: Dict[str, Tuple[Any, Any]] = {
    "api": (Policy, _default_api),
    "auth": (Policy, _default_auth),
    "message": (Policy, _default_message),
    "wa_user": (SpamPolicy, SpamPolicy),
    "broadcast": (BroadcastPolicy, BroadcastPolicy),
    "socket": (SocketPolicy, SocketPolicy),
    "janitor": (JanitorConfig, JanitorConfig),
    "spam": (SpamPromotionConfig, SpamPromotionConfig),
}

_TOP_LEVEL = set(_SECTIONS) | {
    "admin",
    "whitelist",
    "trusted_proxies",
    "access_list_file",
    "log_file",
}


def parse_config(raw: Dict[str, Any]) -> GuardConfig:
    """Build and validate a GuardConfig from an already-decoded mapping.

    Raises:
        ConfigError: If a section is unknown or a value is invalid.
    """
    if not isinstance(raw, dict):
        raise ConfigError("Config must contain a JSON object at the top level")

    unknown = sorted(set(raw) - _TOP_LEVEL)
    if unknown:
        raise ConfigError("Unknown config section(s): {}".format(", ".join(unknown)))

    sections: Dict[str, Any] = {}
    for name, (cls, default_factory) in _SECTIONS.items():
        sections[name] = _build(cls, name, raw.get(name), default_factory())

    admin_raw = raw.get("admin", {})
    if not isinstance(admin_raw, dict):
        raise ConfigError("Section 'admin' must be a JSON object")
    admin = AdminConfig(
        enabled=admin_raw.get("enabled", False),
        api_keys=admin_raw.get("api_keys", {}),
    )
    if not isinstance(admin.enabled, bool):
        raise ConfigError("admin.enabled must be true or false")
    if not isinstance(admin.api_keys, dict):
        raise ConfigError("admin.api_keys must map operator names to key hashes")

    config = GuardConfig(
        admin=admin,
        whitelist=_address_list("whitelist", raw.get("whitelist", list(DEFAULT_WHITELIST))),
        trusted_proxies=_address_list(
            "trusted_proxies", raw.get("trusted_proxies", list(DEFAULT_TRUSTED_PROXIES))
        ),
        access_list_file=raw.get("access_list_file"),
        log_file=raw.get("log_file", "logs/chatguard.log"),
        **sections,
    )
    return config.validate()


def load_config(path: Union[str, Path]) -> GuardConfig:
    """Load admission-control configuration from a JSON file.

    Args:
        path: Path to the JSON config file.

    Returns:
        A fully validated GuardConfig instance.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigError: If the config file contains invalid data.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        try:
            raw: Dict[str, Any] = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigError("Config file {} is not valid JSON: {}".format(path, exc))

    return parse_config(raw)
