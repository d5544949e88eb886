"""Tests for blacklist/whitelist management."""

from pathlib import Path

import pytest

from chatguard.access import AccessListManager, user_key


def test_blacklist_and_lazy_expiry(clock) -> None:
    access = AccessListManager(clock=clock)
    access.blacklist("203.0.113.7", reason="scraper", duration=60)
    assert access.is_blacklisted("203.0.113.7")

    clock.advance(60)
    assert not access.is_blacklisted("203.0.113.7")
    # Evicted on read.
    assert access.sizes()["blacklisted_ips"] == 0


def test_blacklist_without_duration_is_permanent(clock) -> None:
    access = AccessListManager(clock=clock)
    entry = access.blacklist("203.0.113.7")
    assert entry.expires_at is None

    clock.advance(10 * 365 * 24 * 3600)
    assert access.is_blacklisted("203.0.113.7")
    assert access.sweep() == 0


def test_zero_duration_is_permanent(clock) -> None:
    access = AccessListManager(clock=clock)
    assert access.blacklist("198.51.100.1", duration=0).expires_at is None


def test_blacklist_upserts(clock) -> None:
    access = AccessListManager(clock=clock)
    access.blacklist("1.2.3.4", reason="first", duration=10)
    access.blacklist("1.2.3.4", reason="second", duration=100)
    clock.advance(50)
    assert access.is_blacklisted("1.2.3.4")
    assert access.describe()["ips"][0]["reason"] == "second"


def test_unblacklist_is_idempotent(clock) -> None:
    access = AccessListManager(clock=clock)
    assert access.unblacklist("never-listed") is False
    access.blacklist("1.2.3.4")
    assert access.unblacklist("1.2.3.4") is True
    assert access.unblacklist("1.2.3.4") is False


def test_whitelist_membership() -> None:
    access = AccessListManager(whitelist=["127.0.0.1"])
    assert access.is_whitelisted("127.0.0.1")
    access.whitelist("10.0.0.5")
    assert access.is_whitelisted("10.0.0.5")
    assert access.unwhitelist("10.0.0.5") is True
    assert access.unwhitelist("10.0.0.5") is False
    assert access.whitelisted() == ["127.0.0.1"]


def test_whitelist_never_expires(clock) -> None:
    access = AccessListManager(whitelist=["10.0.0.5"], clock=clock)
    clock.advance(10 ** 9)
    access.sweep()
    assert access.is_whitelisted("10.0.0.5")


def test_user_blacklist_defaults_to_one_day(clock) -> None:
    access = AccessListManager(clock=clock)
    access.blacklist_user("sess-1", "628123@s.whatsapp.net")
    assert access.is_user_blacklisted("sess-1", "628123@s.whatsapp.net")
    assert not access.is_user_blacklisted("sess-2", "628123@s.whatsapp.net")

    clock.advance(24 * 3600)
    assert not access.is_user_blacklisted("sess-1", "628123@s.whatsapp.net")


def test_unblacklist_user(clock) -> None:
    access = AccessListManager(clock=clock)
    access.blacklist_user("s", "u")
    assert access.unblacklist_user("s", "u") is True
    assert access.unblacklist_user("s", "u") is False
    assert not access.is_user_blacklisted("s", "u")


def test_sweep_evicts_expired_entries(clock) -> None:
    access = AccessListManager(clock=clock)
    access.blacklist("1.1.1.1", duration=10)
    access.blacklist("2.2.2.2")
    access.blacklist_user("s", "u", duration=10)

    clock.advance(11)
    assert access.sweep() == 2
    assert access.sizes() == {
        "blacklisted_ips": 1,
        "blacklisted_users": 0,
        "whitelisted_ips": 0,
    }


def test_describe_reports_remaining_time(clock) -> None:
    access = AccessListManager(clock=clock)
    access.blacklist("1.1.1.1", reason="abuse", duration=100)
    access.blacklist("2.2.2.2")
    access.blacklist_user("sess", "user:with:colons", reason="Spam", duration=50)
    clock.advance(20)

    info = access.describe()
    by_ip = {item["ip"]: item for item in info["ips"]}
    assert by_ip["1.1.1.1"]["remaining_seconds"] == 80
    assert by_ip["2.2.2.2"]["remaining_seconds"] is None

    user = info["users"][0]
    assert user["session_id"] == "sess"
    assert user["chat_user"] == "user:with:colons"
    assert user["remaining_seconds"] == 30


def test_user_key_format() -> None:
    assert user_key("s1", "u1") == "s1:u1"


def test_load_seed_file(tmp_path: Path, clock) -> None:
    seed = tmp_path / "access.yaml"
    seed.write_text(
        "whitelist:\n"
        "  - 10.0.0.5\n"
        "blacklist:\n"
        "  - ip: 203.0.113.7\n"
        "    reason: scraper\n"
        "    duration_seconds: 60\n"
        "  - ip: 198.51.100.9\n"
    )
    access = AccessListManager(clock=clock)
    access.load_seed_file(str(seed))

    assert access.is_whitelisted("10.0.0.5")
    assert access.is_blacklisted("203.0.113.7")
    assert access.is_blacklisted("198.51.100.9")
    clock.advance(61)
    assert not access.is_blacklisted("203.0.113.7")
    assert access.is_blacklisted("198.51.100.9")


def test_load_seed_file_missing(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        AccessListManager().load_seed_file(str(tmp_path / "nope.yaml"))


def test_load_seed_file_rejects_bad_entries(tmp_path: Path) -> None:
    seed = tmp_path / "access.yaml"
    seed.write_text("blacklist:\n  - reason: no address\n")
    with pytest.raises(ValueError, match="ip"):
        AccessListManager().load_seed_file(str(seed))


def test_load_seed_file_rejects_non_mapping(tmp_path: Path) -> None:
    seed = tmp_path / "access.yaml"
    seed.write_text("- 1.2.3.4\n")
    with pytest.raises(ValueError, match="mapping"):
        AccessListManager().load_seed_file(str(seed))
