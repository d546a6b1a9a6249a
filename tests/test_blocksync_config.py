"""Tests for blocksync configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from blocksync.config import (
    DEFAULT_CONFIG_PATH,
    AccountConfig,
    load_config,
    resolve_config_path,
    resolve_env_vars,
)
from blocksync.errors import ConfigError
from blocksync.matching import ExclusionPolicy

pytestmark = pytest.mark.unit

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FULL_TOML = """\
[blocksync]
lock_path = "/var/run/blocksync.lock"

[blocksync.sync]
days = 14
interval_minutes = 30
cron = "*/15 * * * *"
blocker_subject = "Busy"
exclusion_policy = "contains"
excluded_subjects = ["block", "focus"]
match_organizer = true
min_suffix_length = 3
reset_days = 365

[blocksync.logging]
level = "debug"
format = "json"
log_root = "/var/log/blocksync"

[[accounts]]
name = "work"
calendar_id = "primary"
timezone = "Europe/Berlin"
credentials_file = "~/.config/blocksync/work.json"

[[accounts]]
name = "client"
provider = "google"
calendar_id = "me@client.example"
credentials_json = '{"client_id": "id", "client_secret": "s", "refresh_token": "r"}'
"""

MINIMAL_TOML = """\
[[accounts]]
name = "work"
credentials_json = "{}"

[[accounts]]
name = "client"
credentials_json = "{}"
"""


def _write_toml(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "blocksync.toml"
    path.write_text(content)
    return path


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


def test_load_full_config(tmp_path: Path):
    config = load_config(_write_toml(tmp_path, FULL_TOML))

    assert config.lock_path == "/var/run/blocksync.lock"
    assert config.account_names == ["work", "client"]

    sync = config.sync
    assert sync.days == 14
    assert sync.interval_minutes == 30
    assert sync.cron == "*/15 * * * *"
    assert sync.blocker_subject == "Busy"
    assert sync.exclusion_policy is ExclusionPolicy.contains
    assert sync.excluded_subjects == ("block", "focus")
    assert sync.match_organizer is True
    assert sync.min_suffix_length == 3
    assert sync.reset_days == 365

    assert config.logging.level == "DEBUG"
    assert config.logging.format == "json"
    assert config.logging.log_root == "/var/log/blocksync"

    work = config.account("work")
    assert work.timezone == "Europe/Berlin"
    assert work.credentials_file == "~/.config/blocksync/work.json"
    assert config.account("client").calendar_id == "me@client.example"


def test_load_minimal_config_uses_defaults(tmp_path: Path):
    config = load_config(_write_toml(tmp_path, MINIMAL_TOML))

    assert config.sync.days == 60
    assert config.sync.interval_minutes == 60
    assert config.sync.cron is None
    assert config.sync.blocker_subject == "Blocked"
    assert config.sync.exclusion_policy is ExclusionPolicy.exact
    assert config.sync.excluded_subjects == ("block", "blocker")
    assert config.sync.match_organizer is False
    assert config.sync.reset_days is None
    assert config.logging.level == "INFO"
    assert config.logging.format == "text"
    assert config.account("work").provider == "google"
    assert config.account("work").calendar_id == "primary"


def test_account_lookup_unknown_name(tmp_path: Path):
    config = load_config(_write_toml(tmp_path, MINIMAL_TOML))
    with pytest.raises(KeyError):
        config.account("nope")


def test_env_var_references_are_resolved(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("WORK_CREDS", '{"refresh_token": "abc"}')
    toml = MINIMAL_TOML.replace('credentials_json = "{}"', 'credentials_json = "${WORK_CREDS}"', 1)

    config = load_config(_write_toml(tmp_path, toml))

    assert config.account("work").credentials_json == '{"refresh_token": "abc"}'


def test_resolve_env_vars_leaves_non_strings_alone():
    assert resolve_env_vars({"a": [1, True, None]}) == {"a": [1, True, None]}


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


def test_missing_config_file(tmp_path: Path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "missing.toml")


def test_invalid_toml(tmp_path: Path):
    with pytest.raises(ConfigError, match="Invalid TOML"):
        load_config(_write_toml(tmp_path, "[[accounts]\nname ="))


def test_unresolved_env_var_names_the_variable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("BLOCKSYNC_MISSING", raising=False)
    toml = MINIMAL_TOML.replace('"{}"', '"${BLOCKSYNC_MISSING}"', 1)
    with pytest.raises(ConfigError, match="BLOCKSYNC_MISSING"):
        load_config(_write_toml(tmp_path, toml))


def test_duplicate_account_names(tmp_path: Path):
    toml = MINIMAL_TOML.replace('name = "client"', 'name = "work"')
    with pytest.raises(ConfigError, match="Duplicate account name"):
        load_config(_write_toml(tmp_path, toml))


def test_unsupported_provider(tmp_path: Path):
    toml = MINIMAL_TOML + '\n[[accounts]]\nname = "x"\nprovider = "exchange"\n'
    with pytest.raises(ConfigError, match="provider"):
        load_config(_write_toml(tmp_path, toml))


def test_account_without_name(tmp_path: Path):
    with pytest.raises(ConfigError, match="name"):
        load_config(_write_toml(tmp_path, '[[accounts]]\ncalendar_id = "primary"\n'))


@pytest.mark.parametrize(
    ("snippet", "message"),
    [
        ("days = 0", "days"),
        ("days = true", "days"),
        ("interval_minutes = -5", "interval_minutes"),
        ('cron = "every hour"', "cron"),
        ('blocker_subject = "  "', "blocker_subject"),
        ('exclusion_policy = "fuzzy"', "exclusion_policy"),
        ('excluded_subjects = "block"', "excluded_subjects"),
        ('match_organizer = "yes"', "match_organizer"),
        ("min_suffix_length = -1", "min_suffix_length"),
        ("reset_days = 0", "reset_days"),
        ('reset_days = "forever"', "reset_days"),
    ],
)
def test_invalid_sync_values(tmp_path: Path, snippet: str, message: str):
    toml = f"[blocksync.sync]\n{snippet}\n\n{MINIMAL_TOML}"
    with pytest.raises(ConfigError, match=message):
        load_config(_write_toml(tmp_path, toml))


def test_invalid_log_format(tmp_path: Path):
    toml = f'[blocksync.logging]\nformat = "xml"\n\n{MINIMAL_TOML}'
    with pytest.raises(ConfigError, match="format"):
        load_config(_write_toml(tmp_path, toml))


# ---------------------------------------------------------------------------
# Credentials and path resolution
# ---------------------------------------------------------------------------


def test_read_credentials_prefers_inline_json():
    account = AccountConfig(name="a", credentials_json="{}", credentials_file="/nope")
    assert account.read_credentials() == "{}"


def test_read_credentials_from_file(tmp_path: Path):
    creds = tmp_path / "creds.json"
    creds.write_text('{"refresh_token": "r"}')
    account = AccountConfig(name="a", credentials_file=str(creds))
    assert account.read_credentials() == '{"refresh_token": "r"}'


def test_read_credentials_missing_file(tmp_path: Path):
    account = AccountConfig(name="a", credentials_file=str(tmp_path / "gone.json"))
    with pytest.raises(ConfigError, match="Cannot read credentials"):
        account.read_credentials()


def test_read_credentials_not_configured():
    with pytest.raises(ConfigError, match="no credentials"):
        AccountConfig(name="a").read_credentials()


def test_resolve_config_path_order(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    explicit = tmp_path / "explicit.toml"
    monkeypatch.setenv("BLOCKSYNC_CONFIG", str(tmp_path / "env.toml"))
    assert resolve_config_path(explicit) == explicit
    assert resolve_config_path() == tmp_path / "env.toml"

    monkeypatch.delenv("BLOCKSYNC_CONFIG")
    assert resolve_config_path() == DEFAULT_CONFIG_PATH
