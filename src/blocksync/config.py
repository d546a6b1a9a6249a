"""Configuration loading and validation.

Reads ``blocksync.toml``, resolves ``${VAR}`` references from the
environment, and returns a validated ``BlocksyncConfig`` dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from croniter import croniter

from blocksync.errors import ConfigError
from blocksync.matching import DEFAULT_EXCLUDED_SUBJECTS, ExclusionPolicy
from blocksync.models import DEFAULT_BLOCKER_SUBJECT

DEFAULT_CONFIG_PATH = Path("blocksync.toml")
CONFIG_PATH_ENV_VAR = "BLOCKSYNC_CONFIG"
DEFAULT_LOCK_PATH = "/tmp/blocksync.lock"
DEFAULT_SYNC_DAYS = 60
DEFAULT_INTERVAL_MINUTES = 60
SUPPORTED_PROVIDERS = ("google",)

# Pattern matching ${VAR_NAME} with alphanumeric and underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass
class LoggingConfig:
    """Logging configuration from [blocksync.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class SyncConfig:
    """Reconciliation and scheduling settings from [blocksync.sync]."""

    days: int = DEFAULT_SYNC_DAYS
    interval_minutes: int = DEFAULT_INTERVAL_MINUTES
    cron: str | None = None
    blocker_subject: str = DEFAULT_BLOCKER_SUBJECT
    exclusion_policy: ExclusionPolicy = ExclusionPolicy.exact
    excluded_subjects: tuple[str, ...] = DEFAULT_EXCLUDED_SUBJECTS
    match_organizer: bool = False
    min_suffix_length: int = 0
    reset_days: int | None = None


@dataclass
class AccountConfig:
    """A single calendar account from [[accounts]]."""

    name: str
    provider: str = "google"
    calendar_id: str = "primary"
    timezone: str = "UTC"
    credentials_json: str | None = None
    credentials_file: str | None = None

    def read_credentials(self) -> str:
        """Return the raw credential JSON, inline or from ``credentials_file``."""
        if self.credentials_json:
            return self.credentials_json
        if self.credentials_file:
            path = Path(self.credentials_file).expanduser()
            try:
                return path.read_text()
            except OSError as exc:
                raise ConfigError(
                    f"Cannot read credentials for account {self.name!r}: {exc}"
                ) from exc
        raise ConfigError(f"Account {self.name!r} has no credentials configured")


@dataclass
class BlocksyncConfig:
    """Parsed and validated configuration."""

    accounts: list[AccountConfig] = field(default_factory=list)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    lock_path: str = DEFAULT_LOCK_PATH

    @property
    def account_names(self) -> list[str]:
        return [account.name for account in self.accounts]

    def account(self, name: str) -> AccountConfig:
        for account in self.accounts:
            if account.name == name:
                return account
        raise KeyError(name)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    The original value is not echoed back since it may name secrets.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        raise ConfigError(f"Unresolved environment variable(s) in config: {', '.join(missing)}")

    return result


def _positive_int(section: dict, key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigError(f"{path}.{key} must be an integer")
    if raw <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be a positive integer.")
    return raw


def _parse_sync(section: Any) -> SyncConfig:
    if not isinstance(section, dict):
        raise ConfigError("blocksync.sync must be a TOML table")

    days = _positive_int(section, "days", DEFAULT_SYNC_DAYS, "blocksync.sync")
    interval_minutes = _positive_int(
        section, "interval_minutes", DEFAULT_INTERVAL_MINUTES, "blocksync.sync"
    )
    reset_days = None
    if "reset_days" in section:
        reset_days = _positive_int(section, "reset_days", 0, "blocksync.sync")

    cron = section.get("cron")
    if cron is not None:
        if not isinstance(cron, str) or not croniter.is_valid(cron.strip()):
            raise ConfigError(f"Invalid blocksync.sync.cron: {cron!r}")
        cron = cron.strip()

    blocker_subject = section.get("blocker_subject", DEFAULT_BLOCKER_SUBJECT)
    if not isinstance(blocker_subject, str) or not blocker_subject.strip():
        raise ConfigError("blocksync.sync.blocker_subject must be a non-empty string")

    raw_policy = section.get("exclusion_policy", ExclusionPolicy.exact.value)
    try:
        exclusion_policy = ExclusionPolicy(str(raw_policy).strip().lower())
    except ValueError as exc:
        raise ConfigError(
            f"Invalid blocksync.sync.exclusion_policy: {raw_policy!r}. "
            "Expected 'exact' or 'contains'."
        ) from exc

    raw_excluded = section.get("excluded_subjects", list(DEFAULT_EXCLUDED_SUBJECTS))
    if not isinstance(raw_excluded, list) or not all(isinstance(s, str) for s in raw_excluded):
        raise ConfigError("blocksync.sync.excluded_subjects must be a list of strings")
    excluded_subjects = tuple(s.strip() for s in raw_excluded if s.strip())

    match_organizer = section.get("match_organizer", False)
    if not isinstance(match_organizer, bool):
        raise ConfigError("blocksync.sync.match_organizer must be a boolean")

    min_suffix_length = section.get("min_suffix_length", 0)
    if isinstance(min_suffix_length, bool) or not isinstance(min_suffix_length, int):
        raise ConfigError("blocksync.sync.min_suffix_length must be an integer")
    if min_suffix_length < 0:
        raise ConfigError("blocksync.sync.min_suffix_length must not be negative")

    return SyncConfig(
        days=days,
        interval_minutes=interval_minutes,
        cron=cron,
        blocker_subject=blocker_subject.strip(),
        exclusion_policy=exclusion_policy,
        excluded_subjects=excluded_subjects,
        match_organizer=match_organizer,
        min_suffix_length=min_suffix_length,
        reset_days=reset_days,
    )


def _parse_logging(section: Any) -> LoggingConfig:
    if not isinstance(section, dict):
        raise ConfigError("blocksync.logging must be a TOML table")
    log_level = str(section.get("level", "INFO")).upper()
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid blocksync.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    return LoggingConfig(level=log_level, format=log_format, log_root=section.get("log_root"))


def _parse_account(entry: Any, index: int) -> AccountConfig:
    """Parse and validate one ``[[accounts]]`` entry."""
    entry_path = f"accounts[{index}]"
    if not isinstance(entry, dict):
        raise ConfigError(f"{entry_path} must be a TOML table")

    name = entry.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"{entry_path}.name must be a non-empty string")

    provider = str(entry.get("provider", "google")).strip().lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigError(
            f"Invalid {entry_path}.provider: {provider!r}. "
            f"Expected one of: {', '.join(SUPPORTED_PROVIDERS)}."
        )

    calendar_id = entry.get("calendar_id", "primary")
    if not isinstance(calendar_id, str) or not calendar_id.strip():
        raise ConfigError(f"{entry_path}.calendar_id must be a non-empty string")

    timezone = entry.get("timezone", "UTC")
    if not isinstance(timezone, str) or not timezone.strip():
        raise ConfigError(f"{entry_path}.timezone must be a non-empty string")

    credentials_json = entry.get("credentials_json")
    credentials_file = entry.get("credentials_file")
    for key, value in (("credentials_json", credentials_json), ("credentials_file", credentials_file)):
        if value is not None and not isinstance(value, str):
            raise ConfigError(f"{entry_path}.{key} must be a string when set")

    return AccountConfig(
        name=name.strip(),
        provider=provider,
        calendar_id=calendar_id.strip(),
        timezone=timezone.strip(),
        credentials_json=credentials_json or None,
        credentials_file=credentials_file or None,
    )


def resolve_config_path(path: Path | None = None) -> Path:
    """Return *path*, else ``$BLOCKSYNC_CONFIG``, else ``blocksync.toml``."""
    if path is not None:
        return path
    env_path = os.environ.get(CONFIG_PATH_ENV_VAR, "").strip()
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_config(path: Path) -> BlocksyncConfig:
    """Load and validate a blocksync.toml.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or has invalid values.
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    # --- Resolve env var references before any validation ---
    data = resolve_env_vars(data)

    # --- [blocksync] section (optional) ---
    root_section = data.get("blocksync", {})
    if not isinstance(root_section, dict):
        raise ConfigError("[blocksync] must be a TOML table")

    lock_path = root_section.get("lock_path", DEFAULT_LOCK_PATH)
    if not isinstance(lock_path, str) or not lock_path.strip():
        raise ConfigError("blocksync.lock_path must be a non-empty string")

    sync_config = _parse_sync(root_section.get("sync", {}))
    logging_config = _parse_logging(root_section.get("logging", {}))

    # --- [[accounts]] array ---
    raw_accounts = data.get("accounts", [])
    if not isinstance(raw_accounts, list):
        raise ConfigError("accounts must be an array of tables ([[accounts]])")
    accounts = [_parse_account(entry, i) for i, entry in enumerate(raw_accounts)]

    name_counts = Counter(account.name for account in accounts)
    duplicates = sorted(name for name, count in name_counts.items() if count > 1)
    if duplicates:
        raise ConfigError(f"Duplicate account name(s): {', '.join(duplicates)}")

    return BlocksyncConfig(
        accounts=accounts,
        sync=sync_config,
        logging=logging_config,
        lock_path=lock_path.strip(),
    )
