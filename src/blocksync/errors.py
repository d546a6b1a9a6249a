"""Exception hierarchy for blocksync.

Engine computation is pure and never raises these; every error surface is at
the provider boundary or in configuration loading.
"""

from __future__ import annotations

import re

_SECRET_PATTERNS = (
    re.compile(r"(?i)\b(client_secret|refresh_token|access_token|token)\s*=\s*([^\s,;]+)"),
    re.compile(r"(?i)\b(client_secret|refresh_token|access_token|token)\s*:\s*([^\s,;]+)"),
)
_MAX_MESSAGE_LENGTH = 200


class BlocksyncError(Exception):
    """Base class for all blocksync errors."""


class ConfigError(BlocksyncError):
    """Raised when configuration is missing, malformed, or invalid."""


class InstanceLockedError(BlocksyncError):
    """Raised when another process already holds the instance lock."""


class ProviderError(BlocksyncError):
    """Raised when a calendar provider call fails.

    ``account`` and ``operation`` identify which call failed so operators
    can diagnose without a traceback.
    """

    def __init__(
        self,
        message: str,
        *,
        account: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.account = account
        self.operation = operation
        self.message = sanitize_error_message(message)
        super().__init__(self.message)

    def __str__(self) -> str:
        context = [part for part in (self.account, self.operation) if part]
        if not context:
            return self.message
        return f"[{'/'.join(context)}] {self.message}"


class ProviderUnavailableError(ProviderError):
    """No usable provider session, or fewer than two accounts configured."""


class EventReadError(ProviderError):
    """Listing events for one account failed; the pass must abort."""


class ActionApplyError(ProviderError):
    """Creating or deleting a single blocker failed."""


class ProviderAuthError(ProviderError):
    """Authentication or transport failure talking to a provider."""


class ProviderRequestError(ProviderError):
    """Provider answered with a non-success HTTP status."""

    def __init__(
        self,
        *,
        status_code: int,
        message: str,
        account: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(
            f"request failed ({status_code}): {message}",
            account=account,
            operation=operation,
        )


def sanitize_error_message(message: str) -> str:
    """Redact credential-looking values, collapse whitespace, truncate."""
    redacted = message
    redacted = _SECRET_PATTERNS[0].sub(r"\1=[REDACTED]", redacted)
    redacted = _SECRET_PATTERNS[1].sub(r"\1: [REDACTED]", redacted)
    return " ".join(redacted.split())[:_MAX_MESSAGE_LENGTH]
