"""Calendar data model shared by providers, the loader, and the engine.

Every value here is built fresh from a provider read at the start of a pass
and discarded when the pass ends.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_BLOCKER_SUBJECT = "Blocked"


class BusyState(StrEnum):
    """Free/busy status of an event. Only ``busy`` events participate."""

    busy = "busy"
    free = "free"


class BlockerKey(NamedTuple):
    """Identifies which real-meeting occurrence a blocker represents."""

    correlation_tag: str
    start_at: datetime


def _ensure_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class CalendarEvent(BaseModel):
    """One discrete event occurrence as read from a provider.

    A real meeting carries no ``correlation_tag``; a blocker carries the
    ``source_id`` of the real meeting it stands in for.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str
    source_id: str
    account: str
    start_at: datetime
    end_at: datetime
    subject: str = ""
    all_day: bool = False
    busy_state: BusyState = BusyState.busy
    location: str | None = None
    organizer: str | None = None
    correlation_tag: str | None = None

    @field_validator("start_at", "end_at")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _ensure_aware(value)

    @field_validator("subject", mode="before")
    @classmethod
    def _coerce_subject(cls, value: str | None) -> str:
        return value or ""

    @field_validator("location", "organizer", "correlation_tag")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @property
    def is_blocker(self) -> bool:
        return self.correlation_tag is not None

    @property
    def blocker_key(self) -> BlockerKey | None:
        if self.correlation_tag is None:
            return None
        return BlockerKey(self.correlation_tag, self.start_at)

    @property
    def duration(self) -> timedelta:
        return self.end_at - self.start_at


class BlockerTemplate(BaseModel):
    """Fields of a blocker the executor should create in a target account.

    ``source_subject`` is only used for log lines; providers never write it
    into the target calendar.
    """

    model_config = ConfigDict(frozen=True)

    subject: str = DEFAULT_BLOCKER_SUBJECT
    start_at: datetime
    end_at: datetime
    correlation_tag: str = Field(min_length=1)
    all_day: bool = False
    busy_state: BusyState = BusyState.busy
    reminder: bool = False
    source_subject: str = ""

    @field_validator("start_at", "end_at")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _ensure_aware(value)

    @model_validator(mode="after")
    def _validate_span(self) -> BlockerTemplate:
        if self.end_at <= self.start_at:
            raise ValueError("blocker end_at must be after start_at")
        return self

    @property
    def key(self) -> BlockerKey:
        return BlockerKey(self.correlation_tag, self.start_at)


@dataclass(frozen=True)
class SyncWindow:
    """Time window of a pass. Both bounds are inclusive."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", _ensure_aware(self.start))
        object.__setattr__(self, "end", _ensure_aware(self.end))
        if self.end < self.start:
            raise ValueError("window end must not precede its start")

    @classmethod
    def from_days(cls, days: int, *, start: datetime | None = None) -> SyncWindow:
        if days < 1:
            raise ValueError("days must be at least 1")
        anchor = _ensure_aware(start) if start is not None else datetime.now(UTC)
        return cls(start=anchor, end=anchor + timedelta(days=days))

    def contains(self, value: datetime) -> bool:
        return self.start <= _ensure_aware(value) <= self.end


@dataclass
class AccountPlan:
    """Actions for one account's own calendar."""

    account: str
    to_create: list[BlockerTemplate] = field(default_factory=list)
    to_delete: list[CalendarEvent] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_create and not self.to_delete


@dataclass
class ReconciliationPlan:
    """Per-account create/delete lists, in account order."""

    accounts: dict[str, AccountPlan] = field(default_factory=dict)

    def for_account(self, account: str) -> AccountPlan:
        plan = self.accounts.get(account)
        if plan is None:
            plan = AccountPlan(account=account)
            self.accounts[account] = plan
        return plan

    @property
    def is_empty(self) -> bool:
        return all(plan.is_empty for plan in self.accounts.values())

    @property
    def total_creates(self) -> int:
        return sum(len(plan.to_create) for plan in self.accounts.values())

    @property
    def total_deletes(self) -> int:
        return sum(len(plan.to_delete) for plan in self.accounts.values())
