"""Eligibility and equivalence rules for real meetings.

``is_eligible`` decides whether a real meeting should be mirrored at all.
``are_equivalent`` decides whether a meeting already shows up natively in
another account, in which case no blocker is needed there.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum

from blocksync.models import BusyState, CalendarEvent
from blocksync.subjects import normalize_subject

DEFAULT_EXCLUDED_SUBJECTS: tuple[str, ...] = ("block", "blocker")


class ExclusionPolicy(StrEnum):
    """How excluded words are matched against a normalized subject."""

    exact = "exact"
    contains = "contains"


def is_excluded_subject(
    subject: str | None,
    *,
    policy: ExclusionPolicy = ExclusionPolicy.exact,
    excluded: Iterable[str] = DEFAULT_EXCLUDED_SUBJECTS,
) -> bool:
    normalized = normalize_subject(subject).casefold()
    words = [word.casefold() for word in excluded if word]
    if policy is ExclusionPolicy.contains:
        return any(word in normalized for word in words)
    return normalized in words


def is_eligible(
    event: CalendarEvent,
    *,
    policy: ExclusionPolicy = ExclusionPolicy.exact,
    excluded: Iterable[str] = DEFAULT_EXCLUDED_SUBJECTS,
) -> bool:
    """Return True when *event* is a real meeting that needs blockers elsewhere.

    Blockers, all-day events, non-busy events, zero or negative length events
    and excluded subjects are ineligible.
    """
    if event.is_blocker or event.all_day:
        return False
    if event.busy_state is not BusyState.busy:
        return False
    if event.end_at <= event.start_at:
        return False
    return not is_excluded_subject(event.subject, policy=policy, excluded=excluded)


def subjects_match(a: str | None, b: str | None, *, min_suffix_length: int = 0) -> bool:
    """Compare the common trailing suffix of two normalized subjects.

    The suffix length is the shorter of the two normalized lengths, so
    "Acme Corp: Budget Review" matches "FW: Budget Review". Two empty
    subjects match; one empty subject never matches a non-empty one.
    Suffixes shorter than *min_suffix_length* never match.
    """
    left = normalize_subject(a)
    right = normalize_subject(b)
    n = min(len(left), len(right))
    if n == 0:
        return not left and not right
    if n < min_suffix_length:
        return False
    return left[-n:].casefold() == right[-n:].casefold()


def _organizers_conflict(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return a.strip().casefold() != b.strip().casefold()


def are_equivalent(
    source: CalendarEvent,
    candidate: CalendarEvent,
    *,
    match_organizer: bool = False,
    min_suffix_length: int = 0,
) -> bool:
    """Return True when *candidate* is the same meeting as *source*.

    Start and end must be identical and the subjects must share their
    trailing suffix. With *match_organizer*, differing organizers make the
    events distinct; an organizer missing on either side is ignored.
    """
    if source.start_at != candidate.start_at or source.end_at != candidate.end_at:
        return False
    if match_organizer and _organizers_conflict(source.organizer, candidate.organizer):
        return False
    return subjects_match(
        source.subject,
        candidate.subject,
        min_suffix_length=min_suffix_length,
    )


def find_equivalent(
    meeting: CalendarEvent,
    candidates: Iterable[CalendarEvent],
    *,
    match_organizer: bool = False,
    min_suffix_length: int = 0,
) -> CalendarEvent | None:
    """Return the first real meeting in *candidates* equivalent to *meeting*."""
    for candidate in candidates:
        if candidate.is_blocker:
            continue
        if are_equivalent(
            meeting,
            candidate,
            match_organizer=match_organizer,
            min_suffix_length=min_suffix_length,
        ):
            return candidate
    return None
