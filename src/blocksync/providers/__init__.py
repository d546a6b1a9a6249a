"""Calendar provider implementations."""

from blocksync.providers.base import CORRELATION_TAG_KEY, CalendarProvider
from blocksync.providers.google import GoogleCalendarProvider, GoogleOAuthCredentials
from blocksync.providers.memory import InMemoryCalendarProvider

__all__ = [
    "CORRELATION_TAG_KEY",
    "CalendarProvider",
    "GoogleCalendarProvider",
    "GoogleOAuthCredentials",
    "InMemoryCalendarProvider",
]
