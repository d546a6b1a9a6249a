"""blocksync: mirror busy time across calendars with placeholder blockers."""

__version__ = "0.1.0"
