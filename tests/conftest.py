"""Shared fixtures for the blocksync test suite."""

from __future__ import annotations

import logging

import pytest

from blocksync.config import AccountConfig, BlocksyncConfig
from blocksync.providers.memory import InMemoryCalendarProvider


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """Undo handler changes made by configure_logging() during a test."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def memory_provider() -> InMemoryCalendarProvider:
    return InMemoryCalendarProvider()


@pytest.fixture
def two_account_config(tmp_path) -> BlocksyncConfig:
    return BlocksyncConfig(
        accounts=[
            AccountConfig(name="a", credentials_json="{}"),
            AccountConfig(name="b", credentials_json="{}"),
        ],
        lock_path=str(tmp_path / "blocksync.lock"),
    )
