"""
Pytest configuration and fixtures for LedgerPilot tests.

Keeps every store in memory and provides an engine factory wired with
fakes (no network).
"""
import os

os.environ["PERSIST_DATA"] = "false"
os.environ["AWAIT_PERSISTENCE"] = "true"

import pytest

from ledgerpilot.config import setup_logging
from ledgerpilot.engine import DecisionEngine
from fakes import FakeEvents, FakeHistoryStore, FakeInference, FakeRetrieval

setup_logging("WARNING")


@pytest.fixture
def history_store():
    return FakeHistoryStore()


@pytest.fixture
def events():
    return FakeEvents()


@pytest.fixture
def engine_factory(history_store, events):
    """Build a DecisionEngine with fakes; any collaborator can be overridden."""

    def build(inference=None, retrieval=None, store=None, sink=None, **kwargs):
        return DecisionEngine(
            inference=inference if inference is not None else FakeInference(),
            retrieval=retrieval if retrieval is not None else FakeRetrieval(),
            history_store=store if store is not None else history_store,
            events=sink if sink is not None else events,
            await_persistence=kwargs.pop("await_persistence", True),
            **kwargs,
        )

    return build
