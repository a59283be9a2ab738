# tests/conftest.py
"""Pytest configuration and fixtures"""
import random
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from bulkdispatch.core.controller import DispatchController  # noqa: E402
from bulkdispatch.core.number_generator import NumberGenerator  # noqa: E402
from bulkdispatch.infra.memory_recipient_store import InMemoryRecipientStore  # noqa: E402
from bulkdispatch.infra.metrics import get_metrics_collector  # noqa: E402
from bulkdispatch.transport.dry_run_transport import DryRunTransport  # noqa: E402
from tests.helpers import RecordingSink, no_sleep  # noqa: E402


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def store():
    return InMemoryRecipientStore()


@pytest.fixture
def transport():
    return DryRunTransport()


@pytest.fixture
def make_controller(sink):
    """Build a controller with no pacing delay and a seeded generator."""

    def _make(store, transport, **overrides):
        options = {
            "generator": NumberGenerator(rng=random.Random(42)),
            "pacing_window": (0, 0),
            "sleep": no_sleep,
        }
        options.update(overrides)
        return DispatchController(store, transport, sink, **options)

    return _make
