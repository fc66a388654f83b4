"""
Shared test fixtures.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

import pytest

from mailbox_readiness import ReadinessPoller
from provisioning import ProvisioningOrchestrator
from tests.factories import FakeBackend, FakeClock, make_allocator


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend(clock):
    return FakeBackend(clock)


@pytest.fixture
def poller(backend, clock):
    return ReadinessPoller(backend, timeout=8 * 60, interval=30, settle=2 * 60,
                           clock=clock, sleep=clock.sleep)


@pytest.fixture
def orchestrator_factory(backend, poller):
    def _make(allocator=None, **kwargs):
        return ProvisioningOrchestrator(backend, allocator or make_allocator(), poller, **kwargs)
    return _make
