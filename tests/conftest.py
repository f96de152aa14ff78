"""
pglifecycle Test Configuration

Every test runs against the in-memory control plane from
tests/fixtures/fake_control_plane.py; nothing here reaches a real service.
Time is simulated with FakeClock so multi-minute waits finish instantly.
"""

import pytest

from pglifecycle.core.config import ControlPlaneConfig, LifecycleConfig, VmSmokeConfig
from pglifecycle.core.verification import SqlRunner
from pglifecycle.utils.logging_utils import restore_logging
from tests.fixtures.fake_control_plane import (
    FakeClock,
    FakeConnector,
    FakeControlPlane,
)


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Remove any handler a test (or the CLI) installed."""
    restore_logging()
    yield
    restore_logging()


@pytest.fixture
def fake_clock():
    """Simulated monotonic clock; ``fake_clock.engine`` feeds poll()."""
    return FakeClock()


@pytest.fixture
def control_plane():
    return FakeControlPlane(provisioning_reads=2)


@pytest.fixture
def connector(control_plane):
    """asyncpg.connect replacement bound to ``control_plane``."""
    return FakeConnector(control_plane)


@pytest.fixture
def sql(control_plane, connector):
    return SqlRunner(control_plane, connect=connector)


@pytest.fixture
def control_plane_config():
    return ControlPlaneConfig(token="test-token", url="https://api.example.com")


@pytest.fixture
def lifecycle_config(control_plane_config):
    """Small bulk insert so the replication check stays fast."""
    return LifecycleConfig(
        control_plane=control_plane_config,
        location="eu-central-h1",
        name="test-pg-1",
        bulk_rows=50,
    )


@pytest.fixture
def vm_smoke_config(control_plane_config):
    return VmSmokeConfig(
        control_plane=control_plane_config,
        location="eu-central-h1",
        suffix="abc123",
        public_key="ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAITEST test@example",
    )
