"""
Shared pytest fixtures.

Reconcilers are exercised against ``FakeCluster``, an in-memory API server,
so no test needs a real cluster.
"""

import pytest
from fakes import FakeCluster

from kuber_controller.config import ControllerSettings
from kuber_controller.controllers import PluginStatus
from kuber_controller.kube.events import EventRecorder
from kuber_controller.kube.retry import RetryConfig


@pytest.fixture
def cluster() -> FakeCluster:
    """Provide an empty in-memory cluster."""
    return FakeCluster()


@pytest.fixture
def recorder(cluster) -> EventRecorder:
    """Provide an event recorder writing into the fake cluster."""
    return EventRecorder(cluster, "kuber-controller")


@pytest.fixture
def retry_config() -> RetryConfig:
    """Conflict retries without sleeping."""
    return RetryConfig(base_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
def plugins() -> PluginStatus:
    """Provide an initialised readiness gate with no optional component installed."""
    status = PluginStatus()
    status.open()
    return status


@pytest.fixture
def settings(monkeypatch) -> ControllerSettings:
    """Default settings, isolated from the process environment."""
    for name in ("KUBER_WORKERS", "KUBER_LOG_LEVEL", "KUBER_LEADER_ELECTION"):
        monkeypatch.delenv(name, raising=False)
    return ControllerSettings(_env_file=None)
