"""Shared test fixtures for repl-orchestrator tests"""

from dataclasses import replace

import pytest

from repl_orchestrator.config import PollSettings, PollingSettings, ServerSettings, Settings
from repl_orchestrator.lifecycle import LifecycleController, LifecycleState
from repl_orchestrator.session import ReplicationSession
from tests.fixtures.fake_derby import FakeDerbyPair, FakeStorage, FakeSupervisor


FAST_POLL = PollSettings(interval=0.01, max_attempts=50)


def make_settings(tmp_path, **changes):
    """Local master/slave settings with short waits, rooted in ``tmp_path``."""
    settings = Settings(
        master=ServerSettings(port=1527, database_path=str(tmp_path), sub_path='db_master'),
        slave=ServerSettings(port=1528, repl_port=8001, database_path=str(tmp_path), sub_path='db_slave'),
        polling=PollingSettings(
            start_master=FAST_POLL,
            connect_ping=FAST_POLL,
            wait_for_connect=FAST_POLL,
            wait_for_state=FAST_POLL,
            slave_attach=PollSettings(interval=0.05, max_attempts=40),
            stop_slave=FAST_POLL,
            server_start=FAST_POLL,
            master_severance=FAST_POLL,
        ),
        failure_folder=str(tmp_path / 'fail'),
        teardown_timeout=5.0,
    )
    return replace(settings, **changes)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def derby():
    return FakeDerbyPair()


@pytest.fixture
def session(settings, derby):
    return ReplicationSession(
        settings,
        connector=derby,
        data_connector=derby,
        supervisor=FakeSupervisor(derby),
        storage=FakeStorage(derby),
    )


@pytest.fixture
def controller(session):
    controller = LifecycleController(session)
    yield controller
    if controller.state != LifecycleState.TORN_DOWN:
        controller.teardown()


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers", "optional: mark test as optional (needs a Derby installation)"
    )
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "unit: mark test as unit test")
