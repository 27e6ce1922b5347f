import os
import threading

import pytest

from repl_orchestrator import control
from repl_orchestrator.config import CheckpointSettings, Credentials, Role
from repl_orchestrator.errors import SqlStateError
from repl_orchestrator.lifecycle import LifecycleController
from repl_orchestrator.session import ERROR_STACK_TRACE_FILE, ReplicationSession
from tests.conftest import make_settings
from tests.fixtures import FakeDerbyPair, FakeExecutor, FakeStorage, FakeSupervisor


def make_session(settings, executor=None):
    derby = FakeDerbyPair()
    return ReplicationSession(
        settings,
        executor=executor or FakeExecutor(),
        connector=derby,
        data_connector=derby,
        supervisor=FakeSupervisor(derby),
        storage=FakeStorage(derby),
    )


@pytest.mark.unit
def test_urls(tmp_path):
    session = make_session(make_settings(tmp_path))
    master_db = os.path.join(str(tmp_path), 'db_master', 'test')

    assert session.db_path(Role.MASTER) == master_db
    assert session.master_url.render() == f'jdbc:derby://localhost:1527/{master_db}'
    assert session.slave_url.port == 1528
    assert session.url_for(session.master, create_database=True).render().endswith(';create=true')

    command = control.start_master(session.master, 'localhost', 8001)
    assert session.command_url(command).render() == (
        f'jdbc:derby://localhost:1527/{master_db};startMaster=true;slaveHost=localhost;slavePort=8001'
    )


@pytest.mark.unit
def test_urls_with_encryption_and_credentials(tmp_path):
    settings = make_settings(
        tmp_path, encryption='bootPassword=Thursday', credentials=Credentials('app', 'pw'),
    )
    session = make_session(settings)

    assert session.master_url.render().endswith(';bootPassword=Thursday;user=app;password=pw')
    created = session.url_for(session.master, create_database=True).render()
    assert created.endswith(';create=true;dataEncryption=true;bootPassword=Thursday;user=app;password=pw')


@pytest.mark.unit
def test_postmortem_reraises_original_error(tmp_path):
    settings = make_settings(tmp_path)
    session = make_session(settings)

    with pytest.raises(SqlStateError):
        with session.postmortem():
            raise SqlStateError('XRE06', 'master timed out')

    [run] = os.listdir(settings.failure_folder)
    folder = os.path.join(settings.failure_folder, run)
    with open(os.path.join(folder, ERROR_STACK_TRACE_FILE)) as f:
        assert 'XRE06' in f.read()
    assert sorted(os.listdir(folder)) == [ERROR_STACK_TRACE_FILE, 'master', 'slave']


@pytest.mark.unit
def test_failed_copy_is_recorded(tmp_path):
    settings = make_settings(tmp_path)
    session = make_session(settings)

    def broken_collect(role, destination):
        raise OSError(f'{role.value} home is gone')

    session.storage.collect = broken_collect
    folder = session.collect_failure(RuntimeError('boom'))

    with open(os.path.join(folder, ERROR_STACK_TRACE_FILE)) as f:
        report = f.read()
    assert 'boom' in report
    assert "Copying master's derby.log or database failed" in report
    assert 'slave home is gone' in report


@pytest.mark.unit
def test_teardown_terminates_stuck_tasks(tmp_path):
    settings = make_settings(tmp_path, teardown_timeout=0.1)
    executor = FakeExecutor()
    session = make_session(settings, executor)
    executor.run_detached(['sleep'], 'localhost', session.task_group, 'server')

    assert session.teardown() == []
    assert executor.terminated
    assert session.teardown() == []


@pytest.mark.unit
def test_teardown_reports_abandoned_tasks(tmp_path, monkeypatch):
    monkeypatch.setattr('repl_orchestrator.session.TERMINATED_JOIN_TIMEOUT', 0.1)
    session = make_session(make_settings(tmp_path, teardown_timeout=0.1))
    release = threading.Event()
    stuck = session.task_group.spawn('stuck', release.wait, 5.0)

    try:
        assert session.teardown() == [stuck]
    finally:
        release.set()


@pytest.mark.unit
def test_checkpoint_script_runs_through_ij(tmp_path):
    script = str(tmp_path / 'checkpoint.sql')
    settings = make_settings(
        tmp_path, checkpoints={'pre_stopped_master': CheckpointSettings(script=script)},
    )
    executor = FakeExecutor()
    controller = LifecycleController(make_session(settings, executor))

    assert not controller.checkpoint('pre_stopped_master')
    assert not controller.checkpoint('pre_init_slave')

    [command] = executor.commands('run')
    assert command[-1] == script
    assert command[-2] == 'org.apache.derby.tools.ij'
