import pytest

from repl_orchestrator import sql_states
from repl_orchestrator.async_attempt import TaskGroup
from repl_orchestrator.command_executor import CommandResult
from repl_orchestrator.config import DerbySettings, Endpoint, Role
from repl_orchestrator.connector import IjConnector
from repl_orchestrator.control import DatabaseUrl
from repl_orchestrator.load import IJ_ROW_INSERTED, LoadRunner, LoadSpec, row_value, start_load
from tests.fixtures import FakeDerbyPair, FakeExecutor


MASTER = Endpoint('localhost', 1527, Role.MASTER)


def url_for(endpoint, create_database=False):
    url = DatabaseUrl.for_endpoint(endpoint, 'db_master/test')
    return url.with_attributes(('create', 'true')) if create_database else url


def make_derby():
    derby = FakeDerbyPair()
    derby.start(derby.master_port)
    derby.master_db = True
    return derby


def ij_output(rows, error=None):
    lines = ['ij> ' + IJ_ROW_INSERTED] * rows
    if error:
        lines.append(f'ij> ERROR {error}: connection lost')
    return CommandResult(output='\n'.join(lines), exit_status=0)


@pytest.mark.unit
def test_local_load_inserts_workload_rows():
    derby = make_derby()
    runner = LoadRunner(derby, None, url_for)

    result = runner.run(LoadSpec('w1', MASTER, 100))

    assert result.completed
    assert result.inserted == result.committed == 100
    assert derby.table
    assert derby.master_rows[0] == (0, 'dilldall0')
    assert derby.master_rows[-1] == (99, row_value(99))


@pytest.mark.unit
def test_checkpoints_fire_before_the_row():
    derby = make_derby()
    seen = []
    spec = LoadSpec('w1', MASTER, 10)
    spec.at_row(0, lambda: seen.append(len(derby.master_rows)))
    spec.at_row(5, lambda: seen.append(len(derby.master_rows)))
    spec.at_row(5, lambda: seen.append('second'))

    LoadRunner(derby, None, url_for).run(spec)
    assert seen == [0, 5, 'second']


@pytest.mark.unit
def test_checkpoint_outside_workload():
    spec = LoadSpec('w1', MASTER, 10)
    with pytest.raises(ValueError):
        spec.at_row(10, lambda: None)


@pytest.mark.unit
def test_commit_frequency():
    derby = make_derby()
    spec = LoadSpec('w1', MASTER, 25, commit_frequency=10)
    spec.at_row(15, lambda: derby.stop(derby.master_port))

    result = LoadRunner(derby, None, url_for).run(spec)

    assert result.inserted == 15
    assert result.committed == 10
    assert len(derby.master_rows) == 10
    assert result.error.sql_state == sql_states.SHUTDOWN_DATABASE


@pytest.mark.unit
def test_commit_frequency_commits_the_tail():
    derby = make_derby()
    result = LoadRunner(derby, None, url_for).run(LoadSpec('w1', MASTER, 25, commit_frequency=10))
    assert result.committed == 25
    assert len(derby.master_rows) == 25


@pytest.mark.unit
def test_connection_loss_is_reported_not_raised():
    derby = make_derby()
    spec = LoadSpec('w1', MASTER, 50)
    spec.at_row(20, lambda: derby.stop(derby.master_port))

    result = LoadRunner(derby, None, url_for).run(spec)

    assert not result.completed
    assert result.inserted == result.committed == 20


@pytest.mark.unit
def test_new_database_is_created():
    derby = FakeDerbyPair()
    derby.start(derby.master_port)

    result = LoadRunner(derby, None, url_for).run(LoadSpec('w1', MASTER, 5, existing_database=False))
    assert result.completed
    assert derby.master_db


@pytest.mark.unit
def test_remote_load_runs_through_ij():
    executor = FakeExecutor([ij_output(6), ij_output(4)])
    ij = IjConnector(executor, DerbySettings(lib_dir='/opt/derby/lib'), 'client1')
    seen = []
    spec = LoadSpec('w1', MASTER, 10, client_host='client1')
    spec.at_row(6, lambda: seen.append(6))

    result = LoadRunner(None, lambda host: ij, url_for).run(spec)

    assert result.completed
    assert result.inserted == result.committed == 10
    assert seen == [6]

    first, second = [call[3]['input_text'] for call in executor.calls]
    assert first.startswith('create table t(i integer primary key, s varchar(64));')
    assert "insert into t values (5, 'dilldall5');" in first
    assert 'create table' not in second
    assert second.startswith("insert into t values (6, 'dilldall6');")


@pytest.mark.unit
def test_remote_load_error():
    executor = FakeExecutor([ij_output(3, error=sql_states.SHUTDOWN_DATABASE)])
    ij = IjConnector(executor, DerbySettings(), 'client1')
    spec = LoadSpec('w1', MASTER, 10, client_host='client1', commit_frequency=2)

    result = LoadRunner(None, lambda host: ij, url_for).run(spec)

    assert result.inserted == 3
    assert result.committed == 0
    assert result.error.sql_state == sql_states.SHUTDOWN_DATABASE
    assert 'autocommit off;' in executor.calls[0][3]['input_text']


@pytest.mark.unit
def test_start_load_in_background():
    derby = make_derby()
    group = TaskGroup('test')

    attempt = start_load(group, LoadRunner(derby, None, url_for), LoadSpec('w1', MASTER, 30))

    assert attempt.wait(5.0)
    assert attempt.consume().value.inserted == 30
