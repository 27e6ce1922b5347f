import os
from dataclasses import replace

import pytest

from repl_orchestrator.command_executor import CommandExecutor, CommandResult
from repl_orchestrator.config import Role, ServerSettings
from repl_orchestrator.errors import ProvisioningError
from repl_orchestrator.storage import StorageManager
from tests.conftest import make_settings
from tests.fixtures import FakeExecutor


def touch(path, text=''):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w') as f:
        f.write(text)


def remote(settings, role, host):
    server = ServerSettings(
        host=host, port=settings.server(role).port, repl_port=settings.server(role).repl_port,
        database_path='/export/derby', sub_path=settings.server(role).sub_path,
    )
    return replace(settings, test_user='derby', **{role.value: server})


@pytest.mark.unit
def test_local_provisioning(tmp_path):
    settings = make_settings(tmp_path)
    storage = StorageManager(settings, CommandExecutor())
    stale = os.path.join(settings.slave.home, 'test', 'seg0', 'c10.dat')
    touch(stale)

    storage.init_master()
    assert os.listdir(settings.master.home) == []
    assert os.listdir(settings.slave.home) == []

    segment = os.path.join(storage.db_path(Role.MASTER), 'seg0', 'c10.dat')
    touch(segment, 'page')
    storage.init_slave()

    copied = os.path.join(storage.db_path(Role.SLAVE), 'seg0', 'c10.dat')
    with open(copied) as f:
        assert f.read() == 'page'

    storage.destroy_slave_storage()
    assert os.listdir(os.path.dirname(copied)) == []
    assert os.path.exists(segment)


@pytest.mark.unit
def test_init_slave_without_master_database(tmp_path):
    storage = StorageManager(make_settings(tmp_path), CommandExecutor())
    storage.init_master()
    with pytest.raises(ProvisioningError):
        storage.init_slave()


@pytest.mark.unit
def test_collect_local(tmp_path):
    settings = make_settings(tmp_path)
    storage = StorageManager(settings, CommandExecutor())
    touch(os.path.join(settings.master.home, 'derby.log'), 'booted')
    touch(os.path.join(storage.db_path(Role.MASTER), 'service.properties'))

    destination = str(tmp_path / 'collected')
    storage.collect(Role.MASTER, destination)
    storage.collect(Role.SLAVE, destination)

    assert os.path.exists(os.path.join(destination, 'master', 'derby.log'))
    assert os.path.exists(os.path.join(destination, 'master', 'test', 'service.properties'))
    assert os.listdir(os.path.join(destination, 'slave')) == []


@pytest.mark.unit
def test_remote_init_master(tmp_path):
    settings = remote(make_settings(tmp_path), Role.MASTER, 'db1')
    executor = FakeExecutor()
    StorageManager(settings, executor).init_master()

    kind, command_line, host, kwargs = executor.calls[0]
    assert kind == 'shell'
    assert host == 'db1'
    assert kwargs['user'] == 'derby'
    assert command_line.startswith('mkdir -p /export/derby/db_master; cd /export/derby/db_master; rm -rf test')


@pytest.mark.unit
def test_remote_init_slave_from_local_master(tmp_path):
    settings = remote(make_settings(tmp_path), Role.SLAVE, 'db2')
    executor = FakeExecutor()
    storage = StorageManager(settings, executor)

    storage.init_slave()

    assert [call[0] for call in executor.calls] == ['shell', 'run']
    assert executor.calls[0][2] == 'db2'
    assert executor.calls[1][1] == [
        'scp', '-r', storage.db_path(Role.MASTER), 'derby@db2:/export/derby/db_slave/',
    ]


@pytest.mark.unit
def test_remote_init_slave_between_remote_hosts(tmp_path):
    settings = remote(remote(make_settings(tmp_path), Role.MASTER, 'db1'), Role.SLAVE, 'db2')
    executor = FakeExecutor()
    StorageManager(settings, executor).init_slave()

    kind, command_line, host, kwargs = executor.calls[0]
    assert host == 'db2'
    assert command_line.endswith('scp -r db1:/export/derby/db_master/test/ .')


@pytest.mark.unit
def test_remote_copy_failure(tmp_path):
    settings = remote(make_settings(tmp_path), Role.SLAVE, 'db2')
    executor = FakeExecutor([
        CommandResult(output='', exit_status=0),
        CommandResult(output='ssh: connect to host db2 port 22: No route to host', exit_status=1),
    ])
    with pytest.raises(ProvisioningError, match='No route to host'):
        StorageManager(settings, executor).init_slave()


@pytest.mark.unit
def test_collect_remote_tolerates_missing_files(tmp_path):
    settings = remote(make_settings(tmp_path), Role.SLAVE, 'db2')
    executor = FakeExecutor([CommandResult(output='No such file or directory', exit_status=1)])
    destination = str(tmp_path / 'collected')

    StorageManager(settings, executor).collect(Role.SLAVE, destination)

    commands = executor.commands('run')
    assert commands[0] == ['scp', '-r', 'derby@db2:/export/derby/db_slave/derby.log', f'{destination}/slave']
    assert commands[1][2] == 'derby@db2:/export/derby/db_slave/test'
