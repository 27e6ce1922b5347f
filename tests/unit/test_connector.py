import pytest

from repl_orchestrator import sql_states
from repl_orchestrator.command_executor import CommandResult
from repl_orchestrator.config import DerbySettings, Endpoint, Role, Settings
from repl_orchestrator.connector import (
    IjConnector,
    JdbcConnector,
    create_connector,
    parse_ij_errors,
    sql_state_error,
)
from repl_orchestrator.control import DatabaseUrl
from repl_orchestrator.errors import SqlStateError
from tests.fixtures import FakeExecutor


DERBY = DerbySettings(lib_dir='/opt/derby/lib')
URL = DatabaseUrl.for_endpoint(Endpoint('localhost', 1528, Role.SLAVE), 'db_slave/test')

IJ_OUTPUT = """ij version 10.16
ij> ERROR XRE08: Replication slave mode started successfully for database 'db_slave/test'.
ij> ERROR 08004: DERBY SQL error: ERRORCODE: 40000, SQLSTATE: 08004
ij>"""


class JavaSQLException(Exception):
    """Mimics the proxy of a java.sql.SQLException."""

    def __init__(self, state, message, code):
        self.state = state
        self.message = message
        self.code = code

    def getSQLState(self):
        return self.state

    def getMessage(self):
        return self.message

    def getErrorCode(self):
        return self.code


@pytest.mark.unit
def test_parse_ij_errors():
    errors = parse_ij_errors(IJ_OUTPUT)
    assert [e.sql_state for e in errors] == [sql_states.REPLICATION_SLAVE_STARTED_OK, sql_states.LOGIN_FAILED]
    assert errors[0].message.startswith('Replication slave mode started')
    assert parse_ij_errors('ij> select 1;\n1 row selected') == []


@pytest.mark.unit
def test_sql_state_from_wrapped_java_exception():
    class DatabaseError(Exception):
        pass

    wrapped = DatabaseError(JavaSQLException('XRE04', 'could not connect', 40000))
    error = sql_state_error(wrapped)
    assert error.sql_state == sql_states.REPLICATION_CONNECTION_EXCEPTION
    assert error.message == 'could not connect'
    assert error.error_code == 40000

    chained = RuntimeError('driver failure')
    chained.__cause__ = JavaSQLException('XRE20', 'failover done', 20000)
    assert sql_state_error(chained).sql_state == sql_states.REPLICATION_FAILOVER_SUCCESSFUL


@pytest.mark.unit
def test_sql_state_from_message():
    error = sql_state_error(Exception("java.sql.SQLException: refused SQLSTATE: 08001"))
    assert error.sql_state == sql_states.CLIENT_CONNECTION_REFUSED
    assert sql_state_error(Exception('class not found')) is None


@pytest.mark.unit
def test_ij_command():
    connector = IjConnector(FakeExecutor(), DERBY, 'client1', working_dir='/home/derby')
    command = connector.command(URL, script_file='checkpoint.sql')

    assert command[0] == 'java'
    assert '-Dij.driver=org.apache.derby.jdbc.ClientDriver' in command
    assert f'-Dij.connection.replication={URL.render()}' in command
    assert command[-2:] == ['org.apache.derby.tools.ij', 'checkpoint.sql']
    assert '/opt/derby/lib/derbyclient.jar' in command[command.index('-classpath') + 1]


@pytest.mark.unit
def test_ij_run_script_feeds_stdin():
    executor = FakeExecutor([CommandResult(output=IJ_OUTPUT, exit_status=0)])
    connector = IjConnector(executor, DERBY, 'client1', working_dir='/home/derby')

    result, errors = connector.run_script(URL, 'select 1 from sys.systables;')

    kind, command, host, kwargs = executor.calls[0]
    assert kind == 'run'
    assert host == 'client1'
    assert kwargs['working_dir'] == '/home/derby'
    assert kwargs['input_text'] == 'select 1 from sys.systables;\nexit;\n'
    assert len(errors) == 2
    assert result.ok


@pytest.mark.unit
def test_ij_attempt_raises_first_error():
    executor = FakeExecutor([CommandResult(output=IJ_OUTPUT, exit_status=0)])
    connector = IjConnector(executor, DERBY)

    with pytest.raises(SqlStateError) as exc_info:
        connector.attempt(URL)
    assert exc_info.value.sql_state == sql_states.REPLICATION_SLAVE_STARTED_OK

    connector.attempt(URL)


@pytest.mark.unit
def test_connector_selection():
    executor = FakeExecutor()
    assert isinstance(create_connector(Settings(), executor), JdbcConnector)
    assert isinstance(create_connector(Settings(connector='ij'), executor), IjConnector)
