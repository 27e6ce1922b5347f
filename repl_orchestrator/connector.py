"""Ways to open a connection to the replicated database.

``JdbcConnector`` talks to the network server in-process through the JDBC
client driver (JayDeBeApi). ``IjConnector`` runs the ``ij`` tool through the
command executor, which is how a remote client host reaches the servers.
Both report a rejected connection as ``SqlStateError``.
"""

import os
import re
from abc import ABC, abstractmethod
from contextlib import contextmanager
from logging import getLogger

import jaydebeapi

from .config import CONNECTOR_IJ, CONNECTOR_JDBC, LOCALHOST, DerbySettings
from .errors import SqlStateError
from .control import DatabaseUrl


logger = getLogger(__name__)

IJ_ERROR_RE = re.compile(r'^(?:ij(?:\(\w+\))?> )*ERROR ([0-9A-Z]{5}): (.*)$')
SQL_STATE_RE = re.compile(r"\b(?:SQLSTATE|SQLState)[ :=]+'?([0-9A-Z]{5})")


def sql_state_error(exc) -> SqlStateError:
    """Build a ``SqlStateError`` out of a driver exception.

    JayDeBeApi wraps the Java ``SQLException`` as the first argument of its
    own ``DatabaseError``; a connect failure may also surface as the raw Java
    exception proxy.
    """
    for candidate in (exc, exc.__cause__, *getattr(exc, 'args', ())):
        if candidate is not None and hasattr(candidate, 'getSQLState'):
            sql_state = candidate.getSQLState()
            if sql_state is None:
                continue
            return SqlStateError(
                str(sql_state),
                message=str(candidate.getMessage()),
                error_code=int(candidate.getErrorCode()),
            )
    match = SQL_STATE_RE.search(str(exc))
    if match:
        return SqlStateError(match.group(1), message=str(exc))
    return None


def parse_ij_errors(output: str):
    errors = []
    for line in output.splitlines():
        match = IJ_ERROR_RE.match(line.strip())
        if match:
            errors.append(SqlStateError(match.group(1), message=match.group(2)))
    return errors


class Connector(ABC):
    name = None

    @abstractmethod
    def attempt(self, url: DatabaseUrl):
        """Open and close one connection, raise ``SqlStateError`` on rejection."""


class JdbcConnector(Connector):
    name = CONNECTOR_JDBC

    def __init__(self, derby: DerbySettings):
        self.driver_class = derby.driver_class
        self.jars = [os.path.join(derby.lib_dir, jar) for jar in DerbySettings.CLIENT_JARS]

    def _connect(self, url):
        try:
            return jaydebeapi.connect(self.driver_class, url.render(), jars=self.jars)
        except Exception as e:
            error = sql_state_error(e)
            if error is None:
                raise
            raise error from e

    def attempt(self, url: DatabaseUrl):
        logger.debug(f'connecting to {url}')
        self._connect(url).close()

    @contextmanager
    def connect(self, url: DatabaseUrl):
        connection = self._connect(url)
        try:
            yield connection
        finally:
            try:
                connection.close()
            except jaydebeapi.Error as e:
                logger.debug(f'closing {url.base} failed: {e}')

    @staticmethod
    def set_autocommit(connection, enabled):
        connection.jconn.setAutoCommit(enabled)

    @staticmethod
    def commit(connection):
        try:
            connection.commit()
        except jaydebeapi.DatabaseError as e:
            error = sql_state_error(e)
            if error is None:
                raise
            raise error from e

    @staticmethod
    def execute(connection, statement, params=None):
        """Run one statement, return the cursor's rows when it produced any."""
        cursor = connection.cursor()
        try:
            try:
                if params:
                    cursor.execute(statement, params)
                else:
                    cursor.execute(statement)
            except jaydebeapi.DatabaseError as e:
                error = sql_state_error(e)
                if error is None:
                    raise
                raise error from e
            if cursor.description is None:
                return None
            return cursor.fetchall()
        finally:
            cursor.close()


class IjConnector(Connector):
    name = CONNECTOR_IJ

    def __init__(self, executor, derby: DerbySettings, client_host=LOCALHOST, working_dir=None, lib_dir=None):
        self.executor = executor
        self.derby = derby
        self.client_host = client_host
        self.working_dir = working_dir or None
        self.lib_dir = lib_dir or derby.lib_dir

    def command(self, url: DatabaseUrl, script_file=None, connection_name='replication'):
        command = [
            self.derby.java,
            f'-Dij.driver={self.derby.driver_class}',
            f'-Dij.connection.{connection_name}={url.render()}',
            '-classpath', self.derby.classpath(DerbySettings.CLIENT_JARS, self.lib_dir),
            self.derby.ij_class,
        ]
        if script_file:
            command.append(script_file)
        return command

    def run_script(self, url: DatabaseUrl, script: str = None, script_file: str = None):
        """Run SQL through ij, return the command result and the errors it printed."""
        input_text = None if script_file else (script or '') + '\nexit;\n'
        result = self.executor.run(
            self.command(url, script_file=script_file),
            self.client_host,
            working_dir=self.working_dir,
            input_text=input_text,
            name='ij',
        )
        return result, parse_ij_errors(result.output)

    def attempt(self, url: DatabaseUrl):
        logger.debug(f'[ij@{self.client_host}] connecting to {url}')
        _, errors = self.run_script(url)
        if errors:
            raise errors[0]


def create_connector(settings, executor) -> Connector:
    if settings.connector == CONNECTOR_IJ:
        return IjConnector(executor, settings.derby, settings.client.host, settings.client.home)
    return JdbcConnector(settings.derby)
