import os
import time
import traceback
from contextlib import contextmanager
from logging import getLogger

from .async_attempt import TaskGroup
from .command_executor import CommandExecutor
from .config import Role, Settings
from .connector import IjConnector, JdbcConnector, create_connector
from .control import ControlCommand, DatabaseUrl, create, credential_attributes
from .errors import OrchestrationError
from .injector import FailureInjector
from .load import LoadRunner
from .storage import StorageManager
from .supervisor import ProcessSupervisor
from .verifier import ConsistencyVerifier


logger = getLogger(__name__)

ERROR_STACK_TRACE_FILE = 'error-stacktrace.out'
TERMINATED_JOIN_TIMEOUT = 5.0


class ReplicationSession:
    """Everything one replication run owns: endpoints, processes, connectors and tasks.

    Created once per run from an immutable ``Settings`` and torn down at the
    end; nothing is shared between sessions.
    """

    def __init__(
        self,
        settings: Settings,
        executor=None,
        connector=None,
        data_connector=None,
        supervisor=None,
        storage=None,
        task_group=None,
    ):
        self.settings = settings
        self.master = settings.endpoint(Role.MASTER)
        self.slave = settings.endpoint(Role.SLAVE)
        self.client = settings.endpoint(Role.CLIENT)
        self.task_group = task_group or TaskGroup(f'session-{settings.database}')
        self.executor = executor or CommandExecutor(settings.remote_shell, settings.test_user)
        self.connector = connector or create_connector(settings, self.executor)
        self.data_connector = data_connector or JdbcConnector(settings.derby)
        self.supervisor = supervisor or ProcessSupervisor(settings, self.executor, self.task_group)
        self.storage = storage or StorageManager(settings, self.executor)
        self.verifier = ConsistencyVerifier(self.data_connector)
        self.injector = FailureInjector(self.supervisor, self.storage)
        self.loads = LoadRunner(self.data_connector, self.ij_connector_for, self.url_for)
        self.torn_down = False

    @classmethod
    def from_settings(cls, settings: Settings):
        return cls(settings)

    def db_path(self, role: Role) -> str:
        return self.settings.server(role).db_path(self.settings.database)

    def database_url(self, endpoint, attributes=()) -> DatabaseUrl:
        url = DatabaseUrl.for_endpoint(endpoint, self.db_path(endpoint.role), attributes)
        if self.settings.encryption:
            url = url.with_attributes(self.settings.encryption)
        return url.with_attributes(*credential_attributes(self.settings.credentials))

    @property
    def master_url(self) -> DatabaseUrl:
        return self.database_url(self.master)

    @property
    def slave_url(self) -> DatabaseUrl:
        return self.database_url(self.slave)

    def command_url(self, command: ControlCommand) -> DatabaseUrl:
        url = DatabaseUrl.for_endpoint(command.target, self.db_path(command.target.role))
        return command.apply(url, self.settings.encryption, self.settings.credentials)

    def url_for(self, endpoint, create_database=False) -> DatabaseUrl:
        if create_database:
            return self.command_url(create(endpoint))
        return self.database_url(endpoint)

    def ij_connector_for(self, client_host) -> IjConnector:
        return IjConnector(self.executor, self.settings.derby, client_host, self.settings.client.home)

    def collect_failure(self, error) -> str:
        """Copy logs and databases of both roles plus the stack trace into the failure folder."""
        folder = os.path.join(self.settings.failure_folder, time.strftime('%Y%m%d-%H%M%S'))
        os.makedirs(folder, exist_ok=True)
        stack_file = os.path.join(folder, ERROR_STACK_TRACE_FILE)
        with open(stack_file, 'a') as f:
            f.write(''.join(traceback.format_exception(type(error), error, error.__traceback__)))
            for role in (Role.MASTER, Role.SLAVE):
                try:
                    self.storage.collect(role, folder)
                except (OSError, OrchestrationError) as copy_error:
                    logger.error(f'collecting {role.value} files failed: {copy_error}')
                    f.write(f"\nCopying {role.value}'s derby.log or database failed:\n")
                    f.write(''.join(traceback.format_exception(
                        type(copy_error), copy_error, copy_error.__traceback__,
                    )))
        logger.error(f'failure details saved to {folder}')
        return folder

    @contextmanager
    def postmortem(self):
        try:
            yield self
        except Exception as e:
            try:
                self.collect_failure(e)
            except OSError as collect_error:
                logger.error(f'could not write failure folder: {collect_error}')
            raise

    def teardown(self, timeout=None):
        """Join every session task, terminating processes still running after the deadline."""
        if self.torn_down:
            return []
        timeout = self.settings.teardown_timeout if timeout is None else timeout
        abandoned = self.task_group.join(timeout)
        if abandoned:
            self.executor.terminate_all()
            abandoned = self.task_group.join(TERMINATED_JOIN_TIMEOUT)
        self.torn_down = True
        return abandoned
