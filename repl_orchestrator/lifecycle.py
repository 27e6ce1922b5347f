"""
Replication lifecycle controller.

Drives one replication session through provisioning, boot, attach, load,
failover, verification and teardown. Every transition is issued as a control
command (a connection attempt carrying control attributes) and confirmed by
the outcome of further connection attempts, using ``poller.poll``.

    controller = LifecycleController(ReplicationSession.from_settings(settings))
    controller.make_ready_for_replication()
    controller.run_load(1000)
    controller.failover()
    controller.verify_slave(1000)
    controller.teardown()
"""

import threading
from dataclasses import dataclass
from enum import Enum
from logging import getLogger

from . import control
from . import sql_states
from .config import CHECKPOINTS, Endpoint
from .errors import (
    CommandInFlightError,
    IllegalTransitionError,
    OrchestrationError,
    UnexpectedStateError,
)
from .load import LoadSpec, start_load
from .poller import PollPolicy, ProbeResult, attempt_probe, connection_probe, poll


logger = getLogger(__name__)


class LifecycleState(Enum):
    UNINITIALIZED = 'uninitialized'
    SERVERS_STARTED = 'servers_started'
    MASTER_BOOTED = 'master_booted'
    SLAVE_INITIALIZED = 'slave_initialized'
    SLAVE_ATTACHED = 'slave_attached'
    FAILOVER_INITIATED = 'failover_initiated'
    FAILOVER_COMPLETE = 'failover_complete'
    REPLICATION_STOPPED = 'replication_stopped'
    MASTER_KILLED = 'master_killed'
    SLAVE_KILLED = 'slave_killed'
    SLAVE_STORAGE_DESTROYED = 'slave_storage_destroyed'
    TORN_DOWN = 'torn_down'


FAULT_STATES = frozenset({
    LifecycleState.MASTER_KILLED,
    LifecycleState.SLAVE_KILLED,
    LifecycleState.SLAVE_STORAGE_DESTROYED,
})

TRANSITIONS = {
    LifecycleState.UNINITIALIZED: {LifecycleState.SERVERS_STARTED},
    LifecycleState.SERVERS_STARTED: {LifecycleState.MASTER_BOOTED},
    LifecycleState.MASTER_BOOTED: {LifecycleState.SLAVE_INITIALIZED},
    LifecycleState.SLAVE_INITIALIZED: {LifecycleState.SLAVE_ATTACHED},
    LifecycleState.SLAVE_ATTACHED: {
        LifecycleState.FAILOVER_INITIATED,
        LifecycleState.REPLICATION_STOPPED,
        *FAULT_STATES,
    },
    LifecycleState.FAILOVER_INITIATED: {LifecycleState.FAILOVER_COMPLETE},
    LifecycleState.FAILOVER_COMPLETE: set(),
    # stopping again must converge to the same terminal code
    LifecycleState.REPLICATION_STOPPED: {LifecycleState.REPLICATION_STOPPED},
    LifecycleState.MASTER_KILLED: {
        LifecycleState.FAILOVER_INITIATED,
        LifecycleState.REPLICATION_STOPPED,
        *FAULT_STATES,
    },
    LifecycleState.SLAVE_KILLED: {LifecycleState.REPLICATION_STOPPED, *FAULT_STATES},
    LifecycleState.SLAVE_STORAGE_DESTROYED: {
        LifecycleState.FAILOVER_INITIATED,
        LifecycleState.REPLICATION_STOPPED,
        *FAULT_STATES,
    },
    LifecycleState.TORN_DOWN: set(),
}


@dataclass
class RunReport:
    stopped_at: str = None
    inserted: int = 0
    master_rows: int = None
    slave_rows: int = None

    @property
    def completed(self) -> bool:
        return self.stopped_at is None


class LifecycleController:
    def __init__(self, session):
        self.session = session
        self.settings = session.settings
        self._state = LifecycleState.UNINITIALIZED
        self._state_lock = threading.RLock()
        self._in_flight = {}
        self.tuples_inserted = 0

    # state machine

    @property
    def state(self) -> LifecycleState:
        return self._state

    def _check(self, new_state):
        if new_state == LifecycleState.TORN_DOWN:
            return
        if new_state not in TRANSITIONS[self._state]:
            raise IllegalTransitionError(
                f'cannot move from {self._state.value} to {new_state.value}'
            )

    def _transition(self, new_state):
        with self._state_lock:
            self._check(new_state)
            logger.info(f'state {self._state.value} -> {new_state.value}')
            self._state = new_state

    # control channel

    def issue(self, command: control.ControlCommand) -> ProbeResult:
        """Send one control command and return the observed outcome."""
        url = self.session.command_url(command)
        logger.debug(f'issue {command}: {url}')
        result = connection_probe(self.session.connector, url)()
        logger.info(f'{command}: {result.code} {result.message}'.rstrip())
        return result

    def expect(self, command: control.ControlCommand, expected_code) -> ProbeResult:
        """Send ``command`` and assert it is answered with ``expected_code``."""
        result = self.issue(command)
        if result.code != expected_code:
            raise UnexpectedStateError(
                result.code, expected_code, result.message, description=str(command),
            )
        return result

    def launch(self, command: control.ControlCommand, allow_duplicate=False):
        """Send a command that blocks until the peer acts, on a session task."""
        key = (command.kind, command.target)
        previous = self._in_flight.get(key)
        if previous is not None and not previous.consumed and not allow_duplicate:
            raise CommandInFlightError(f'{command} is already in flight ({previous})')

        attempt = self.session.task_group.spawn(
            command.kind.value, self.session.connector.attempt, self.session.command_url(command),
        )
        self._in_flight[key] = attempt
        return attempt

    def in_flight(self, kind: control.ControlKind, target: Endpoint):
        return self._in_flight.get((kind, target))

    def show_current_state(self, endpoint: Endpoint) -> str:
        result = connection_probe(self.session.connector, self.session.database_url(endpoint))()
        logger.info(f'{endpoint}: {result.code} {result.message}'.rstrip())
        return result.code

    # waits

    def _poll_connection(self, endpoint, poll_settings, description, target_code=sql_states.CONNECTED,
                         pending_codes=None, unexpected_codes=frozenset(), url=None):
        policy = PollPolicy.from_settings(
            poll_settings,
            probe=connection_probe(self.session.connector, url or self.session.database_url(endpoint)),
            target_code=target_code,
            pending_codes=pending_codes,
            unexpected_codes=unexpected_codes,
            description=description,
        )
        return poll(policy)

    def wait_for_connect(self, endpoint: Endpoint):
        return self._poll_connection(
            endpoint, self.settings.polling.wait_for_connect, f'wait for connect {endpoint}',
        )

    def wait_for_sql_state(self, endpoint: Endpoint, expected_code):
        return self._poll_connection(
            endpoint, self.settings.polling.wait_for_state, f'wait for {expected_code} on {endpoint}',
            target_code=expected_code,
            unexpected_codes=frozenset({sql_states.CONNECTED}),
        )

    def connect_ping(self, endpoint: Endpoint):
        return self._poll_connection(
            endpoint, self.settings.polling.connect_ping, f'connect ping {endpoint}',
            pending_codes=frozenset({sql_states.LOGIN_FAILED}),
        )

    def wait_for_master_severance(self):
        return self._poll_connection(
            self.session.master, self.settings.polling.master_severance,
            f'severance of {self.session.master}',
            target_code=self.settings.failover.severance_code,
            pending_codes=frozenset({sql_states.CONNECTED}),
        )

    # checkpoints

    def checkpoint(self, name) -> bool:
        """Run the hook configured for ``name``; return True when the run should stop."""
        if name not in CHECKPOINTS:
            raise ValueError(f'unknown checkpoint {name}')
        hook = self.settings.checkpoints.get(name)
        if hook is None:
            return False

        if hook.script:
            logger.info(f'checkpoint {name}: running {hook.script}')
            ij = self.session.ij_connector_for(self.settings.client.host)
            _, errors = ij.run_script(self.session.master_url, script_file=hook.script)
            for error in errors:
                logger.warning(f'checkpoint {name}: {error.sql_state} {error.message}')

        if hook.stop:
            logger.info(f'checkpoint {name}: stopping the run')
            self.cleanup_and_shutdown()
            return True
        return False

    def cleanup_and_shutdown(self):
        self.session.supervisor.stop_server(self.session.master)
        self.session.supervisor.stop_server(self.session.slave)

    # lifecycle operations

    def start_master_server(self):
        self.session.storage.init_master()
        self.session.supervisor.start_server(self.session.master)

    def start_slave_server(self):
        self.session.supervisor.start_server(self.session.slave)

    def start_servers(self):
        self._check(LifecycleState.SERVERS_STARTED)
        self.start_master_server()
        self.start_slave_server()
        self._transition(LifecycleState.SERVERS_STARTED)

    def boot_master(self, load: LoadSpec = None):
        """Create the master database, optionally load it, then freeze it for copying."""
        self._check(LifecycleState.MASTER_BOOTED)
        self.expect(control.create(self.session.master), sql_states.CONNECTED)
        if load is not None:
            result = self.run_load(spec=load)
            if result.error is not None:
                raise result.error

        connector = self.session.data_connector
        with connector.connect(self.session.master_url) as connection:
            connector.execute(connection, 'call syscs_util.syscs_freeze_database()')
        self._transition(LifecycleState.MASTER_BOOTED)

    def init_slave(self):
        self._check(LifecycleState.SLAVE_INITIALIZED)
        self.session.storage.init_slave()
        self._transition(LifecycleState.SLAVE_INITIALIZED)

    def _replication_peer(self):
        return self.session.slave.host, self.settings.slave.repl_port

    def attach_slave(self, allow_duplicate=False):
        """Start the slave; completes only once the master starts replicating."""
        if self._state != LifecycleState.SLAVE_INITIALIZED:
            raise IllegalTransitionError(f'cannot attach a slave in state {self._state.value}')
        command = control.start_slave(self.session.slave, *self._replication_peer())
        return self.launch(command, allow_duplicate=allow_duplicate)

    def start_master(self):
        self._check(LifecycleState.SLAVE_ATTACHED)
        if self.in_flight(control.ControlKind.START_SLAVE, self.session.slave) is None:
            logger.warning('starting master before the slave attach was launched')

        command = control.start_master(self.session.master, *self._replication_peer())
        policy = PollPolicy.from_settings(
            self.settings.polling.start_master,
            probe=connection_probe(self.session.connector, self.session.command_url(command)),
            target_code=sql_states.CONNECTED,
            pending_codes=frozenset({sql_states.REPLICATION_CONNECTION_EXCEPTION}),
            description=str(command),
        )
        poll(policy)
        self._transition(LifecycleState.SLAVE_ATTACHED)

    def assert_slave_attach(self, expected=sql_states.REPLICATION_SLAVE_STARTED_OK):
        """Consume the slave start outcome, waiting a few seconds for it to arrive."""
        attempt = self.in_flight(control.ControlKind.START_SLAVE, self.session.slave)
        if attempt is None:
            raise OrchestrationError('no slave attach attempt was launched')

        policy = PollPolicy.from_settings(
            self.settings.polling.slave_attach,
            probe=attempt_probe(attempt),
            target_code=expected,
            pending_codes=frozenset({sql_states.ATTEMPT_PENDING}),
            description='attempt to start slave',
        )
        try:
            poll(policy)
        finally:
            if attempt.done():
                attempt.consume()
        return expected

    def make_ready_for_replication(self):
        self.start_servers()
        self.boot_master()
        self.init_slave()
        self.attach_slave()
        self.start_master()
        self.assert_slave_attach()

    def failover(self, target: Endpoint = None):
        """Fail over to the slave.

        Issued against the master by default. Against the slave it promotes the
        slave after the master is gone. The promoted slave must start accepting
        connections; when issued against a live master, the master must also
        stop accepting them.
        """
        target = target or self.session.master
        self._check(LifecycleState.FAILOVER_INITIATED)
        self.expect(control.failover(target), sql_states.REPLICATION_FAILOVER_SUCCESSFUL)
        self._transition(LifecycleState.FAILOVER_INITIATED)

        self.await_promotion(target)
        self._transition(LifecycleState.FAILOVER_COMPLETE)

    def await_promotion(self, target: Endpoint):
        """Wait until the slave accepts connections and, for a master-side failover, the master refuses them."""
        self.connect_ping(self.session.slave)
        if target == self.session.master and self.settings.failover.await_master_severance:
            self.wait_for_master_severance()

    def stop_master(self, expected=sql_states.CONNECTED):
        self._check(LifecycleState.REPLICATION_STOPPED)
        result = self.expect(control.stop_master(self.session.master), expected)
        self._transition(LifecycleState.REPLICATION_STOPPED)
        return result

    def stop_slave(self, master_alive=True):
        """Stop replication on the slave.

        With a live master this is one attempt whose outcome is returned. With
        the master gone, the slave passes through XRE41 and XRE42 before
        settling on XRE11.
        """
        self._check(LifecycleState.REPLICATION_STOPPED)
        command = control.stop_slave(self.session.slave)
        if master_alive:
            result = self.issue(command)
        else:
            policy = PollPolicy.from_settings(
                self.settings.polling.stop_slave,
                probe=connection_probe(self.session.connector, self.session.command_url(command)),
                target_code=sql_states.REPLICATION_DB_NOT_BOOTED,
                pending_codes=frozenset({
                    sql_states.SLAVE_OPERATION_DENIED_WHILE_CONNECTED,
                    sql_states.REPLICATION_SLAVE_SHUTDOWN_OK,
                }),
                description=str(command),
            )
            result = poll(policy)
        self._transition(LifecycleState.REPLICATION_STOPPED)
        return result

    def shutdown_database(self, endpoint: Endpoint):
        return self.expect(control.shutdown(endpoint), sql_states.SHUTDOWN_DATABASE)

    # load and verification

    def load_spec(self, tuple_count=None, target=None, client_host=None, commit_frequency=None,
                  existing_database=True, workload_id='load'):
        return LoadSpec(
            workload_id=workload_id,
            target=target or self.session.master,
            tuple_count=self.settings.load.tuples if tuple_count is None else tuple_count,
            existing_database=existing_database,
            client_host=client_host or self.settings.client.host,
            commit_frequency=(
                self.settings.load.commit_frequency if commit_frequency is None else commit_frequency
            ),
        )

    def run_load(self, tuple_count=None, spec: LoadSpec = None):
        spec = spec or self.load_spec(tuple_count)
        result = self.session.loads.run(spec)
        self.tuples_inserted += result.committed
        return result

    def start_load(self, spec: LoadSpec):
        return start_load(self.session.task_group, self.session.loads, spec)

    def verify_master(self, expected=None):
        expected = self.tuples_inserted if expected is None else expected
        return self.session.verifier.verify(self.session.master_url, expected)

    def verify_slave(self, expected=None):
        expected = self.tuples_inserted if expected is None else expected
        return self.session.verifier.verify(self.session.slave_url, expected)

    # faults

    def _inject(self, new_state, fault, *args):
        # faults may fire on a load worker thread
        with self._state_lock:
            self._check(new_state)
            fault(*args)
            self._transition(new_state)

    def kill_master(self):
        self._inject(LifecycleState.MASTER_KILLED, self.session.injector.kill_master, self.session.master)

    def kill_slave(self):
        self._inject(LifecycleState.SLAVE_KILLED, self.session.injector.kill_slave, self.session.slave)

    def destroy_slave_storage(self):
        self._inject(LifecycleState.SLAVE_STORAGE_DESTROYED, self.session.injector.destroy_slave_storage)

    # teardown

    def teardown(self):
        """Stop both servers and join every session task. Safe to call twice."""
        if self._state == LifecycleState.TORN_DOWN:
            return []
        errors = []
        for endpoint in (self.session.master, self.session.slave):
            try:
                self.session.supervisor.stop_server(endpoint)
            except OrchestrationError as e:
                logger.error(f'stopping {endpoint} failed: {e}')
                errors.append(e)
        abandoned = self.session.teardown()
        self._transition(LifecycleState.TORN_DOWN)
        if errors:
            raise errors[0]
        return abandoned

    # full run

    def run_replication(self, tuple_count=None) -> RunReport:
        """Run the complete replication sequence with checkpoints, load, failover and verification."""
        report = RunReport()

        def stop(name):
            if self.checkpoint(name):
                report.stopped_at = name
                return True
            return False

        with self.session.postmortem():
            if stop('pre_started_master_server'):
                return report
            self._check(LifecycleState.SERVERS_STARTED)
            self.start_master_server()
            if stop('pre_started_slave_server'):
                return report
            self.start_slave_server()
            self._transition(LifecycleState.SERVERS_STARTED)

            if stop('pre_started_master'):
                return report
            self.boot_master()

            if stop('pre_init_slave'):
                return report
            self.init_slave()

            if stop('pre_started_slave'):
                return report
            self.attach_slave()
            self.start_master()
            self.assert_slave_attach()

            if stop('post_started_master_and_slave'):
                return report
            load = self.run_load(tuple_count)
            report.inserted = load.inserted
            if load.error is not None:
                raise load.error
            report.master_rows = self.verify_master()

            if stop('pre_stopped_master'):
                return report
            self.failover()

            if stop('pre_stopped_master_server'):
                return report
            self.session.supervisor.stop_server(self.session.master)

            if stop('pre_stopped_slave'):
                return report
            report.slave_rows = self.verify_slave()
            self.shutdown_database(self.session.slave)

            if stop('post_stopped_slave'):
                return report
            if stop('pre_stopped_slave_server'):
                return report
            self.session.supervisor.stop_server(self.session.slave)

            stop('post_stopped_slave_server')
        return report
