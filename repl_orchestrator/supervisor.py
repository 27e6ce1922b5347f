import os
import shlex
from logging import getLogger

import psutil

from . import sql_states
from .config import Endpoint, Settings, DerbySettings
from .errors import PollTimeoutError, ServerStartTimeout, UnexpectedStateError
from .poller import PollPolicy, poll, tcp_probe


logger = getLogger(__name__)

PID_NOT_FOUND = -1
NO_PID = 0

SERVER_START_MARKER = '.NetworkServerControl start -h '


class ProcessSupervisor:
    """Starts, stops, locates and kills the network servers of a session."""

    def __init__(self, settings: Settings, executor, task_group):
        self.settings = settings
        self.executor = executor
        self.task_group = task_group
        self.server_attempts = {}

    def _java_and_lib(self, endpoint: Endpoint):
        server = self.settings.server(endpoint.role)
        derby = self.settings.derby
        if endpoint.is_local:
            return derby.java, derby.lib_dir
        java = os.path.join(server.java_home, 'bin', 'java') if server.java_home else derby.java
        return java, server.derby_lib or derby.lib_dir

    def start_command(self, endpoint: Endpoint, listen_interfaces=None, storage_path=None):
        server = self.settings.server(endpoint.role)
        java, lib_dir = self._java_and_lib(endpoint)
        command = [
            java,
            '-cp', self.settings.derby.classpath(DerbySettings.SERVER_JARS, lib_dir),
            f'-Dderby.system.home={storage_path or server.home}',
            '-Dderby.infolog.append=true',
        ]
        if self.settings.credentials is not None:
            command.append(
                f'-Dderby.authentication.provider=NATIVE:{self.settings.database}:LOCAL'
            )
        command += [
            self.settings.derby.server_class,
            'start',
            '-h', listen_interfaces or server.listen_interfaces,
            '-p', str(endpoint.port),
            '-noSecurityManager',
        ]
        return command

    def shutdown_command(self, endpoint: Endpoint):
        derby = self.settings.derby
        command = [
            derby.java,
            '-cp', derby.classpath(DerbySettings.SERVER_JARS),
            '-Dderby.infolog.append=true',
            derby.server_class,
            'shutdown',
            '-h', endpoint.host,
            '-p', str(endpoint.port),
        ]
        credentials = self.settings.credentials
        if credentials is not None:
            command += ['-user', credentials.user, '-password', credentials.password]
        return command

    def start_server(self, endpoint: Endpoint, listen_interfaces=None, storage_path=None):
        """Launch the server in the background and block until it answers."""
        storage_path = storage_path or self.settings.server(endpoint.role).home
        command = self.start_command(endpoint, listen_interfaces, storage_path)
        name = f'server-{endpoint.role.value}'
        logger.info(f'starting {endpoint} with home {storage_path}')

        if endpoint.is_local:
            os.makedirs(storage_path, exist_ok=True)
            attempt = self.executor.run_detached(
                command, endpoint.host, self.task_group, name, working_dir=storage_path,
            )
        else:
            _, lib_dir = self._java_and_lib(endpoint)
            server = self.settings.server(endpoint.role)
            path_prefix = f'PATH={shlex.quote(os.path.join(server.java_home, "bin"))}:$PATH; ' if server.java_home else ''
            command_line = (
                f'mkdir -p {shlex.quote(storage_path)}; cd {shlex.quote(storage_path)}; pwd; '
                f'CLASSPATH={shlex.quote(self.settings.derby.classpath(DerbySettings.SERVER_JARS, lib_dir))}; '
                f'{path_prefix}export CLASSPATH PATH; {shlex.join(command)}'
            )
            attempt = self.executor.run_shell_detached(
                command_line, endpoint.host, self.task_group, name, user=self.settings.test_user,
            )
        self.server_attempts[endpoint] = attempt
        self.ping_server(endpoint)
        return attempt

    def ping_server(self, endpoint: Endpoint):
        probe = tcp_probe(endpoint.host, endpoint.port)
        attempt = self.server_attempts.get(endpoint)

        def server_probe():
            if attempt is not None and attempt.done():
                # the server task ended before the port opened
                outcome = attempt.peek()
                if outcome.error is not None:
                    raise outcome.error
                raise ServerStartTimeout(
                    f'{endpoint} exited with status {outcome.value.exit_status} before accepting connections'
                )
            return probe()

        policy = PollPolicy.from_settings(
            self.settings.polling.server_start,
            probe=server_probe,
            target_code=sql_states.CONNECTED,
            pending_codes=frozenset({sql_states.CONNECTION_REFUSED}),
            description=f'ping {endpoint}',
        )
        try:
            poll(policy)
        except (PollTimeoutError, UnexpectedStateError) as e:
            raise ServerStartTimeout(f'server {endpoint} did not start in time: {e}') from e
        logger.info(f'{endpoint} is accepting connections')

    def stop_server(self, endpoint: Endpoint):
        """Shut the server down from the local host. Stopping a stopped server is not an error."""
        logger.info(f'stopping {endpoint}')
        result = self.executor.run(self.shutdown_command(endpoint), name=f'shutdown-{endpoint.role.value}')
        if not result.ok:
            logger.info(f'shutdown of {endpoint} exited with {result.exit_status}: {result.output.strip()}')
        return result

    def restart_server(self, endpoint: Endpoint, listen_interfaces=None, storage_path=None):
        self.stop_server(endpoint)
        return self.start_server(endpoint, listen_interfaces, storage_path)

    def find_pid(self, endpoint: Endpoint) -> int:
        if endpoint.is_local:
            return self._find_local_pid(endpoint)

        command_line = (
            f"ps auxwww | grep {endpoint.port} | grep '{SERVER_START_MARKER}' "
            "| grep -v grep | grep -v ssh | grep -v bash | awk '{ print $2 }' | head -1"
        )
        result = self.executor.run_shell(
            command_line, endpoint.host, user=self.settings.test_user, name='find_pid',
        )
        return parse_pid(result.output)

    @staticmethod
    def _find_local_pid(endpoint: Endpoint) -> int:
        port = str(endpoint.port)
        for process in psutil.process_iter(['pid', 'cmdline']):
            cmdline = process.info['cmdline'] or []
            if not any(arg.endswith('NetworkServerControl') for arg in cmdline):
                continue
            if 'start' in cmdline and port in cmdline:
                return process.info['pid']
        return PID_NOT_FOUND

    def kill_process(self, endpoint: Endpoint, pid: int):
        if pid in (PID_NOT_FOUND, NO_PID):
            logger.info(f'illegal pid {pid} for {endpoint}, nothing to kill')
            return
        logger.info(f'killing {endpoint} (pid {pid})')
        result = self.executor.run(
            ['kill', str(pid)], endpoint.host, user=self.settings.test_user, name='kill',
        )
        if not result.ok:
            logger.warning(f'kill {pid} on {endpoint.host} exited with {result.exit_status}')

    def kill_server(self, endpoint: Endpoint):
        self.kill_process(endpoint, self.find_pid(endpoint))


def parse_pid(output: str) -> int:
    for line in output.splitlines():
        line = line.strip()
        if line.isdigit():
            return int(line)
    return PID_NOT_FOUND
