import functools
import shlex
import threading
from dataclasses import dataclass
from logging import getLogger

from .config import LOCALHOST, is_local_host
from .errors import CommandLaunchError
from .utils import ProcessRunner


logger = getLogger(__name__)


@dataclass
class CommandResult:
    output: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class CommandExecutor:
    """Runs commands on the local host or on a remote host through the remote shell.

    A remote command is wrapped as
    ``<remote_shell> -l <user> [-n] <host> "cd <dir>; <command>"``.
    """

    def __init__(self, remote_shell='/usr/bin/ssh -x', user=''):
        self.remote_shell = shlex.split(remote_shell)
        self.user = user
        self._runners = set()
        self._lock = threading.Lock()

    def build_argv(self, command, host=LOCALHOST, user=None, working_dir=None, shell=False, stdin=False):
        """Return the argv that runs ``command`` on ``host``.

        ``command`` is a token list, or a shell command line when ``shell`` is set.
        """
        if is_local_host(host):
            if shell:
                return ['/bin/sh', '-c', command]
            return list(command)

        remote_line = command if shell else shlex.join(command)
        if working_dir:
            remote_line = f'cd {shlex.quote(working_dir)}; {remote_line}'

        argv = list(self.remote_shell)
        user = user or self.user
        if user:
            argv += ['-l', user]
        if not stdin:
            argv.append('-n')
        argv += [host, remote_line]
        return argv

    def run(self, tokens, host=LOCALHOST, user=None, working_dir=None, input_text=None, env=None, name=None):
        argv = self.build_argv(
            tokens, host, user=user, working_dir=working_dir, stdin=input_text is not None,
        )
        return self._execute(argv, host, working_dir, input_text, env, name or _command_name(tokens))

    def run_shell(self, command_line, host=LOCALHOST, user=None, working_dir=None, input_text=None, env=None, name=None):
        argv = self.build_argv(
            command_line, host, user=user, working_dir=working_dir, shell=True,
            stdin=input_text is not None,
        )
        return self._execute(argv, host, working_dir, input_text, env, name or 'sh')

    def run_detached(self, tokens, host, task_group, name, **kwargs):
        return task_group.spawn(name, functools.partial(self.run, tokens, host, name=name, **kwargs))

    def run_shell_detached(self, command_line, host, task_group, name, **kwargs):
        return task_group.spawn(
            name, functools.partial(self.run_shell, command_line, host, name=name, **kwargs),
        )

    def _execute(self, argv, host, working_dir, input_text, env, name):
        cwd = working_dir if is_local_host(host) and working_dir else None
        runner = ProcessRunner(argv, name=name, cwd=cwd, env=env, input_text=input_text)
        logger.debug(f'[{host}] {shlex.join(argv)}')
        try:
            runner.run()
        except OSError as e:
            raise CommandLaunchError(argv, host, e) from e

        with self._lock:
            self._runners.add(runner)
        try:
            exit_status = runner.wait_complete()
        finally:
            with self._lock:
                self._runners.discard(runner)

        result = CommandResult(output=runner.output, exit_status=exit_status)
        if not result.ok:
            logger.debug(f'[{name}] exited with status {exit_status}')
        return result

    def live_processes(self):
        with self._lock:
            return [runner for runner in self._runners if runner.is_alive()]

    def terminate_all(self):
        for runner in self.live_processes():
            logger.warning(f'terminating {runner.name} (pid {runner.pid})')
            runner.stop()


def _command_name(tokens):
    if not tokens:
        return 'subprocess'
    for token in reversed(tokens):
        if token.startswith('org.apache.derby.'):
            return token.rsplit('.', 1)[-1]
    return tokens[0].rsplit('/', 1)[-1]
