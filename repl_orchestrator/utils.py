import os
import signal
import subprocess
import threading
from logging import getLogger

logger = getLogger(__name__)


class GracefulKiller:
    kill_now = False

    def __init__(self):
        signal.signal(signal.SIGINT, self.exit_gracefully)
        signal.signal(signal.SIGTERM, self.exit_gracefully)

    def exit_gracefully(self, signum, frame):
        self.kill_now = True


class ProcessRunner:
    """Run one command, forwarding its combined stdout/stderr to the logger.

    Output lines are also collected so the caller can inspect them once the
    process completes (ij error lines, ``ps`` output).
    """

    def __init__(self, cmd, name='subprocess', cwd=None, env=None, input_text=None):
        self.cmd = list(cmd)
        self.name = name
        self.cwd = cwd
        self.env = env
        self.input_text = input_text
        self.process = None
        self.log_forwarding_thread = None
        self.should_stop_forwarding = False
        self.output_lines = []

    def _forward_logs(self):
        """Forward subprocess logs to the main process logger in real-time."""
        if not self.process or not self.process.stdout:
            return

        try:
            for line in iter(self.process.stdout.readline, ''):
                self.output_lines.append(line.rstrip('\n'))
                if self.should_stop_forwarding:
                    continue
                if line.strip():
                    logger.debug(f'[{self.name}] {line.strip()}')
        except (OSError, ValueError) as e:
            if not self.should_stop_forwarding:
                logger.debug(f'Error forwarding logs for {self.name}: {e}')

    def run(self):
        subprocess_env = os.environ.copy()
        if self.env:
            subprocess_env.update(self.env)

        try:
            self.process = subprocess.Popen(
                self.cmd,
                env=subprocess_env,
                stdin=subprocess.PIPE if self.input_text is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,  # Combine stderr with stdout
                universal_newlines=True,
                bufsize=1,
                start_new_session=True,
                cwd=self.cwd,
            )
        except OSError as e:
            logger.error(f'Failed to start process {self.cmd}: {e}')
            raise
        logger.debug(f'Started process {self.process.pid}: {self.cmd}')

        self.should_stop_forwarding = False
        self.log_forwarding_thread = threading.Thread(
            target=self._forward_logs,
            daemon=True,
            name=f'LogForwarder-{self.process.pid}',
        )
        self.log_forwarding_thread.start()

        if self.input_text is not None:
            try:
                self.process.stdin.write(self.input_text)
                self.process.stdin.close()
            except BrokenPipeError:
                logger.debug(f'[{self.name}] process closed stdin early')

    def is_alive(self):
        return self.process is not None and self.process.poll() is None

    @property
    def pid(self):
        return self.process.pid if self.process is not None else None

    @property
    def output(self):
        return '\n'.join(self.output_lines)

    def wait_complete(self, timeout=None):
        exit_status = None
        if self.process is not None:
            exit_status = self.process.wait(timeout=timeout)

        if self.log_forwarding_thread and self.log_forwarding_thread.is_alive():
            self.log_forwarding_thread.join(timeout=2.0)
        return exit_status

    def stop(self):
        self.should_stop_forwarding = True
        if self.process is None or self.process.poll() is not None:
            return
        try:
            # Send SIGINT first for graceful shutdown
            self.process.send_signal(signal.SIGINT)
            try:
                self.process.wait(timeout=5.0)
            except subprocess.TimeoutExpired:
                logger.warning(
                    f'Process {self.process.pid} did not respond to SIGINT, using SIGKILL'
                )
                self.process.kill()
                self.process.wait()
        except OSError as e:
            logger.warning(f'Error stopping process: {e}')
