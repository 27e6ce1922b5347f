"""Background attempts owned by a replication session.

Some control commands block until a peer acts (a slave start hangs until the
master starts replicating), so they run on a background thread. Each launch
gets a fresh ``AsyncAttempt``; the outcome is read exactly once.
"""

import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from logging import getLogger

from .errors import AttemptConsumedError, OrchestrationError, SqlStateError


logger = getLogger(__name__)


@dataclass
class Outcome:
    value: object = None
    error: BaseException = None

    @property
    def sql_state(self):
        if isinstance(self.error, SqlStateError):
            return self.error.sql_state
        return None


class AsyncAttempt:
    def __init__(self, name):
        self.name = name
        self.future = Future()
        self.started_at = time.time()
        self._consumed = False
        self._lock = threading.Lock()

    def done(self) -> bool:
        return self.future.done()

    def wait(self, timeout=None) -> bool:
        try:
            self.future.exception(timeout=timeout)
        except FutureTimeoutError:
            return False
        return True

    def peek(self) -> Outcome:
        """Return the outcome without consuming it. Only valid once done."""
        if not self.future.done():
            raise OrchestrationError(f'attempt {self.name} is still running')
        return Outcome(
            value=None if self.future.exception() else self.future.result(),
            error=self.future.exception(),
        )

    def consume(self) -> Outcome:
        with self._lock:
            if self._consumed:
                raise AttemptConsumedError(f'outcome of attempt {self.name} was already consumed')
            outcome = self.peek()
            self._consumed = True
        return outcome

    @property
    def consumed(self) -> bool:
        return self._consumed

    def __repr__(self):
        state = 'consumed' if self._consumed else ('done' if self.done() else 'running')
        return f'<AsyncAttempt {self.name} {state}>'


class TaskGroup:
    """Threads started on behalf of one session, joined on teardown."""

    def __init__(self, name='session'):
        self.name = name
        self._tasks = []
        self._lock = threading.Lock()

    def spawn(self, name, fn, *args, **kwargs) -> AsyncAttempt:
        attempt = AsyncAttempt(name)
        thread = threading.Thread(
            target=self._run,
            args=(attempt, fn, args, kwargs),
            daemon=True,
            name=f'{self.name}-{name}',
        )
        with self._lock:
            self._tasks.append((attempt, thread))
        thread.start()
        return attempt

    @staticmethod
    def _run(attempt, fn, args, kwargs):
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            logger.debug(f'task {attempt.name} finished with {type(e).__name__}: {e}')
            attempt.future.set_exception(e)
            return
        attempt.future.set_result(result)

    def pending(self):
        with self._lock:
            return [attempt for attempt, _ in self._tasks if not attempt.done()]

    def join(self, timeout):
        """Wait for every task until the deadline, return those still running."""
        deadline = time.monotonic() + timeout
        with self._lock:
            tasks = list(self._tasks)
        for attempt, thread in tasks:
            thread.join(max(0.0, deadline - time.monotonic()))

        for attempt, _ in tasks:
            if attempt.done() and not attempt.consumed and attempt.future.exception() is not None:
                logger.info(f'unconsumed outcome of {attempt.name}: {attempt.future.exception()}')

        abandoned = [attempt for attempt, _ in tasks if not attempt.done()]
        for attempt in abandoned:
            logger.warning(f'task {attempt.name} still running after {timeout}s, abandoning it')
        return abandoned
