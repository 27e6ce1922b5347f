"""Bounded waits for an observable database state.

Every wait in the orchestrator is a single ``poll()`` over a probe. A probe
returns a ``ProbeResult``: the pseudo code ``CONNECTED`` for an accepted
connection, or the SQLState of the rejection.

    policy = PollPolicy(
        probe=connection_probe(connector, url),
        target_code=sql_states.CONNECTED,
        pending_codes={sql_states.LOGIN_FAILED},
        interval=0.2,
        max_attempts=600,
        description='connect ping',
    )
    poll(policy)
"""

import socket
import time
from dataclasses import dataclass, field
from logging import getLogger
from typing import Callable, Optional

from . import sql_states
from .errors import PollTimeoutError, SqlStateError, UnexpectedStateError


logger = getLogger(__name__)


@dataclass
class ProbeResult:
    code: str
    message: str = ''
    error: Optional[BaseException] = None


@dataclass
class PollPolicy:
    """How to wait for ``target_code``.

    ``pending_codes`` of ``None`` treats every code other than the target and
    ``unexpected_codes`` as pending.
    """
    probe: Callable[[], ProbeResult]
    target_code: str
    pending_codes: Optional[frozenset] = field(default_factory=frozenset)
    interval: float = 1.0
    max_attempts: int = 20
    description: str = ''
    unexpected_codes: frozenset = field(default_factory=frozenset)

    @classmethod
    def from_settings(cls, poll_settings, **kwargs):
        return cls(interval=poll_settings.interval, max_attempts=poll_settings.max_attempts, **kwargs)

    def is_pending(self, code) -> bool:
        if code in self.unexpected_codes:
            return False
        if self.pending_codes is None:
            return True
        return code in self.pending_codes


def poll(policy: PollPolicy, sleep=time.sleep) -> ProbeResult:
    result = None
    for attempt in range(1, policy.max_attempts + 1):
        result = policy.probe()
        if result.code == policy.target_code:
            logger.debug(
                f'{policy.description}: reached {result.code} after {attempt - 1} * {policy.interval}s'
            )
            return result
        if not policy.is_pending(result.code):
            raise UnexpectedStateError(
                result.code, policy.target_code, result.message, description=policy.description,
            )
        logger.debug(
            f'{policy.description}: attempt {attempt}/{policy.max_attempts} got '
            f'{result.code} ({sql_states.describe(result.code)}), expected {policy.target_code}'
        )
        if attempt < policy.max_attempts:
            sleep(policy.interval)

    raise PollTimeoutError(
        result.code, policy.target_code, policy.max_attempts, policy.interval,
        description=policy.description,
    )


def connection_probe(connector, url):
    def probe():
        try:
            connector.attempt(url)
        except SqlStateError as e:
            return ProbeResult(e.sql_state, e.message, e)
        return ProbeResult(sql_states.CONNECTED)
    return probe


def tcp_probe(host, port, timeout=1.0):
    def probe():
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return ProbeResult(sql_states.CONNECTED)
        except OSError as e:
            return ProbeResult(sql_states.CONNECTION_REFUSED, str(e), e)
    return probe


def attempt_probe(attempt):
    """Probe an ``AsyncAttempt`` without consuming its outcome.

    A finished attempt reports the SQLState it failed with, ``DONE`` when it
    completed without error. Non-SQL failures propagate.
    """
    def probe():
        if not attempt.done():
            return ProbeResult(sql_states.ATTEMPT_PENDING)
        outcome = attempt.peek()
        if outcome.error is None:
            return ProbeResult(sql_states.ATTEMPT_DONE)
        if isinstance(outcome.error, SqlStateError):
            return ProbeResult(outcome.error.sql_state, outcome.error.message, outcome.error)
        raise outcome.error
    return probe
