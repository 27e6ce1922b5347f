"""Error taxonomy of the orchestrator.

Fatal orchestration errors (launch failures, servers that never come up,
provisioning problems) derive from ``OrchestrationError`` and are never
retried. Protocol rejections surface as ``SqlStateError`` and are only
interpreted by the poller and the assertion helpers. Test failures
(unexpected state, timeout) derive from ``AssertionError`` so the test runner
reports them as failures rather than errors.
"""


class OrchestrationError(Exception):
    pass


class CommandLaunchError(OrchestrationError):
    def __init__(self, command, host, cause):
        super().__init__(f'failed to launch command on {host}: {command!r} ({cause})')
        self.command = command
        self.host = host
        self.cause = cause


class ServerStartTimeout(OrchestrationError):
    pass


class ProvisioningError(OrchestrationError):
    pass


class SqlStateError(Exception):
    """A connection or statement was rejected with a SQLState."""

    def __init__(self, sql_state: str, message: str = '', error_code: int = -1):
        super().__init__(f'{error_code} {sql_state} {message}'.strip())
        self.sql_state = sql_state
        self.error_code = error_code
        self.message = message


class UnexpectedStateError(AssertionError):
    def __init__(self, observed: str, expected, message: str = '', description: str = ''):
        expected_str = expected if isinstance(expected, str) else ', '.join(sorted(expected))
        prefix = f'{description}: ' if description else ''
        super().__init__(
            f"{prefix}unexpected state '{observed}' ({message}), expected '{expected_str}'"
        )
        self.observed = observed
        self.expected = expected
        self.message = message


class InconsistentDataError(AssertionError):
    """The replicated table does not hold the rows the workload inserted."""


class PollTimeoutError(AssertionError):
    def __init__(self, observed: str, expected: str, attempts: int, interval: float, description: str = ''):
        prefix = f'{description}: ' if description else ''
        super().__init__(
            f"{prefix}state '{expected}' was not reached in {attempts} attempts "
            f"({attempts * interval:.1f}s), last state '{observed}'"
        )
        self.observed = observed
        self.expected = expected
        self.attempts = attempts


class IllegalTransitionError(OrchestrationError):
    pass


class CommandInFlightError(OrchestrationError):
    pass


class AttemptConsumedError(OrchestrationError):
    pass
