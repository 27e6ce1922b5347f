"""Test doubles for repl-orchestrator tests"""

from .fake_derby import FakeDerbyPair, FakeStorage, FakeSupervisor
from .fake_executor import FakeExecutor

__all__ = [
    "FakeDerbyPair",
    "FakeExecutor",
    "FakeStorage",
    "FakeSupervisor",
]
