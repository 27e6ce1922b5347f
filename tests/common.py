import socket
import time
from contextlib import contextmanager


def assert_wait(condition, max_wait_time=5.0, retry_interval=0.01):
    max_time = time.time() + max_wait_time
    while time.time() < max_time:
        if condition():
            return
        time.sleep(retry_interval)
    assert condition()


@contextmanager
def listening_port():
    """A TCP port on localhost that accepts connections while the context is open."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind(('127.0.0.1', 0))
    server.listen(8)
    try:
        yield server.getsockname()[1]
    finally:
        server.close()


def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


class ScriptedProbe:
    """Probe returning a fixed sequence of results, repeating the last one."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def __call__(self):
        result = self.results[min(self.calls, len(self.results) - 1)]
        self.calls += 1
        if isinstance(result, BaseException):
            raise result
        return result
