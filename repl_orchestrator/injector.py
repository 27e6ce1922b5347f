from logging import getLogger

from .config import Endpoint


logger = getLogger(__name__)


class FailureInjector:
    """Faults injected into a running replication pair.

    A local server is stopped through the network server shutdown command; a
    remote one is located by PID and killed.
    """

    def __init__(self, supervisor, storage):
        self.supervisor = supervisor
        self.storage = storage

    def _kill(self, endpoint: Endpoint):
        if endpoint.is_local:
            self.supervisor.stop_server(endpoint)
        else:
            self.supervisor.kill_server(endpoint)

    def kill_master(self, endpoint: Endpoint):
        logger.info(f'kill master {endpoint}')
        self._kill(endpoint)

    def kill_slave(self, endpoint: Endpoint):
        logger.info(f'kill slave {endpoint}')
        self._kill(endpoint)

    def destroy_slave_storage(self):
        logger.info('destroy slave storage')
        self.storage.destroy_slave_storage()

    def at_row(self, load_spec, row, fault, *args):
        """Run ``fault(*args)`` right before ``row`` of ``load_spec`` is inserted."""
        load_spec.at_row(row, lambda: fault(*args))
        return load_spec
