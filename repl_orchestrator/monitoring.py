import time

from .config import Role, Settings
from .poller import connection_probe
from .utils import GracefulKiller


class StateMonitor:

    CHECK_INTERVAL = 10

    def __init__(self, config: Settings, connector, url_for):
        self.config = config
        self.connector = connector
        self.endpoints = [config.endpoint(Role.MASTER), config.endpoint(Role.SLAVE)]
        self.url_for = url_for

    def header(self):
        stats = ['timestamp']
        for endpoint in self.endpoints:
            stats.append(endpoint.role.value)
        return '|'.join(stats)

    def current_states(self):
        stats = [int(time.time())]
        for endpoint in self.endpoints:
            result = connection_probe(self.connector, self.url_for(endpoint))()
            stats.append(result.code)
        return '|'.join(map(str, stats))

    def run(self, sleep=time.sleep):
        killer = GracefulKiller()
        print(self.header(), flush=True)
        while not killer.kill_now:
            print(self.current_states(), flush=True)
            sleep(StateMonitor.CHECK_INTERVAL)
