"""Connection URLs and the replication control commands they carry.

The replicated database is only controlled through connection attributes:
``jdbc:derby://host:port/path;startMaster=true;slaveHost=h;slavePort=p``.
"""

from dataclasses import dataclass, field
from enum import Enum

from .config import Endpoint


URL_PREFIX = 'jdbc:derby://'


@dataclass(frozen=True)
class DatabaseUrl:
    host: str
    port: int
    path: str
    attributes: tuple = ()

    @classmethod
    def for_endpoint(cls, endpoint: Endpoint, path: str, attributes=()):
        return cls(endpoint.host, endpoint.port, path, tuple(attributes))

    def with_attributes(self, *attributes):
        return DatabaseUrl(self.host, self.port, self.path, self.attributes + tuple(attributes))

    @property
    def base(self) -> str:
        return f'{URL_PREFIX}{self.host}:{self.port}/{self.path}'

    def render(self) -> str:
        rendered = [self.base]
        for attribute in self.attributes:
            if isinstance(attribute, tuple):
                name, value = attribute
                rendered.append(f'{name}={value}')
            elif attribute:
                # raw "a=b;c=d" fragments such as an encryption setting
                rendered.append(attribute.strip(';'))
        return ';'.join(rendered)

    def __str__(self):
        return self.render()


class ControlKind(Enum):
    CREATE = 'create'
    START_MASTER = 'startMaster'
    START_SLAVE = 'startSlave'
    STOP_MASTER = 'stopMaster'
    STOP_SLAVE = 'stopSlave'
    FAILOVER = 'failover'
    SHUTDOWN = 'shutdown'


@dataclass(frozen=True)
class ControlCommand:
    """One control request addressed to the database on ``target``.

    ``parameters`` holds the replication peer (``slave_host``, ``slave_port``)
    for start commands.
    """
    kind: ControlKind
    target: Endpoint
    parameters: dict = field(default_factory=dict, hash=False, compare=False)

    def attributes(self):
        attributes = [(self.kind.value, 'true')]
        if self.kind in (ControlKind.START_MASTER, ControlKind.START_SLAVE):
            attributes.append(('slaveHost', self.parameters['slave_host']))
            attributes.append(('slavePort', self.parameters['slave_port']))
        return attributes

    def apply(self, url: DatabaseUrl, encryption='', credentials=None) -> DatabaseUrl:
        attributes = self.attributes()
        if encryption:
            if self.kind == ControlKind.CREATE:
                attributes.append(('dataEncryption', 'true'))
            attributes.append(encryption)
        return url.with_attributes(*attributes, *credential_attributes(credentials))

    def __str__(self):
        return f'{self.kind.value}@{self.target.host}:{self.target.port}'


def credential_attributes(credentials):
    if credentials is None:
        return []
    return [('user', credentials.user), ('password', credentials.password)]


def start_master(target, slave_host, slave_port):
    return ControlCommand(ControlKind.START_MASTER, target, {
        'slave_host': slave_host, 'slave_port': slave_port,
    })


def start_slave(target, slave_host, slave_port):
    return ControlCommand(ControlKind.START_SLAVE, target, {
        'slave_host': slave_host, 'slave_port': slave_port,
    })


def stop_master(target):
    return ControlCommand(ControlKind.STOP_MASTER, target)


def stop_slave(target):
    return ControlCommand(ControlKind.STOP_SLAVE, target)


def failover(target):
    return ControlCommand(ControlKind.FAILOVER, target)


def shutdown(target):
    return ControlCommand(ControlKind.SHUTDOWN, target)


def create(target):
    return ControlCommand(ControlKind.CREATE, target)
