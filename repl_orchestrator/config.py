"""
Replication Lifecycle Orchestrator Configuration

This module provides the configuration classes used to describe one replication
session: where the master and slave servers run, where their storage lives,
how the test client reaches remote hosts, and how long every wait may take.

Classes:
    Role: Role an endpoint plays in a session (master, slave, client)
    Endpoint: Immutable host/port/role triple
    ServerSettings: Per-role server placement and storage configuration
    ClientSettings: Host running loads and remote ij commands
    DerbySettings: Jar locations, JVM and driver class names
    PollSettings: Interval and attempt bound of one wait
    PollingSettings: All waits used by the lifecycle controller
    Settings: Main configuration value passed to every component

Key Features:
    - YAML-based configuration loading
    - Immutable settings (frozen dataclasses), passed explicitly, no globals
    - Environment variable overrides for hosts, ports and the remote user
    - Type validation with readable error messages
"""

import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum

import yaml


LOCALHOST = "localhost"
ALL_INTERFACES = "0.0.0.0"

CONNECTOR_JDBC = "jdbc"
CONNECTOR_IJ = "ij"

CHECKPOINTS = (
    "pre_started_master_server",
    "pre_started_slave_server",
    "pre_started_master",
    "pre_init_slave",
    "pre_started_slave",
    "post_started_master_and_slave",
    "pre_stopped_master",
    "pre_stopped_master_server",
    "pre_stopped_slave",
    "pre_stopped_slave_server",
    "post_stopped_slave",
    "post_stopped_slave_server",
)

ENV_OVERRIDES = {
    "REPL_MASTER_HOST": ("master", "host", str),
    "REPL_MASTER_PORT": ("master", "port", int),
    "REPL_SLAVE_HOST": ("slave", "host", str),
    "REPL_SLAVE_PORT": ("slave", "port", int),
    "REPL_SLAVE_REPL_PORT": ("slave", "repl_port", int),
    "REPL_CLIENT_HOST": ("client", "host", str),
    "REPL_TEST_USER": (None, "test_user", str),
}


def stype(obj):
    """Get the simple type name of an object.

    Args:
        obj: Any object to get type name for

    Returns:
        str: Simple class name of the object's type

    Example:
        >>> stype([1, 2, 3])
        'list'
        >>> stype("hello")
        'str'
    """
    return type(obj).__name__


def is_local_host(host: str) -> bool:
    return host.lower() == LOCALHOST


class Role(Enum):
    MASTER = "master"
    SLAVE = "slave"
    CLIENT = "client"


@dataclass(frozen=True)
class Endpoint:
    """Where a process runs and which role it plays.

    Created from configuration and immutable for the whole session.
    """
    host: str
    port: int
    role: Role

    @property
    def is_local(self) -> bool:
        return is_local_host(self.host)

    def __str__(self):
        return f"{self.role.value}@{self.host}:{self.port}"


@dataclass(frozen=True)
class ServerSettings:
    """Placement and storage of one replication server.

    Attributes:
        host: Host running the network server
        port: Port accepting client connections
        repl_port: Port the slave listens on for the master (slave only)
        database_path: Base directory holding the server home
        sub_path: Server home below database_path (db_master / db_slave)
        java_home: JVM directory used when the server is remote
        derby_lib: Jar directory used when the server is remote
        listen_interfaces: Interfaces passed to ``NetworkServerControl start -h``
    """
    host: str = LOCALHOST
    port: int = 1527
    repl_port: int = 0
    database_path: str = "."
    sub_path: str = ""
    java_home: str = ""
    derby_lib: str = ""
    listen_interfaces: str = ALL_INTERFACES

    def validate(self, name):
        if not isinstance(self.host, str) or not self.host:
            raise ValueError(f"{name} host should be non-empty string and not {stype(self.host)}")

        if not isinstance(self.port, int) or not 0 < self.port < 65536:
            raise ValueError(f"{name} port should be int in 1..65535 and not {self.port!r}")

        if not isinstance(self.repl_port, int) or self.repl_port < 0:
            raise ValueError(f"{name} repl_port should be non-negative int and not {self.repl_port!r}")

        if not isinstance(self.database_path, str):
            raise ValueError(
                f"{name} database_path should be string and not {stype(self.database_path)}"
            )

        if not isinstance(self.sub_path, str):
            raise ValueError(f"{name} sub_path should be string and not {stype(self.sub_path)}")

        if not isinstance(self.listen_interfaces, str):
            raise ValueError(
                f"{name} listen_interfaces should be string and not {stype(self.listen_interfaces)}"
            )

    @property
    def home(self) -> str:
        return os.path.join(self.database_path, self.sub_path)

    def db_path(self, db_name) -> str:
        return os.path.join(self.home, db_name)


@dataclass(frozen=True)
class ClientSettings:
    host: str = LOCALHOST
    home: str = ""

    def validate(self):
        if not isinstance(self.host, str) or not self.host:
            raise ValueError(f"client host should be non-empty string and not {stype(self.host)}")
        if not isinstance(self.home, str):
            raise ValueError(f"client home should be string and not {stype(self.home)}")


@dataclass(frozen=True)
class DerbySettings:
    lib_dir: str = ""
    java: str = "java"
    driver_class: str = "org.apache.derby.jdbc.ClientDriver"
    server_class: str = "org.apache.derby.drda.NetworkServerControl"
    ij_class: str = "org.apache.derby.tools.ij"

    SERVER_JARS = ("derby.jar", "derbynet.jar", "derbytools.jar", "derbyclient.jar")
    CLIENT_JARS = ("derbyclient.jar", "derbytools.jar")

    def validate(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, str):
                raise ValueError(f"derby {f.name} should be string and not {stype(value)}")
        if not self.java:
            raise ValueError("derby java should not be empty")

    def classpath(self, jars, lib_dir=None) -> str:
        lib_dir = lib_dir or self.lib_dir
        return os.pathsep.join(os.path.join(lib_dir, jar) for jar in jars)


@dataclass(frozen=True)
class Credentials:
    user: str = ""
    password: str = ""

    def validate(self):
        if not isinstance(self.user, str) or not self.user:
            raise ValueError(f"credentials user should be non-empty string and not {stype(self.user)}")
        if not isinstance(self.password, str):
            raise ValueError(
                f"credentials password should be string and not {stype(self.password)}"
            )


@dataclass(frozen=True)
class PollSettings:
    interval: float = 1.0
    max_attempts: int = 20

    def validate(self, name):
        if not isinstance(self.interval, (int, float)) or self.interval < 0:
            raise ValueError(f"polling {name} interval should be non-negative number and not {self.interval!r}")
        if not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ValueError(f"polling {name} max_attempts should be positive int and not {self.max_attempts!r}")


@dataclass(frozen=True)
class PollingSettings:
    # 1200 * 100ms == 2 minutes for the master to find the slave.
    start_master: PollSettings = field(default_factory=lambda: PollSettings(0.1, 1200))
    # 600 * 200ms == 2 minutes for a promoted slave to accept connections.
    connect_ping: PollSettings = field(default_factory=lambda: PollSettings(0.2, 600))
    wait_for_connect: PollSettings = field(default_factory=lambda: PollSettings(1.0, 20))
    wait_for_state: PollSettings = field(default_factory=lambda: PollSettings(1.0, 20))
    slave_attach: PollSettings = field(default_factory=lambda: PollSettings(0.5, 10))
    stop_slave: PollSettings = field(default_factory=lambda: PollSettings(1.0, 20))
    server_start: PollSettings = field(default_factory=lambda: PollSettings(0.5, 120))
    master_severance: PollSettings = field(default_factory=lambda: PollSettings(0.5, 60))

    def validate(self):
        for f in fields(self):
            getattr(self, f.name).validate(f.name)


@dataclass(frozen=True)
class LoadSettings:
    tuples: int = 1000
    commit_frequency: int = 0

    def validate(self):
        if not isinstance(self.tuples, int) or self.tuples < 0:
            raise ValueError(f"load tuples should be non-negative int and not {self.tuples!r}")
        if not isinstance(self.commit_frequency, int) or self.commit_frequency < 0:
            raise ValueError(
                f"load commit_frequency should be non-negative int and not {self.commit_frequency!r}"
            )


@dataclass(frozen=True)
class FailoverSettings:
    await_master_severance: bool = True
    severance_code: str = "08004"

    def validate(self):
        if not isinstance(self.severance_code, str) or not self.severance_code:
            raise ValueError(
                f"failover severance_code should be non-empty string and not {stype(self.severance_code)}"
            )


@dataclass(frozen=True)
class CheckpointSettings:
    script: str = ""
    stop: bool = False


@dataclass(frozen=True)
class Settings:
    DEFAULT_LOG_LEVEL = "info"
    DEFAULT_REMOTE_SHELL = "/usr/bin/ssh -x"
    DEFAULT_TEARDOWN_TIMEOUT = 30.0

    database: str = "test"
    master: ServerSettings = field(default_factory=lambda: ServerSettings(sub_path="db_master"))
    slave: ServerSettings = field(
        default_factory=lambda: ServerSettings(port=1528, repl_port=8001, sub_path="db_slave")
    )
    client: ClientSettings = field(default_factory=ClientSettings)
    derby: DerbySettings = field(default_factory=DerbySettings)
    remote_shell: str = DEFAULT_REMOTE_SHELL
    test_user: str = ""
    connector: str = CONNECTOR_JDBC
    encryption: str = ""
    credentials: Credentials = None
    load: LoadSettings = field(default_factory=LoadSettings)
    polling: PollingSettings = field(default_factory=PollingSettings)
    failover: FailoverSettings = field(default_factory=FailoverSettings)
    checkpoints: dict = field(default_factory=dict)
    failure_folder: str = "fail"
    teardown_timeout: float = DEFAULT_TEARDOWN_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL
    settings_file: str = ""

    @classmethod
    def from_file(cls, settings_file, environ=None):
        with open(settings_file, "r") as f:
            data = yaml.safe_load(f.read()) or {}

        data = apply_env_overrides(data, os.environ if environ is None else environ)

        polling_data = data.pop("polling", {}) or {}
        polling = PollingSettings(**{
            name: PollSettings(**value) for name, value in polling_data.items()
        })

        checkpoints = {}
        for name, value in (data.pop("checkpoints", {}) or {}).items():
            if name not in CHECKPOINTS:
                raise ValueError(f"unknown checkpoint {name}, known: {', '.join(CHECKPOINTS)}")
            checkpoints[name] = CheckpointSettings(**value)

        credentials = data.pop("credentials", None)

        settings = cls(
            database=data.pop("database", "test"),
            master=ServerSettings(**{"sub_path": "db_master", **data.pop("master", {})}),
            slave=ServerSettings(**{
                "port": 1528, "repl_port": 8001, "sub_path": "db_slave", **data.pop("slave", {}),
            }),
            client=ClientSettings(**data.pop("client", {})),
            derby=DerbySettings(**data.pop("derby", {})),
            remote_shell=data.pop("remote_shell", Settings.DEFAULT_REMOTE_SHELL),
            test_user=data.pop("test_user", ""),
            connector=data.pop("connector", CONNECTOR_JDBC),
            encryption=data.pop("encryption", ""),
            credentials=Credentials(**credentials) if credentials else None,
            load=LoadSettings(**data.pop("load", {})),
            polling=polling,
            failover=FailoverSettings(**data.pop("failover", {})),
            checkpoints=checkpoints,
            failure_folder=data.pop("failure_folder", "fail"),
            teardown_timeout=data.pop("teardown_timeout", Settings.DEFAULT_TEARDOWN_TIMEOUT),
            log_level=data.pop("log_level", Settings.DEFAULT_LOG_LEVEL),
            settings_file=settings_file,
        )

        if data:
            raise Exception(f"Unsupported config options: {list(data.keys())}")
        settings.validate()
        return settings

    @property
    def is_distributed(self) -> bool:
        return not all(
            is_local_host(host) for host in (self.master.host, self.slave.host, self.client.host)
        )

    def endpoint(self, role: Role) -> Endpoint:
        if role == Role.MASTER:
            return Endpoint(self.master.host, self.master.port, Role.MASTER)
        if role == Role.SLAVE:
            return Endpoint(self.slave.host, self.slave.port, Role.SLAVE)
        return Endpoint(self.client.host, 0, Role.CLIENT)

    def server(self, role: Role) -> ServerSettings:
        if role == Role.MASTER:
            return self.master
        if role == Role.SLAVE:
            return self.slave
        raise ValueError(f"no server settings for role {role.value}")

    def validate_log_level(self):
        if self.log_level not in ["critical", "error", "warning", "info", "debug"]:
            raise ValueError(f"wrong log level {self.log_level}")

    def validate(self):
        if not isinstance(self.database, str) or not self.database:
            raise ValueError(f"database should be non-empty string and not {stype(self.database)}")
        self.master.validate("master")
        self.slave.validate("slave")
        self.client.validate()
        self.derby.validate()
        self.load.validate()
        self.polling.validate()
        self.failover.validate()
        if self.credentials is not None:
            self.credentials.validate()
        self.validate_log_level()

        if self.slave.repl_port == 0:
            raise ValueError("slave repl_port should be set")

        if (self.master.host, self.master.port) == (self.slave.host, self.slave.port):
            raise ValueError("master and slave should not share host and port")

        if self.master.home == self.slave.home and is_local_host(self.master.host) and is_local_host(self.slave.host):
            raise ValueError("master and slave should not share a storage path")

        if self.connector not in (CONNECTOR_JDBC, CONNECTOR_IJ):
            raise ValueError(f"wrong connector {self.connector}, expected {CONNECTOR_JDBC} or {CONNECTOR_IJ}")

        if not isinstance(self.encryption, str):
            raise ValueError(f"encryption should be string and not {stype(self.encryption)}")

        if not isinstance(self.teardown_timeout, (int, float)) or self.teardown_timeout <= 0:
            raise ValueError("teardown_timeout should be positive number")

        if self.is_distributed and not self.test_user:
            raise ValueError("test_user should be set when any host is remote")


def apply_env_overrides(data: dict, environ) -> dict:
    data = dict(data)
    for env_name, (section, key, type_) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None:
            continue
        if section is None:
            data[key] = type_(value)
            continue
        section_data = dict(data.get(section) or {})
        section_data[key] = type_(value)
        data[section] = section_data
    return data


def with_overrides(settings: Settings, **changes) -> Settings:
    """Return a copy of ``settings`` with top level fields replaced."""
    return replace(settings, **changes)
