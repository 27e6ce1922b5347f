# Pseudo state reported by probes when the connection attempt succeeded.
CONNECTED = 'CONNECTED'

# Pseudo states used by the TCP and async-attempt probes.
CONNECTION_REFUSED = 'CONNECTION_REFUSED'
ATTEMPT_PENDING = 'PENDING'
ATTEMPT_DONE = 'DONE'

CLIENT_CONNECTION_REFUSED = '08001'
LOGIN_FAILED = '08004'
SHUTDOWN_DATABASE = '08006'
DATABASE_NOT_FOUND = 'XJ004'

REPLICATION_CONNECTION_EXCEPTION = 'XRE04'
REPLICATION_MASTER_TIMED_OUT = 'XRE06'
REPLICATION_NOT_IN_MASTER_MODE = 'XRE07'
REPLICATION_SLAVE_STARTED_OK = 'XRE08'
REPLICATION_CONFLICTING_ATTRIBUTES = 'XRE10'
REPLICATION_DB_NOT_BOOTED = 'XRE11'
REPLICATION_FAILOVER_SUCCESSFUL = 'XRE20'
SLAVE_OPERATION_DENIED_WHILE_CONNECTED = 'XRE41'
REPLICATION_SLAVE_SHUTDOWN_OK = 'XRE42'

# Names used in log messages and failure reports.
DESCRIPTIONS = {
    CONNECTED: 'connection established',
    CONNECTION_REFUSED: 'connection refused',
    CLIENT_CONNECTION_REFUSED: 'client connection refused',
    LOGIN_FAILED: 'database not available (login failed)',
    SHUTDOWN_DATABASE: 'database shut down',
    DATABASE_NOT_FOUND: 'database not found',
    REPLICATION_CONNECTION_EXCEPTION: 'replication source not ready',
    REPLICATION_MASTER_TIMED_OUT: 'replication master timed out',
    REPLICATION_NOT_IN_MASTER_MODE: 'not a valid failover target',
    REPLICATION_SLAVE_STARTED_OK: 'replication slave started',
    REPLICATION_CONFLICTING_ATTRIBUTES: 'conflicting connection attributes',
    REPLICATION_DB_NOT_BOOTED: 'database not booted',
    REPLICATION_FAILOVER_SUCCESSFUL: 'failover successful',
    SLAVE_OPERATION_DENIED_WHILE_CONNECTED: 'operation denied while connected',
    REPLICATION_SLAVE_SHUTDOWN_OK: 'slave shutdown in progress',
}


def describe(code: str) -> str:
    return DESCRIPTIONS.get(code, 'unknown state')
