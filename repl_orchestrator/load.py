"""Fixed insert workload run against the master during a replication session.

The workload creates ``t(i integer primary key, s varchar(64))`` and inserts
``(i, 'dilldall<i>')`` for ``i`` in ``0..N-1``. Callbacks registered for a row
number fire right before that row is inserted, which is where failure
injections are attached. A lost connection ends the load and is reported in
the result, it is not raised.
"""

from dataclasses import dataclass, field
from logging import getLogger

from .config import LOCALHOST, Endpoint, is_local_host
from .errors import SqlStateError


logger = getLogger(__name__)

TABLE = 't'
CREATE_TABLE = f'create table {TABLE}(i integer primary key, s varchar(64))'
INSERT_ROW = f'insert into {TABLE} values (?, ?)'
IJ_ROW_INSERTED = '1 row inserted/updated/deleted'


def row_value(i: int) -> str:
    return f'dilldall{i}'


@dataclass
class LoadSpec:
    workload_id: str
    target: Endpoint
    tuple_count: int
    existing_database: bool = True
    client_host: str = LOCALHOST
    commit_frequency: int = 0
    checkpoints: dict = field(default_factory=dict)

    def at_row(self, row: int, callback):
        """Register ``callback`` to run before ``row`` is inserted."""
        if not 0 <= row < self.tuple_count:
            raise ValueError(f'checkpoint row {row} outside 0..{self.tuple_count - 1}')
        self.checkpoints.setdefault(row, []).append(callback)
        return self


@dataclass
class LoadResult:
    inserted: int = 0
    committed: int = 0
    error: SqlStateError = None

    @property
    def completed(self) -> bool:
        return self.error is None


class LoadRunner:
    """Runs a ``LoadSpec`` in-process, or through ij on a remote client host.

    Args:
        connector: connector with ``connect``/``execute``/``set_autocommit``
        ij_connector_for: callable returning an ij connector for a client host
        url_for: callable ``(endpoint, create) -> DatabaseUrl``
    """

    def __init__(self, connector, ij_connector_for, url_for):
        self.connector = connector
        self.ij_connector_for = ij_connector_for
        self.url_for = url_for

    def run(self, spec: LoadSpec) -> LoadResult:
        url = self.url_for(spec.target, not spec.existing_database)
        logger.info(
            f'load {spec.workload_id}: {spec.tuple_count} rows into {spec.target} '
            f'from {spec.client_host}'
        )
        if is_local_host(spec.client_host):
            result = self._run_local(spec, url)
        else:
            result = self._run_remote(spec, url)
        if result.error is not None:
            logger.info(
                f'load {spec.workload_id} ended after {result.inserted} rows: {result.error}'
            )
        else:
            logger.info(f'load {spec.workload_id} inserted {result.inserted} rows')
        return result

    def _fire_checkpoints(self, spec, row):
        for callback in spec.checkpoints.get(row, ()):
            logger.info(f'load {spec.workload_id}: checkpoint at row {row}')
            callback()

    def _run_local(self, spec, url):
        result = LoadResult()
        try:
            with self.connector.connect(url) as connection:
                self.connector.execute(connection, CREATE_TABLE)
                if spec.commit_frequency:
                    self.connector.set_autocommit(connection, False)

                for i in range(spec.tuple_count):
                    self._fire_checkpoints(spec, i)
                    self.connector.execute(connection, INSERT_ROW, [i, row_value(i)])
                    result.inserted += 1
                    if not spec.commit_frequency:
                        result.committed = result.inserted
                    elif result.inserted % spec.commit_frequency == 0:
                        self.connector.commit(connection)
                        result.committed = result.inserted

                if spec.commit_frequency and result.committed != result.inserted:
                    self.connector.commit(connection)
                    result.committed = result.inserted
        except SqlStateError as e:
            result.error = e
        return result

    def _run_remote(self, spec, url):
        """Pipe the workload to ij, one script per stretch between checkpoints."""
        ij = self.ij_connector_for(spec.client_host)
        result = LoadResult()
        boundaries = sorted(row for row in spec.checkpoints if row > 0) + [spec.tuple_count]

        start = 0
        for end in boundaries:
            self._fire_checkpoints(spec, start)
            lines = []
            if start == 0:
                lines.append(f'{CREATE_TABLE};')
            if spec.commit_frequency:
                lines.append('autocommit off;')
            for i in range(start, end):
                lines.append(f"insert into {TABLE} values ({i}, '{row_value(i)}');")
                if spec.commit_frequency and (i + 1) % spec.commit_frequency == 0:
                    lines.append('commit;')
            if spec.commit_frequency:
                lines.append('commit;')

            run, errors = ij.run_script(url, '\n'.join(lines))
            inserted = run.output.count(IJ_ROW_INSERTED)
            result.inserted += inserted
            if errors:
                result.error = errors[0]
                if not spec.commit_frequency:
                    result.committed = result.inserted
                break
            result.committed = result.inserted
            start = end
        return result


def start_load(task_group, runner: LoadRunner, spec: LoadSpec):
    return task_group.spawn(f'load-{spec.workload_id}', runner.run, spec)
