from logging import getLogger

from .errors import InconsistentDataError
from .load import TABLE


logger = getLogger(__name__)


class ConsistencyVerifier:
    """Read-only checks of the workload table after replication or failover."""

    def __init__(self, connector):
        self.connector = connector

    def _scalar(self, connection, query):
        rows = self.connector.execute(connection, query)
        return rows[0][0] if rows else None

    def table_stats(self, url):
        with self.connector.connect(url) as connection:
            count = self._scalar(connection, f'select count(*) from {TABLE}')
            max_i = self._scalar(connection, f'select max(i) from {TABLE}')
        count = int(count or 0)
        max_i = -1 if max_i is None else int(max_i)
        return count, max_i

    def verify(self, url, expected: int):
        count, max_i = self.table_stats(url)
        logger.info(f'verify {url.base}: {count}/{expected} {max_i}/{expected - 1}')
        if count != expected:
            raise InconsistentDataError(f'Expected {expected} tuples, got {count}.')
        if max_i != expected - 1:
            raise InconsistentDataError(f'Expected {expected - 1} max, got {max_i}.')
        return count

    def verify_at_most(self, url, limit: int):
        """Check a prefix of the workload survived: at most ``limit`` rows, no gaps."""
        count, max_i = self.table_stats(url)
        logger.info(f'verify {url.base}: {count} rows (limit {limit}), max {max_i}')
        if count > limit:
            raise InconsistentDataError(f'Expected at most {limit} tuples, got {count}.')
        if max_i != count - 1:
            raise InconsistentDataError(f'Expected {count - 1} max for {count} tuples, got {max_i}.')
        return count

    def verify_index(self, url, index_name: str):
        """Drop ``index_name``; succeeds only if the index was replicated."""
        with self.connector.connect(url) as connection:
            self.connector.execute(connection, f'drop index {index_name}')
        logger.info(f'index {index_name} present on {url.base}')

    def simple_verify(self, url):
        with self.connector.connect(url) as connection:
            rows = self.connector.execute(connection, 'select tablename from sys.systables') or []
        for row in rows:
            logger.info(f'{url.base}: {row[0]}')
        return [row[0] for row in rows]
