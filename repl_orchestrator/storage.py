import os
import shlex
import shutil
from logging import getLogger

from .config import Role, Settings
from .errors import ProvisioningError


logger = getLogger(__name__)


class StorageManager:
    """Prepares, copies, damages and collects the database directories of both roles."""

    def __init__(self, settings: Settings, executor):
        self.settings = settings
        self.executor = executor

    def db_path(self, role: Role) -> str:
        return self.settings.server(role).db_path(self.settings.database)

    def _run_shell(self, command_line, host, name):
        result = self.executor.run_shell(command_line, host, user=self.settings.test_user, name=name)
        if not result.ok:
            raise ProvisioningError(
                f'{name} on {host} failed with status {result.exit_status}: {result.output.strip()}'
            )
        return result

    def init_master(self):
        """Remove the previous master and slave homes and create empty ones."""
        master = self.settings.master
        slave = self.settings.slave
        if self.settings.endpoint(Role.MASTER).is_local:
            for home in (master.home, slave.home):
                if os.path.exists(home):
                    shutil.rmtree(home)
                os.makedirs(home)
            return

        home = shlex.quote(master.home)
        self._run_shell(
            f'mkdir -p {home}; cd {home}; rm -rf {shlex.quote(self.settings.database)} derby.log; '
            'rm -f Server*.trace',
            master.host,
            'init_master',
        )

    def init_slave(self):
        """Copy the booted and frozen master database into the slave home."""
        master_db = self.db_path(Role.MASTER)
        slave_db = self.db_path(Role.SLAVE)
        master_endpoint = self.settings.endpoint(Role.MASTER)
        slave_endpoint = self.settings.endpoint(Role.SLAVE)

        if master_endpoint.is_local and slave_endpoint.is_local:
            if not os.path.isdir(master_db):
                raise ProvisioningError(f'master database {master_db} does not exist')
            if os.path.exists(slave_db):
                shutil.rmtree(slave_db)
            os.makedirs(os.path.dirname(slave_db), exist_ok=True)
            shutil.copytree(master_db, slave_db)
            logger.info(f'copied {master_db} to {slave_db}')
            return

        slave_home = shlex.quote(self.settings.slave.home)
        prepare = (
            f'mkdir -p {slave_home}; cd {slave_home}; '
            f'rm -rf {shlex.quote(self.settings.database)} derby.log; rm -f Server*.trace'
        )
        if master_endpoint.is_local:
            self._run_shell(prepare, slave_endpoint.host, 'init_slave')
            target = f'{self.settings.test_user}@{slave_endpoint.host}' if self.settings.test_user else slave_endpoint.host
            result = self.executor.run(
                ['scp', '-r', master_db, f'{target}:{self.settings.slave.home}/'], name='scp',
            )
            if not result.ok:
                raise ProvisioningError(f'copying {master_db} to {slave_endpoint.host} failed: {result.output.strip()}')
            return

        self._run_shell(
            f'{prepare}; scp -r {master_endpoint.host}:{shlex.quote(master_db)}/ .',
            slave_endpoint.host,
            'init_slave',
        )

    def destroy_slave_storage(self):
        """Remove the data segment files under a running slave."""
        slave = self.settings.slave
        segment = os.path.join(self.settings.database, 'seg0')
        logger.info(f'removing {segment} files under {slave.home} on {slave.host}')
        self._run_shell(
            f'cd {shlex.quote(slave.home)}; rm -f {shlex.quote(segment)}/*',
            slave.host,
            'destroy_slave_storage',
        )

    def collect(self, role: Role, destination):
        """Copy ``derby.log`` and the database of ``role`` into ``destination``."""
        server = self.settings.server(role)
        destination = os.path.join(destination, role.value)
        os.makedirs(destination, exist_ok=True)
        sources = [os.path.join(server.home, 'derby.log'), self.db_path(role)]

        if self.settings.endpoint(role).is_local:
            for source in sources:
                if os.path.isdir(source):
                    shutil.copytree(source, os.path.join(destination, os.path.basename(source)))
                elif os.path.exists(source):
                    shutil.copy2(source, destination)
                else:
                    logger.info(f'{source} does not exist, not collected')
            return

        user_prefix = f'{self.settings.test_user}@' if self.settings.test_user else ''
        for source in sources:
            result = self.executor.run(
                ['scp', '-r', f'{user_prefix}{server.host}:{source}', destination], name='scp',
            )
            if not result.ok:
                logger.info(f'{server.host}:{source} not collected: {result.output.strip()}')
