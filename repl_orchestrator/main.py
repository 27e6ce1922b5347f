#!/usr/bin/env python3

import argparse
import logging
import sys
import time

from . import control
from . import sql_states
from .config import Role, Settings
from .lifecycle import LifecycleController
from .monitoring import StateMonitor
from .session import ReplicationSession
from .utils import GracefulKiller


def set_logging_config(tags, log_level_str=None):
    """Configure logging to output only to stderr."""
    handlers = [logging.StreamHandler(sys.stderr)]

    log_levels = {
        'critical': logging.CRITICAL,
        'error': logging.ERROR,
        'warning': logging.WARNING,
        'info': logging.INFO,
        'debug': logging.DEBUG,
    }

    log_level = log_levels.get(log_level_str)
    if log_level is None:
        logging.warning(f'Unknown log level {log_level_str}, setting info')
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format=f'[{tags} %(asctime)s %(levelname)8s] %(message)s',
        handlers=handlers,
    )


def get_endpoint(args, config: Settings):
    return config.endpoint(Role(args.role))


def run_replication(args, config: Settings):
    set_logging_config('run', log_level_str=config.log_level)
    controller = LifecycleController(ReplicationSession.from_settings(config))
    try:
        report = controller.run_replication(args.tuples)
    finally:
        controller.teardown()
    if report.stopped_at:
        logging.info(f'run stopped at checkpoint {report.stopped_at}')
    else:
        logging.info(
            f'run complete: {report.inserted} rows inserted, '
            f'master {report.master_rows}, slave {report.slave_rows}'
        )


def run_start_server(args, config: Settings):
    endpoint = get_endpoint(args, config)
    set_logging_config(f'server {endpoint.role.value}', log_level_str=config.log_level)
    session = ReplicationSession.from_settings(config)
    attempt = session.supervisor.start_server(endpoint)
    killer = GracefulKiller()
    while not killer.kill_now and not attempt.done():
        time.sleep(1)
    if not attempt.done():
        session.supervisor.stop_server(endpoint)
    session.teardown()


def run_stop_server(args, config: Settings):
    endpoint = get_endpoint(args, config)
    set_logging_config(f'stop {endpoint.role.value}', log_level_str=config.log_level)
    ReplicationSession.from_settings(config).supervisor.stop_server(endpoint)


def run_kill(args, config: Settings):
    endpoint = get_endpoint(args, config)
    set_logging_config(f'kill {endpoint.role.value}', log_level_str=config.log_level)
    ReplicationSession.from_settings(config).supervisor.kill_server(endpoint)


def run_find_pid(args, config: Settings):
    endpoint = get_endpoint(args, config)
    set_logging_config(f'pid {endpoint.role.value}', log_level_str=config.log_level)
    print(ReplicationSession.from_settings(config).supervisor.find_pid(endpoint), flush=True)


def run_failover(args, config: Settings):
    endpoint = get_endpoint(args, config)
    set_logging_config('failover', log_level_str=config.log_level)
    session = ReplicationSession.from_settings(config)
    controller = LifecycleController(session)
    controller.expect(control.failover(endpoint), sql_states.REPLICATION_FAILOVER_SUCCESSFUL)
    controller.await_promotion(endpoint)
    logging.info(f'{session.slave} promoted')


def run_verify(args, config: Settings):
    endpoint = get_endpoint(args, config)
    set_logging_config(f'verify {endpoint.role.value}', log_level_str=config.log_level)
    session = ReplicationSession.from_settings(config)
    expected = config.load.tuples if args.tuples is None else args.tuples
    session.verifier.verify(session.database_url(endpoint), expected)


def run_monitoring(args, config: Settings):
    set_logging_config('monitor', log_level_str=config.log_level)
    session = ReplicationSession.from_settings(config)
    monitoring = StateMonitor(config, session.connector, session.database_url)
    monitoring.run()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "mode", help="run mode",
        type=str,
        choices=["run", "start_server", "stop_server", "kill", "find_pid", "failover", "verify", "monitoring"])
    parser.add_argument("--config", help="config file path", default='config.yaml', type=str)
    parser.add_argument(
        "--role", help="endpoint the command addresses", default='master', type=str,
        choices=[Role.MASTER.value, Role.SLAVE.value],
    )
    parser.add_argument("--tuples", help="rows to insert or expect, overrides load.tuples", type=int, default=None)
    args = parser.parse_args()

    config = Settings.from_file(args.config)

    if args.mode == 'run':
        run_replication(args, config)
    if args.mode == 'start_server':
        run_start_server(args, config)
    if args.mode == 'stop_server':
        run_stop_server(args, config)
    if args.mode == 'kill':
        run_kill(args, config)
    if args.mode == 'find_pid':
        run_find_pid(args, config)
    if args.mode == 'failover':
        run_failover(args, config)
    if args.mode == 'verify':
        run_verify(args, config)
    if args.mode == 'monitoring':
        run_monitoring(args, config)


if __name__ == '__main__':
    main()
