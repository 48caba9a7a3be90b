"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Main module for kubemigrate.

"""
from collections.abc import Callable, Sequence
from kubemigrate.common.exceptions import MigrateException
from kubemigrate.common.kube import KubeClient
from kubemigrate.common.kube.api import ApiKubeClient
from kubemigrate.common.nodetool import Nodetool
from kubemigrate.config import load_config, MigrateConfig
from kubemigrate.migrate.base import run_steps, Step, StepsContext
from kubemigrate.migrate.cluster import CreateTopologySnapshotStep, format_topology, get_init_steps
from kubemigrate.migrate.finisher import get_commit_steps
from kubemigrate.migrate.leader import LeaderLock
from kubemigrate.migrate.node import get_node_steps
from typing import Any

import argparse
import logging
import logging.config
import os
import sentry_sdk
import sys
import time

logger = logging.getLogger(__name__)


def configure_logging(log_level: str | int) -> None:
    if isinstance(log_level, str):
        log_level = logging.getLevelName(log_level.upper())
    # Debug output of the API clients would include the configuration we ship around
    client_log_level = max(log_level, logging.INFO)
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": "%(levelname)s\t%(name)s\t%(message)s"},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "stream": "ext://sys.stderr",
                },
            },
            "loggers": {
                "": {"handlers": ["default"], "level": log_level},
                "kubernetes": {"level": client_log_level},
                "urllib3": {"level": client_log_level},
            },
        }
    )


def init_sentry(config: MigrateConfig) -> None:
    sentry_dsn = os.environ.get("SENTRY_DSN", config.sentry_dsn)
    if sentry_dsn:
        sentry_sdk.init(dsn=sentry_dsn)  # pylint: disable=abstract-class-instantiated


def create_kube_client(args, config: MigrateConfig) -> KubeClient:
    return ApiKubeClient.from_config(
        namespace=args.namespace or config.namespace, kubeconfig=config.kubeconfig, context=config.context
    )


def _print_step(i: int, count: int, step: Step[Any]) -> None:
    print(f"  [{i}/{count}] {step.__class__.__name__}")


def run_workflow(
    name: str, kube: KubeClient, steps: Sequence[Step[Any]], *, lock: LeaderLock | None = None
) -> StepsContext | None:
    """Run the steps while holding the migration lease; None on failure"""
    print(f"Starting {name}..")
    start = time.monotonic()
    lock = LeaderLock(kube) if lock is None else lock
    try:
        with lock.held() as lease:
            context = run_steps(steps, kube, lease=lease, on_step=_print_step)
    except MigrateException as ex:
        logger.error("%s failed: %s", name, ex)
        print(f".. which failed: {ex}")
        return None
    elapsed = time.monotonic() - start
    print(f".. which took {elapsed:.1f} seconds")
    return context


def _run_init(args, config: MigrateConfig) -> bool:
    kube = create_kube_client(args, config)
    nodetool = Nodetool(config.get_nodetool_command())
    context = run_workflow("init", kube, get_init_steps(config=config, nodetool=nodetool))
    if context is None:
        return False
    print(format_topology(context.get_result(CreateTopologySnapshotStep)))
    print("Review the stored configuration before migrating the nodes")
    return True


def _run_add(args, config: MigrateConfig) -> bool:
    kube = create_kube_client(args, config)
    nodetool = Nodetool(config.get_nodetool_command())
    return run_workflow("node migration", kube, get_node_steps(config=config, nodetool=nodetool)) is not None


def _run_commit(args, config: MigrateConfig) -> bool:
    kube = create_kube_client(args, config)
    return run_workflow("commit", kube, get_commit_steps(config=config, datacenter=args.datacenter)) is not None


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="kubemigrate - move running Cassandra nodes into Kubernetes")
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        help="YAML configuration file to use",
        default=os.environ.get("KUBEMIGRATE_CONFIG"),
    )
    parser.add_argument("--log-level", type=str, help="Log level (default: from configuration, INFO)")
    parser.add_argument("-n", "--namespace", type=str, help="Namespace to migrate to (default: from configuration)")
    subparsers = parser.add_subparsers(title="Commands")

    p_init = subparsers.add_parser("init", help="Capture cluster topology and configuration")
    p_init.set_defaults(func=_run_init)

    p_add = subparsers.add_parser("add", help="Migrate the local node into a pod")
    p_add.set_defaults(func=_run_add)

    p_commit = subparsers.add_parser("commit", help="Create the CassandraDatacenter for the migrated nodes")
    p_commit.add_argument("datacenter", help="Datacenter to commit")
    p_commit.set_defaults(func=_run_commit)
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = create_parser()
    args = parser.parse_args(argv)
    try:
        func: Callable[[Any, MigrateConfig], bool] = args.func
    except AttributeError:
        parser.print_help(sys.stderr)
        sys.exit(1)
    config = load_config(args.config)
    configure_logging(args.log_level or config.log_level)
    init_sentry(config)
    success = func(args, config)
    if not success:
        sys.exit(1)


if __name__ == "__main__":
    main()
