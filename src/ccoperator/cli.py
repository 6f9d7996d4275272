"""
Command line entry point.

Usage:
    ccoperator run --namespace kafka --workers 1
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import Any, Sequence

import structlog

from ccoperator import __version__
from ccoperator.config import Settings, get_settings
from ccoperator.core.errors import ExitCode, main_with_error_handling
from ccoperator.executor import cruise_control_executor_factory
from ccoperator.logging import configure_logging
from ccoperator.reconcile import CruiseControlOperationReconciler
from ccoperator.runner import OperationController
from ccoperator.store.kubernetes import KubernetesOperationStore

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ccoperator",
        description="Reconcile CruiseControlOperation records against Cruise Control",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Watch a namespace and reconcile operations")
    run_parser.add_argument("--namespace", help="Namespace holding the operation records")
    run_parser.add_argument("--kubeconfig", help="Path to kubeconfig (in-cluster config otherwise)")
    run_parser.add_argument("--context", help="Kubeconfig context to use")
    run_parser.add_argument("--workers", type=int, help="Number of concurrent reconcile workers")
    run_parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    run_parser.add_argument(
        "--console-logs",
        action="store_true",
        help="Human readable log output instead of JSON",
    )

    return parser


def settings_from_args(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    """Overlay command line flags on environment based settings."""
    base = base or get_settings()
    overrides: dict[str, Any] = {}
    if args.namespace:
        overrides["namespace"] = args.namespace
    if args.kubeconfig:
        overrides["kubeconfig"] = args.kubeconfig
    if args.context:
        overrides["kube_context"] = args.context
    if args.workers is not None:
        overrides["max_concurrent_reconciles"] = args.workers
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.console_logs:
        overrides["log_json"] = False
    return base.model_copy(update=overrides)


def build_controller(settings: Settings) -> OperationController:
    store_kwargs: dict[str, Any] = {"resync_interval": settings.resync_interval_seconds}
    if settings.kubeconfig:
        store_kwargs["kubeconfig"] = settings.kubeconfig
    if settings.kube_context:
        store_kwargs["context"] = settings.kube_context
    store = KubernetesOperationStore(**store_kwargs)
    reconciler = CruiseControlOperationReconciler(
        store,
        cruise_control_executor_factory(settings),
        settings=settings,
    )
    return OperationController(store, reconciler, namespace=settings.namespace, settings=settings)


async def run_controller(controller: OperationController) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    try:
        await controller.run(stop)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


@main_with_error_handling()
def run_command(args: argparse.Namespace) -> int:
    settings = settings_from_args(args)
    configure_logging(settings.log_level, json_output=settings.log_json)
    logger.info(
        "ccoperator_starting",
        version=__version__,
        namespace=settings.namespace,
        workers=settings.max_concurrent_reconciles,
    )
    asyncio.run(run_controller(build_controller(settings)))
    return ExitCode.SUCCESS


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "run":
        sys.exit(run_command(args))

    parser.print_help()
    sys.exit(ExitCode.CONFIG_ERROR)


if __name__ == "__main__":
    main()
