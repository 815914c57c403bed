"""CLI entrypoint for the Aegis operator."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from aegis_operator import __version__
from aegis_operator.config import get_settings
from aegis_operator.controller import ControllerManager, ReconcileResult, build_manager
from aegis_operator.watch import AegisWatch


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Aegis operator: watch Deployments, diagnose failures, and open healing pull requests.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--namespace",
        "-n",
        default=None,
        help="Only reconcile AegisWatch objects in this namespace (default: all namespaces)",
    )
    parser.add_argument(
        "--kubeconfig",
        type=Path,
        default=None,
        help="Path to kubeconfig (default: in-cluster, then KUBECONFIG env or ~/.kube/config)",
    )
    parser.add_argument(
        "--context",
        default=None,
        help="Kubernetes context to use",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Reconcile every AegisWatch once, print a summary, and exit",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser.parse_args(argv)


def print_results(results: list[tuple[AegisWatch, ReconcileResult | None]], console: Console | None = None) -> None:
    """Print a one-shot reconcile summary using Rich."""
    c = console or Console()
    table = Table(title="AegisWatch reconcile summary")
    table.add_column("AegisWatch")
    table.add_column("Target")
    table.add_column("Phase")
    table.add_column("Anomaly")
    table.add_column("Result")
    for aw, result in results:
        target = f"{aw.target_namespace}/{aw.target_name}"
        if result is None:
            table.add_row(aw.key, target, "-", "-", "[red]reconcile failed[/red]")
            continue
        phase = result.phase.value if result.phase is not None else "-"
        if result.outcome is not None and result.outcome.success:
            detail = f"[green]{result.outcome.pr_url}[/green]"
        else:
            detail = result.message or "-"
        table.add_row(aw.key, target, phase, result.anomaly or "-", detail)
    c.print(table)


def _install_signal_handlers(manager: ControllerManager) -> None:
    def handle(signum, frame):
        logging.getLogger("aegis_operator").info("Received %s, shutting down", signal.Signals(signum).name)
        manager.stop()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for the aegis-operator CLI."""
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )
    settings = get_settings()
    logger = logging.getLogger("aegis_operator")
    logger.setLevel(logging.DEBUG if args.verbose else settings.log_level.upper())
    # The kubernetes client logs every request at DEBUG.
    logging.getLogger("kubernetes").setLevel(logging.WARNING)

    try:
        if args.kubeconfig:
            settings.kubeconfig = args.kubeconfig
        if args.context:
            settings.context = args.context
        if args.namespace:
            settings.namespace = args.namespace

        manager = build_manager(settings)
        if args.once:
            results = manager.run_once()
            print_results(results, Console())
            return 1 if any(result is None for _, result in results) else 0

        _install_signal_handlers(manager)
        manager.run()
        return 0
    except Exception as e:
        logging.exception("Operator failed")
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
