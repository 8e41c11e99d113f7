"""CLI entrypoint for the kuber controller."""

from __future__ import annotations

import signal
import sys

import click
import structlog
from rich.console import Console

from . import __version__
from .config import ControllerSettings
from .controllers import setup_controllers
from .kube.client import KubernetesResourceClient
from .observability import configure_logging
from .runtime.leader import LeaderElector
from .runtime.manager import Manager, ManagerError

console = Console()


@click.group()
def cli():
    """Multi-tenancy control plane for Kubernetes."""
    pass


@cli.command()
@click.option(
    "--kubeconfig",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Kubeconfig file (in-cluster config is used when omitted)",
)
@click.option(
    "--leader-elect/--no-leader-elect",
    default=None,
    help="Hold a Lease so only one replica reconciles",
)
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Workers per controller")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Log level",
)
def run(
    kubeconfig: str | None,
    leader_elect: bool | None,
    workers: int | None,
    log_level: str | None,
):
    """Run the controllers until SIGINT or SIGTERM."""
    overrides = {
        "kubeconfig": kubeconfig,
        "leader_election": leader_elect,
        "workers": workers,
        "log_level": log_level,
    }
    settings = ControllerSettings(
        **{key: value for key, value in overrides.items() if value is not None}
    )
    configure_logging(settings.service_name, settings.log_level, settings.log_json)
    logger = structlog.get_logger(__name__)

    try:
        api = KubernetesResourceClient.from_config(
            settings.kubeconfig, settings.context, request_timeout=settings.request_timeout
        )
    except Exception as exc:
        logger.error("controller.config_failed", error=str(exc))
        sys.exit(1)

    elector = None
    if settings.leader_election:
        elector = LeaderElector(
            api,
            settings.leader_election_id,
            settings.leader_election_namespace,
            lease_duration=settings.lease_duration,
            renew_deadline=settings.renew_deadline,
            retry_period=settings.retry_period,
        )
    manager = Manager.from_settings(api, settings, elector=elector)
    setup_controllers(manager, settings)

    def _shutdown(signum, frame):
        logger.info("controller.signal", signal=signal.Signals(signum).name)
        manager.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    logger.info(
        "controller.starting",
        version=__version__,
        leader_election=settings.leader_election,
        workers=settings.workers,
    )
    try:
        manager.run()
    except ManagerError as exc:
        logger.error("controller.failed", error=str(exc))
        sys.exit(1)
    logger.info("controller.stopped")


@cli.command()
def version():
    """Print the controller version."""
    console.print(f"kuber-controller [bold]{__version__}[/bold]")


def main():
    cli()


if __name__ == "__main__":
    main()
