#!/usr/bin/env python
"""Command-line interface for crypt-controller.

This module provides the process entry point: it resolves configuration
from flags and environment variables, builds the store and cluster
clients, and runs the controller until a termination signal arrives.
"""

import os
import signal
import sys
import threading

import click
from icecream import ic
from rich.markup import escape

from crypt_controller import __version__, console
from crypt_controller.cluster import Cluster
from crypt_controller.core.controller import CACHE_SYNC_TIMEOUT_SECONDS, DEFAULT_WORKERS, Controller
from crypt_controller.core.events import EventRecorder
from crypt_controller.exceptions import CacheSyncTimeoutError, ClusterConnectionError, StoreConfigError
from crypt_controller.store import STORE_TYPES, make_store


def install_signal_handlers(stop: threading.Event) -> None:
    """Set ``stop`` on the first termination signal and exit on the second.

    Args:
        stop: Shutdown signal shared with the controller.

    """

    def _handle(signum: int, frame: object) -> None:  # noqa: ARG001
        if stop.is_set():
            os._exit(1)
        console.warning(f"Received signal {signal.Signals(signum).name}, shutting down")
        stop.set()

    for signum in (signal.SIGTERM, signal.SIGINT, signal.SIGQUIT):
        signal.signal(signum, _handle)


@click.command(help="Keep Kubernetes secrets in sync with Crypt resources")
@click.option("--version", "-v", required=False, is_flag=True, help="print version")
@click.option("--debug", required=False, is_flag=True, help="print debug information")
@click.option(
    "--kubeconfig",
    envvar=["KUBECONFIGPATH", "KUBECONFIG"],
    required=False,
    help="path to a kubeconfig, only required if out-of-cluster",
)
@click.option("--master", required=False, help="address of the Kubernetes API server, overrides the kubeconfig")
@click.option("--context", required=False, help="kube context to use")
@click.option("--select", required=False, is_flag=True, default=False, help="prompt for context select")
@click.option(
    "--store-type",
    envvar="STORE_TYPE",
    type=click.Choice(STORE_TYPES, case_sensitive=False),
    required=False,
    help="secret store backend",
)
@click.option("--store-config", envvar="STORE_CONFIG", required=False, help="path to the store config file")
@click.option(
    "--workers",
    envvar="CRYPT_WORKERS",
    type=click.IntRange(min=1),
    default=DEFAULT_WORKERS,
    show_default=True,
    help="number of parallel workers",
)
@click.option(
    "--sync-timeout",
    type=click.IntRange(min=1),
    default=CACHE_SYNC_TIMEOUT_SECONDS,
    show_default=True,
    help="seconds to wait for the initial cache sync",
)
@click.option(
    "--cascade-delete",
    envvar="CRYPT_CASCADE_DELETE",
    required=False,
    is_flag=True,
    help="delete target secrets when their Crypt is deleted",
)
def cli(
    debug: bool,
    kubeconfig: str | None,
    master: str | None,
    context: str | None,
    select: bool,
    store_type: str | None,
    store_config: str | None,
    workers: int,
    sync_timeout: int,
    cascade_delete: bool,
    version: bool,
) -> None:
    """Process CLI arguments and run the controller.

    Args:
        debug: Enable debug output.
        kubeconfig: Path to a kubeconfig.
        master: API server address override.
        context: Kube context to use.
        select: Prompt for Kubernetes context selection.
        store_type: Secret store backend name.
        store_config: Path to the store config file.
        workers: Number of worker threads.
        sync_timeout: Seconds to wait for the initial cache sync.
        cascade_delete: Delete target secrets together with their Crypt.
        version: Print version and exit.

    """
    if not debug:
        ic.disable()

    if version:
        click.echo(__version__)
        return

    if not store_type:
        raise click.UsageError("--store-type (or STORE_TYPE) is required")

    try:
        store = make_store(store_type, store_config)
    except StoreConfigError as e:
        raise click.ClickException(f"Could not initialize store: {e}") from None
    console.info(f"Using {console.highlight(store_type.lower())} store")

    try:
        cluster = Cluster(kubeconfig=kubeconfig, context=context, master=master, select_context=select)
        cluster.ensure_crypt_api()
    except ClusterConnectionError as e:
        console.error(f"Cluster connection failed: {escape(str(e))}")
        sys.exit(1)
    ic(cluster)

    mirrors = [cluster.namespace_mirror(), cluster.secret_mirror(), cluster.crypt_mirror()]
    controller = Controller(
        cluster.core_api,
        *mirrors,
        store=store,
        recorder=EventRecorder(cluster.core_api),
        cascade_delete=cascade_delete,
    )

    console.summary_panel(
        "Crypt controller",
        {
            "Context": escape(cluster.context),
            "Store": store_type.lower(),
            "Workers": str(workers),
            "Cascade delete": "yes" if cascade_delete else "no",
        },
    )

    stop = threading.Event()
    install_signal_handlers(stop)

    for mirror in mirrors:
        mirror.start()
    try:
        controller.run(workers, stop, sync_timeout=sync_timeout)
    except CacheSyncTimeoutError as e:
        console.error(str(e))
        sys.exit(1)
    finally:
        for mirror in mirrors:
            mirror.stop()

    console.success("Shut down")


if __name__ == "__main__":
    cli()
