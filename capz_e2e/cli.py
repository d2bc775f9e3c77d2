# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */


"""
cli.py - CLI for the CAPZ E2E management cluster.

Subcommands:
    up      Create the management cluster and install components
    down    Delete the management cluster
    wait    Wait for a deployment to become ready
    logs    Stream a deployment's controller logs into the artifacts directory

Examples:
    # Create and provision the management cluster
    MANAGER_IMAGE=capz-manager:dev capz-e2e up

    # Follow the CAPZ controller logs
    capz-e2e logs capz-system/capz-controller-manager

    # Delete the cluster
    capz-e2e down
"""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

import typer
from kubernetes.client import AppsV1Api
from rich.markup import escape

from capz_e2e import console
from capz_e2e.cluster import KindCluster
from capz_e2e.config import ReadinessConfig, SuiteConfig, WatchConfig
from capz_e2e.errors import HarnessError, ProvisioningError, SetupError
from capz_e2e.readiness import WorkloadRef, rolled_out, wait_for_deployment
from capz_e2e.suite import SuiteContext, set_up
from capz_e2e.watcher import watch_deployment

app = typer.Typer(
    help="Management cluster lifecycle for CAPZ E2E testing.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(threadName)s %(message)s",
        datefmt="%H:%M:%S",
    )


def _parse_ref(value: str) -> WorkloadRef:
    try:
        return WorkloadRef.parse(value)
    except ValueError as err:
        raise typer.BadParameter(str(err)) from err


def _suite_config(cluster_name: str | None) -> SuiteConfig:
    suite_cfg = SuiteConfig()
    if cluster_name is not None:
        suite_cfg = suite_cfg.model_copy(update={"cluster_name": cluster_name})
    return suite_cfg


@app.command()
def up(
    cluster_name: str | None = typer.Option(None, "--cluster-name", help="kind cluster name"),
    manager_image: str | None = typer.Option(None, "--manager-image", help="Overrides MANAGER_IMAGE"),
) -> None:
    """Create the management cluster and install Cluster API components."""
    suite_cfg = _suite_config(cluster_name)
    if manager_image is not None:
        suite_cfg = suite_cfg.model_copy(update={"manager_image": manager_image})
    ctx = SuiteContext(suite_cfg=suite_cfg, watch_cfg=WatchConfig(deployments=[]))
    try:
        cluster = set_up(ctx)
    except SetupError:
        if ctx.cluster is not None:
            console.print(f"[yellow]\u26a0\ufe0f  Cluster '{ctx.cluster.name}' was left running; "
                          f"delete it with: capz-e2e down --cluster-name {ctx.cluster.name}[/yellow]")
        raise
    console.print(f"[green]  \u2713 kubeconfig: {cluster.kubeconfig_path}[/green]")


@app.command()
def down(
    cluster_name: str | None = typer.Option(None, "--cluster-name", help="kind cluster name"),
) -> None:
    """Delete the management cluster."""
    suite_cfg = _suite_config(cluster_name)
    try:
        cluster = KindCluster.attach(suite_cfg.cluster_name)
    except ProvisioningError as err:
        console.print(f"[yellow]\u26a0\ufe0f  {err}; nothing to delete[/yellow]")
        return
    cluster.teardown()


@app.command()
def wait(
    deployment: str = typer.Argument(..., help="namespace/name"),
    cluster_name: str | None = typer.Option(None, "--cluster-name", help="kind cluster name"),
    timeout: float | None = typer.Option(None, "--timeout", help="Seconds to wait"),
    interval: float | None = typer.Option(None, "--interval", help="Seconds between polls"),
    rollout: bool = typer.Option(False, "--rollout", help="Require every replica updated and ready"),
) -> None:
    """Wait for a deployment to become ready."""
    ref = _parse_ref(deployment)
    readiness_cfg = ReadinessConfig()
    overrides: dict = {}
    if timeout is not None:
        overrides["timeout"] = timeout
    if interval is not None:
        overrides["interval"] = interval
    if overrides:
        readiness_cfg = readiness_cfg.model_copy(update=overrides)

    cluster = KindCluster.attach(_suite_config(cluster_name).cluster_name)
    wait_for_deployment(AppsV1Api(cluster.client()), ref, readiness_cfg, rolled_out if rollout else None)
    console.print(f"[green]\u2705 Deployment {ref} is ready[/green]")


@app.command()
def logs(
    deployment: str = typer.Argument(..., help="namespace/name"),
    cluster_name: str | None = typer.Option(None, "--cluster-name", help="kind cluster name"),
    container: str | None = typer.Option(None, "--container", help="Container to capture"),
    artifacts: Path | None = typer.Option(None, "--artifacts", help="Overrides ARTIFACTS"),
) -> None:
    """Stream a deployment's logs until its pods go away (Ctrl-C to stop)."""
    ref = _parse_ref(deployment)
    suite_cfg = _suite_config(cluster_name)
    watch_cfg = WatchConfig()
    artifacts_dir = artifacts if artifacts is not None else suite_cfg.artifacts_dir

    cluster = KindCluster.attach(suite_cfg.cluster_name)
    stop = threading.Event()
    try:
        report = watch_deployment(
            cluster, ref, artifacts_dir,
            container=container or watch_cfg.container,
            readiness_cfg=ReadinessConfig(),
            stop=stop,
            max_workers=watch_cfg.max_workers,
        )
    except KeyboardInterrupt:
        stop.set()
        console.print("[yellow]\u26a0\ufe0f  Interrupted[/yellow]")
        return

    for capture in report.captures:
        status = "[green]\u2713" if capture.ok else f"[red]\u2717 {escape(str(capture.error))}"
        console.print(f"{status} {capture.path} ({capture.bytes_copied} bytes)[/]")
    if not report.ready:
        raise HarnessError(str(report.error))


def main() -> None:
    try:
        app()
    except HarnessError as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
