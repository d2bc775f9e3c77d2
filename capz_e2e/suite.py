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

"""Suite set-up and tear-down that compose the domain modules."""

from __future__ import annotations

import os
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path

from rich.panel import Panel

from capz_e2e import console, logger
from capz_e2e.auth import CredentialBundle, load_credentials
from capz_e2e.cluster import KindCluster
from capz_e2e.components import default_components, install_components
from capz_e2e.config import AzureConfig, ComponentConfig, ReadinessConfig, SuiteConfig, WatchConfig
from capz_e2e.constants import (
    DEFAULT_SCHEME,
    ENV_MANAGER_IMAGE,
    JUNIT_FILENAME_TEMPLATE,
    WATCH_DRAIN_SECONDS,
)
from capz_e2e.errors import ConfigurationError, HarnessError, SetupError, TeardownError
from capz_e2e.readiness import WorkloadRef
from capz_e2e.watcher import BackgroundWatch, start_watch


@dataclass
class SuiteContext:
    """Everything one suite run shares between set-up, tests, and tear-down.

    The cluster is written once by :func:`set_up` and only read afterwards.
    """

    suite_cfg: SuiteConfig = field(default_factory=SuiteConfig)
    azure_cfg: AzureConfig = field(default_factory=AzureConfig)
    comp_cfg: ComponentConfig = field(default_factory=ComponentConfig)
    readiness_cfg: ReadinessConfig = field(default_factory=ReadinessConfig)
    watch_cfg: WatchConfig = field(default_factory=WatchConfig)
    scheme: tuple[str, ...] = DEFAULT_SCHEME
    creds: CredentialBundle | None = None
    cluster: KindCluster | None = None
    watches: list[BackgroundWatch] = field(default_factory=list)
    stop: threading.Event = field(default_factory=threading.Event)

    @property
    def artifacts_dir(self) -> Path:
        return self.suite_cfg.artifacts_dir


def worker_index() -> int:
    """One-based index of the current parallel test worker (1 when not parallel)."""
    match = re.fullmatch(r"gw(\d+)", os.environ.get("PYTEST_XDIST_WORKER", ""))
    return int(match.group(1)) + 1 if match else 1


def junit_report_path(artifacts_dir: Path, suite_name: str, worker: int | None = None) -> Path:
    """Return ``<artifacts>/junit.<suite>.<worker>.xml``."""
    worker = worker_index() if worker is None else worker
    return Path(artifacts_dir) / JUNIT_FILENAME_TEMPLATE.format(suite=suite_name, worker=worker)


def set_up(ctx: SuiteContext) -> KindCluster:
    """Load credentials, create the management cluster, install components, start watches.

    The cluster is stored on *ctx* as soon as it exists, so :func:`tear_down`
    can delete it even when a later step fails.

    Raises:
        SetupError: If any step fails; the underlying error is chained.
    """
    try:
        console.print(Panel.fit("Loading Azure credentials", style="bold blue"))
        ctx.creds = load_credentials(ctx.suite_cfg.credentials_file)

        if not ctx.suite_cfg.manager_image:
            raise ConfigurationError(f"{ENV_MANAGER_IMAGE} not set")

        ctx.cluster = KindCluster.create(
            ctx.suite_cfg.cluster_name,
            ctx.scheme,
            ctx.suite_cfg.manager_image,
            node_image=ctx.suite_cfg.kind_node_image,
        )

        install_components(ctx.cluster, default_components(ctx.comp_cfg, ctx.creds), ctx.readiness_cfg)

        for item in ctx.watch_cfg.deployments:
            ctx.watches.append(start_watch(
                ctx.cluster, WorkloadRef.parse(item), ctx.artifacts_dir,
                ctx.watch_cfg, ctx.readiness_cfg, ctx.stop,
            ))
    except HarnessError as err:
        console.print(f"[red]\u274c {err}[/red]")
        raise SetupError(f"Suite setup failed: {err}") from err

    console.print("[green]\u2705 Management cluster is ready[/green]")
    return ctx.cluster


def _report_watches(watches: list[BackgroundWatch]) -> None:
    for watch in watches:
        report = watch.wait(timeout=WATCH_DRAIN_SECONDS)
        if watch.error is not None:
            console.print(f"[yellow]\u26a0\ufe0f  Log watch {watch.name} failed: {watch.error}[/yellow]")
        elif report is None:
            logger.info("Log watch %s still running at teardown", watch.name)
        elif not report.ready:
            console.print(f"[yellow]\u26a0\ufe0f  Log watch {watch.name} abandoned: {report.error}[/yellow]")
        else:
            for capture in report.failed:
                console.print(f"[yellow]\u26a0\ufe0f  Partial logs for {capture.pod}/{capture.container}: "
                              f"{capture.error}[/yellow]")


def tear_down(ctx: SuiteContext) -> None:
    """Stop watches and delete the management cluster.

    Safe after a partial :func:`set_up`. Watch outcomes are reported before a
    teardown failure is raised.

    Raises:
        TeardownError: If deleting the cluster fails.
    """
    ctx.stop.set()
    teardown_error: TeardownError | None = None

    if ctx.cluster is None:
        console.print("[yellow]\u2139\ufe0f  No management cluster to tear down[/yellow]")
    else:
        console.print(Panel.fit("Tearing down management cluster", style="bold blue"))
        try:
            ctx.cluster.teardown()
        except TeardownError as err:
            teardown_error = err

    _report_watches(ctx.watches)

    if teardown_error is not None:
        console.print(f"[red]\u274c {teardown_error}[/red]")
        raise teardown_error
