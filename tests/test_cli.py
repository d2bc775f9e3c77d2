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


from __future__ import annotations

import io
from types import SimpleNamespace

import pytest
from rich.console import Console
from typer.testing import CliRunner

from capz_e2e import cli
from capz_e2e.errors import HarnessError, ProvisioningError, SetupError
from capz_e2e.readiness import WorkloadRef, rolled_out
from capz_e2e.watcher import LogCapture, WatchReport

runner = CliRunner()


class FakeCluster:
    kubeconfig_path = "/tmp/kubeconfig-mgmt"

    def __init__(self, name="mgmt"):
        self.name = name
        self.torn_down = False

    def client(self):
        return object()

    def teardown(self):
        self.torn_down = True


@pytest.fixture
def attached(monkeypatch):
    clusters = []

    def _attach(name, *args, **kwargs):
        clusters.append(FakeCluster(name))
        return clusters[-1]

    monkeypatch.setattr(cli.KindCluster, "attach", _attach)
    return clusters


def test_up_overrides_manager_image(monkeypatch):
    seen = []

    def _set_up(ctx):
        seen.append(ctx)
        return FakeCluster()

    monkeypatch.setattr(cli, "set_up", _set_up)
    result = runner.invoke(cli.app, ["up", "--cluster-name", "dev", "--manager-image", "capz-manager:pr-1"])

    assert result.exit_code == 0, result.output
    ctx = seen[0]
    assert ctx.suite_cfg.cluster_name == "dev"
    assert ctx.suite_cfg.manager_image == "capz-manager:pr-1"
    assert ctx.watch_cfg.deployments == []


def test_up_failure_names_leftover_cluster(monkeypatch):
    out = io.StringIO()
    monkeypatch.setattr(cli, "console", Console(file=out, width=200))

    def _set_up(ctx):
        ctx.cluster = FakeCluster("dev")
        raise SetupError("Suite setup failed: CAPZ controller not ready")

    monkeypatch.setattr(cli, "set_up", _set_up)
    result = runner.invoke(cli.app, ["up", "--cluster-name", "dev", "--manager-image", "img:1"])

    assert isinstance(result.exception, SetupError)
    assert "capz-e2e down --cluster-name dev" in out.getvalue()


def test_up_failure_before_cluster(monkeypatch):
    out = io.StringIO()
    monkeypatch.setattr(cli, "console", Console(file=out, width=200))

    def _set_up(ctx):
        raise SetupError("Suite setup failed: MANAGER_IMAGE not set")

    monkeypatch.setattr(cli, "set_up", _set_up)
    result = runner.invoke(cli.app, ["up"])

    assert isinstance(result.exception, SetupError)
    assert "capz-e2e down" not in out.getvalue()


def test_down_deletes_attached_cluster(attached):
    result = runner.invoke(cli.app, ["down", "--cluster-name", "dev"])
    assert result.exit_code == 0, result.output
    assert attached[0].name == "dev"
    assert attached[0].torn_down


def test_down_without_cluster(monkeypatch):
    def _attach(name, *args, **kwargs):
        raise ProvisioningError(f"kind cluster '{name}' not found")

    monkeypatch.setattr(cli.KindCluster, "attach", _attach)
    result = runner.invoke(cli.app, ["down"])
    assert result.exit_code == 0, result.output


def test_wait_passes_overrides(attached, monkeypatch):
    waited = []
    monkeypatch.setattr(cli, "AppsV1Api", lambda _client: None)
    monkeypatch.setattr(cli, "wait_for_deployment",
                        lambda api, ref, cfg, condition: waited.append((ref, cfg, condition)))

    result = runner.invoke(cli.app, ["wait", "capi-system/capi-controller-manager",
                                     "--timeout", "30", "--interval", "2", "--rollout"])

    assert result.exit_code == 0, result.output
    ref, cfg, condition = waited[0]
    assert ref == WorkloadRef("capi-system", "capi-controller-manager")
    assert (cfg.timeout, cfg.interval) == (30, 2)
    assert condition is rolled_out


def test_wait_rejects_malformed_ref(attached):
    result = runner.invoke(cli.app, ["wait", "capi-controller-manager"])
    assert result.exit_code == 2
    assert attached == []


def test_logs_not_ready_fails(attached, monkeypatch, tmp_path):
    ref = WorkloadRef("capz-system", "capz-controller-manager")
    report = WatchReport(ref, ready=False, error=RuntimeError("not ready"))
    monkeypatch.setattr(cli, "watch_deployment", lambda *args, **kwargs: report)

    result = runner.invoke(cli.app, ["logs", str(ref), "--artifacts", str(tmp_path)])

    assert isinstance(result.exception, HarnessError)


def test_logs_reports_captures(attached, monkeypatch, tmp_path):
    ref = WorkloadRef("capz-system", "capz-controller-manager")
    calls = []

    def _watch(cluster, ref, artifacts_dir, **kwargs):
        calls.append(SimpleNamespace(ref=ref, artifacts_dir=artifacts_dir, **kwargs))
        return WatchReport(ref, captures=[
            LogCapture("pod-a", "manager", tmp_path / "manager.log", bytes_copied=12),
            LogCapture("pod-b", "manager", tmp_path / "b.log", error=OSError("[disk] full")),
        ])

    monkeypatch.setattr(cli, "watch_deployment", _watch)
    result = runner.invoke(cli.app, ["logs", str(ref), "--artifacts", str(tmp_path), "--container", "proxy"])

    assert result.exit_code == 0, result.output
    assert calls[0].artifacts_dir == tmp_path
    assert calls[0].container == "proxy"


def test_main_exits_on_harness_error(monkeypatch):
    def _app():
        raise HarnessError("boom")

    monkeypatch.setattr(cli, "app", _app)
    with pytest.raises(SystemExit) as exc_info:
        cli.main()
    assert exc_info.value.code == 1
