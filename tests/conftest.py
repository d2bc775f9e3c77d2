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


"""Shared fakes for the kubernetes APIs, log streams, and the clock."""

from __future__ import annotations

import os
from types import SimpleNamespace

import pytest
from kubernetes import client as k8s

_ENV_VARS = (
    "ARTIFACTS",
    "MANAGER_IMAGE",
    "AZURE_CREDENTIALS",
    "AZURE_TENANT_ID",
    "AZURE_SUBSCRIPTION_ID",
    "AZURE_CLIENT_ID",
    "AZURE_CLIENT_SECRET",
    "PYTEST_XDIST_WORKER",
)

AZURE_ENV = {
    "AZURE_TENANT_ID": "tenant",
    "AZURE_SUBSCRIPTION_ID": "subscription",
    "AZURE_CLIENT_ID": "client",
    "AZURE_CLIENT_SECRET": "s3cret",
}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of configuration and credential loading."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("E2E_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def azure_env(monkeypatch):
    for name, value in AZURE_ENV.items():
        monkeypatch.setenv(name, value)
    return AZURE_ENV


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_deployment(
    name: str = "demo",
    namespace: str = "default",
    ready: int | None = 0,
    replicas: int = 1,
    containers: tuple[str, ...] = ("manager",),
    match_labels: dict | None = None,
) -> k8s.V1Deployment:
    return k8s.V1Deployment(
        metadata=k8s.V1ObjectMeta(name=name, namespace=namespace, generation=1),
        spec=k8s.V1DeploymentSpec(
            replicas=replicas,
            selector=k8s.V1LabelSelector(match_labels=match_labels or {"control-plane": "controller-manager"}),
            template=k8s.V1PodTemplateSpec(
                spec=k8s.V1PodSpec(containers=[k8s.V1Container(name=c) for c in containers]),
            ),
        ),
        status=k8s.V1DeploymentStatus(
            ready_replicas=ready,
            replicas=replicas,
            updated_replicas=replicas,
            observed_generation=1,
        ),
    )


def make_pod(name: str, phase: str = "Running") -> k8s.V1Pod:
    return k8s.V1Pod(metadata=k8s.V1ObjectMeta(name=name), status=k8s.V1PodStatus(phase=phase))


class FakeStream:
    """Stand-in for the urllib3 response returned with ``_preload_content=False``."""

    def __init__(self, chunks: list[bytes], error: BaseException | None = None) -> None:
        self.chunks = chunks
        self.error = error
        self.closed = False
        self.released = False

    def stream(self, amt: int):
        yield from self.chunks
        if self.error is not None:
            raise self.error

    def close(self) -> None:
        self.closed = True

    def release_conn(self) -> None:
        self.released = True


class FakeAppsApi:
    """Serves one deployment object, or raises *error*."""

    def __init__(self, deployment: k8s.V1Deployment, error: BaseException | None = None) -> None:
        self.deployment = deployment
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def read_namespaced_deployment(self, name: str, namespace: str) -> k8s.V1Deployment:
        self.calls.append((namespace, name))
        if self.error is not None:
            raise self.error
        return self.deployment


class FakeCoreApi:
    def __init__(self, pods: list[k8s.V1Pod], streams: dict) -> None:
        self.pods = pods
        self.streams = streams
        self.selectors: list[str] = []
        self.log_requests: list[dict] = []

    def list_namespaced_pod(self, namespace: str, label_selector: str = "") -> SimpleNamespace:
        self.selectors.append(label_selector)
        return SimpleNamespace(items=self.pods)

    def read_namespaced_pod_log(self, name: str, namespace: str, **kwargs):
        self.log_requests.append({"pod": name, "namespace": namespace, **kwargs})
        stream = self.streams[(name, kwargs["container"])]
        if isinstance(stream, BaseException):
            raise stream
        return stream


class FakeCluster:
    """Cluster handle exposing sentinel clients."""

    def __init__(self, core_api: FakeCoreApi) -> None:
        self.core_api = core_api
        self.api_client = object()

    def client(self):
        return self.api_client

    def raw_client(self):
        return self.core_api
