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

"""kind management cluster lifecycle: create, attach, clients, teardown."""

from __future__ import annotations

import enum
import tempfile
import threading
from collections.abc import Iterable
from pathlib import Path

import docker
import sh
import yaml
from kubernetes import config as kube_config
from kubernetes.client import ApiClient, CoreV1Api
from rich.panel import Panel

from capz_e2e import console, logger
from capz_e2e.constants import DEFAULT_SCHEME
from capz_e2e.errors import ClusterStateError, ProvisioningError, TeardownError


class ClusterState(enum.Enum):
    PENDING = "pending"
    CREATED = "created"
    TORN_DOWN = "torn_down"


def _kind(*args: str, **kwargs):
    return sh.kind(*args, **kwargs)


def _new_api_client(kubeconfig: dict) -> ApiClient:
    return kube_config.new_client_from_config_dict(kubeconfig)


def _stderr(err: sh.ErrorReturnCode) -> str:
    return err.stderr.decode(errors="replace").strip()


def ensure_local_image(image: str) -> None:
    """Make sure *image* is present in the local Docker daemon, pulling it if not.

    Args:
        image: Image reference to load into the kind cluster.

    Raises:
        ProvisioningError: If Docker is unreachable or the pull fails.
    """
    try:
        docker_client = docker.from_env()
    except docker.errors.DockerException as err:
        raise ProvisioningError(f"Failed to connect to Docker: {err}") from err

    try:
        docker_client.images.get(image)
    except docker.errors.ImageNotFound:
        console.print(f"[yellow]\u2139\ufe0f  Image {image} not found locally, pulling...[/yellow]")
        try:
            docker_client.images.pull(image)
        except docker.errors.APIError as err:
            raise ProvisioningError(f"Failed to pull image {image}: {err}") from err
    except docker.errors.APIError as err:
        raise ProvisioningError(f"Docker API error inspecting {image}: {err}") from err
    finally:
        docker_client.close()


class KindCluster:
    """Handle on one ephemeral kind cluster.

    The handle moves from ``pending`` to ``created`` once, and from
    ``created`` to ``torn_down`` once. Clients are only available while
    ``created``.
    """

    def __init__(
        self,
        name: str,
        scheme: Iterable[str] = DEFAULT_SCHEME,
        image: str | None = None,
        *,
        kubeconfig_dir: Path | None = None,
    ) -> None:
        self.name = name
        self.scheme = tuple(scheme)
        self.image = image
        self._kubeconfig_dir = kubeconfig_dir
        self._kubeconfig_path: Path | None = None
        self._api_client: ApiClient | None = None
        self._raw_api_client: ApiClient | None = None
        self._state = ClusterState.PENDING
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"KindCluster(name={self.name!r}, state={self._state.value})"

    @property
    def state(self) -> ClusterState:
        return self._state

    @property
    def kubeconfig_path(self) -> Path:
        self._require_created()
        return self._kubeconfig_path

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        name: str,
        scheme: Iterable[str] = DEFAULT_SCHEME,
        image: str | None = None,
        *,
        node_image: str | None = None,
        kubeconfig_dir: Path | None = None,
    ) -> KindCluster:
        """Create a kind cluster, load *image* into it and build clients.

        If anything fails after the kind cluster exists, it is deleted again
        before the error is raised.

        Raises:
            ProvisioningError: If any provisioning step fails.
        """
        cluster = cls(name, scheme, image, kubeconfig_dir=kubeconfig_dir)
        console.print(Panel.fit(f"Creating kind cluster '{name}'", style="bold blue"))

        args = ["create", "cluster", "--name", name, "--wait", "5m"]
        if node_image:
            args += ["--image", node_image]
        try:
            _kind(*args)
        except sh.ErrorReturnCode as err:
            raise ProvisioningError(f"Failed to create kind cluster '{name}': {_stderr(err)}") from err
        cluster._state = ClusterState.CREATED

        try:
            if image:
                cluster._load_image(image)
            cluster._connect()
        except Exception:
            try:
                cluster.teardown()
            except TeardownError as cleanup_err:
                logger.error("Cleanup after failed provisioning also failed: %s", cleanup_err)
            raise

        console.print(f"[green]\u2705 Cluster '{name}' created[/green]")
        return cluster

    @classmethod
    def attach(
        cls,
        name: str,
        scheme: Iterable[str] = DEFAULT_SCHEME,
        *,
        kubeconfig_dir: Path | None = None,
    ) -> KindCluster:
        """Bind a handle to an existing kind cluster.

        Raises:
            ProvisioningError: If no kind cluster with that name exists.
        """
        try:
            existing = str(_kind("get", "clusters")).split()
        except sh.ErrorReturnCode as err:
            raise ProvisioningError(f"Failed to list kind clusters: {_stderr(err)}") from err
        if name not in existing:
            raise ProvisioningError(f"kind cluster '{name}' not found")
        cluster = cls(name, scheme, kubeconfig_dir=kubeconfig_dir)
        cluster._state = ClusterState.CREATED
        cluster._connect()
        return cluster

    def teardown(self) -> None:
        """Delete the kind cluster and release clients.

        Calling this on a handle that is already torn down (or was never
        created) returns without doing anything.

        Raises:
            TeardownError: If ``kind delete cluster`` fails.
        """
        with self._lock:
            if self._state is ClusterState.TORN_DOWN:
                logger.info("Cluster '%s' already torn down", self.name)
                return
            if self._state is ClusterState.PENDING:
                self._state = ClusterState.TORN_DOWN
                return

            console.print(f"[yellow]\u2139\ufe0f  Deleting kind cluster '{self.name}'...[/yellow]")
            try:
                _kind("delete", "cluster", "--name", self.name)
            except sh.ErrorReturnCode as err:
                raise TeardownError(f"Failed to delete kind cluster '{self.name}': {_stderr(err)}") from err
            self._close_clients()
            if self._kubeconfig_path is not None:
                self._kubeconfig_path.unlink(missing_ok=True)
            self._state = ClusterState.TORN_DOWN
            console.print(f"[green]\u2705 Cluster '{self.name}' deleted[/green]")

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def client(self) -> ApiClient:
        """Typed API client for the cluster."""
        self._require_created()
        return self._api_client

    def raw_client(self) -> CoreV1Api:
        """Core API bound to a dedicated connection pool, used for log streams."""
        self._require_created()
        return CoreV1Api(self._raw_api_client)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_created(self) -> None:
        if self._state is not ClusterState.CREATED:
            raise ClusterStateError(f"Cluster '{self.name}' is {self._state.value}, not created")

    def _load_image(self, image: str) -> None:
        ensure_local_image(image)
        console.print(f"[yellow]\u2139\ufe0f  Loading {image} into '{self.name}'...[/yellow]")
        try:
            _kind("load", "docker-image", image, "--name", self.name)
        except sh.ErrorReturnCode as err:
            raise ProvisioningError(f"Failed to load image {image}: {_stderr(err)}") from err

    def _connect(self) -> None:
        try:
            raw = str(_kind("get", "kubeconfig", "--name", self.name))
        except sh.ErrorReturnCode as err:
            raise ProvisioningError(f"Failed to get kubeconfig for '{self.name}': {_stderr(err)}") from err
        kubeconfig = yaml.safe_load(raw)

        kubeconfig_dir = self._kubeconfig_dir or Path(tempfile.mkdtemp(prefix="capz-e2e-"))
        kubeconfig_dir.mkdir(parents=True, exist_ok=True)
        self._kubeconfig_path = kubeconfig_dir / f"kubeconfig-{self.name}"
        self._kubeconfig_path.write_text(raw)
        self._kubeconfig_path.chmod(0o600)

        self._api_client = _new_api_client(kubeconfig)
        self._raw_api_client = _new_api_client(kubeconfig)

    def _close_clients(self) -> None:
        for api_client in (self._api_client, self._raw_api_client):
            if api_client is not None:
                api_client.close()
        self._api_client = None
        self._raw_api_client = None
