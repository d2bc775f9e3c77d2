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

"""Cluster API, CABPK, and CAPZ component manifests and installation."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import NamedTuple

import sh
from kubernetes.client import ApiClient, ApisApi, AppsV1Api, CoreApi
from kubernetes.client.rest import ApiException
from rich.panel import Panel
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_fixed
from urllib3.exceptions import HTTPError

from capz_e2e import console
from capz_e2e.auth import CredentialBundle
from capz_e2e.cluster import KindCluster
from capz_e2e.config import ComponentConfig, ReadinessConfig
from capz_e2e.constants import (
    API_DISCOVERY_MAX_RETRIES,
    API_DISCOVERY_POLL_INTERVAL_SECONDS,
    APPLY_MAX_RETRIES,
    APPLY_RETRY_WAIT_SECONDS,
    CREDENTIAL_PLACEHOLDERS,
    KUBECTL_TIMEOUT_SECONDS,
    REPO_DIR,
    dep_value,
)
from capz_e2e.errors import ProvisioningError, ReadinessTimeout, WorkloadFetchError
from capz_e2e.readiness import WorkloadRef, wait_for_deployment

_PLACEHOLDER_RE = re.compile(r"\$\{(\w+)\}")


class ManifestSource(NamedTuple):
    """Where ``kubectl apply -f`` reads from: a URL/path, or ``-`` with inline content."""

    location: str
    content: str | None = None


def _deployment_refs(*keys: str) -> tuple[WorkloadRef, ...]:
    return tuple(WorkloadRef.parse(item) for item in dep_value(*keys, default=[]))


def _kustomize(*args: str):
    return sh.kustomize(*args)


# ============================================================================
# Generators
# ============================================================================

@dataclass(frozen=True)
class ClusterAPI:
    """Cluster API core components from the upstream release."""

    version: str
    name: str = "Cluster API"
    deployments: tuple[WorkloadRef, ...] = field(
        default_factory=lambda: _deployment_refs("cluster_api", "deployments"))

    def source(self) -> ManifestSource:
        return ManifestSource(dep_value("cluster_api", "manifests").format(version=self.version))


@dataclass(frozen=True)
class Bootstrap:
    """Kubeadm bootstrap provider (CABPK) from the upstream release."""

    version: str
    name: str = "CABPK"
    deployments: tuple[WorkloadRef, ...] = field(
        default_factory=lambda: _deployment_refs("cabpk", "deployments"))

    def source(self) -> ManifestSource:
        return ManifestSource(dep_value("cabpk", "manifests").format(version=self.version))


@dataclass(frozen=True)
class Infra:
    """Azure infrastructure provider built from the local kustomize config.

    Credential placeholders such as ``${AZURE_CLIENT_ID_B64}`` are filled in
    with base64-encoded values from *creds*.
    """

    creds: CredentialBundle
    kustomize_dir: Path = Path(dep_value("capz", "kustomize_dir", default="config/default"))
    name: str = "CAPZ"
    deployments: tuple[WorkloadRef, ...] = field(
        default_factory=lambda: _deployment_refs("capz", "deployments"))

    def source(self) -> ManifestSource:
        kustomize_dir = self.kustomize_dir
        if not kustomize_dir.is_absolute():
            kustomize_dir = REPO_DIR / kustomize_dir
        try:
            built = str(_kustomize("build", str(kustomize_dir)))
        except sh.ErrorReturnCode as err:
            raise ProvisioningError(
                f"kustomize build {kustomize_dir} failed: {err.stderr.decode(errors='replace')}"
            ) from err
        except sh.CommandNotFound as err:
            raise ProvisioningError(f"kustomize not found on PATH: {err}") from err
        return ManifestSource("-", render_credentials(built, self.creds))


def render_credentials(manifests: str, creds: CredentialBundle) -> str:
    """Substitute ``${AZURE_*_B64}`` placeholders; unknown placeholders are left as-is.

    Args:
        manifests: Multi-document YAML text.
        creds: Credentials to encode.

    Returns:
        The manifests with credential placeholders replaced.
    """
    def _sub(match: re.Match) -> str:
        field_name = CREDENTIAL_PLACEHOLDERS.get(match.group(1))
        return creds.b64(field_name) if field_name else match.group(0)
    return _PLACEHOLDER_RE.sub(_sub, manifests)


def default_components(comp_cfg: ComponentConfig, creds: CredentialBundle) -> list:
    """Return the component set installed on the management cluster, in install order."""
    return [
        ClusterAPI(version=comp_cfg.capi_version),
        Bootstrap(version=comp_cfg.cabpk_version),
        Infra(creds=creds, kustomize_dir=comp_cfg.capz_kustomize_dir),
    ]


# ============================================================================
# Installation
# ============================================================================

def _kubectl(cluster: KindCluster, *args: str, **kwargs):
    return sh.kubectl("--kubeconfig", str(cluster.kubeconfig_path), *args,
                      _timeout=KUBECTL_TIMEOUT_SECONDS, **kwargs)


@retry(
    stop=stop_after_attempt(APPLY_MAX_RETRIES),
    retry=retry_if_exception_type(sh.ErrorReturnCode),
    wait=wait_fixed(APPLY_RETRY_WAIT_SECONDS),
    reraise=True,
)
def _apply(cluster: KindCluster, source: ManifestSource) -> None:
    """Apply one manifest source, retrying while webhooks and CRDs register."""
    if source.content is None:
        _kubectl(cluster, "apply", "-f", source.location)
    else:
        _kubectl(cluster, "apply", "-f", "-", _in=source.content)


def served_group_versions(api_client: ApiClient) -> set[str]:
    """Return every group/version the API server advertises through discovery."""
    served = set(CoreApi(api_client).get_api_versions().versions)
    for group in ApisApi(api_client).get_api_versions().groups:
        served.update(v.group_version for v in group.versions)
    return served


@retry(
    stop=stop_after_attempt(API_DISCOVERY_MAX_RETRIES),
    wait=wait_fixed(API_DISCOVERY_POLL_INTERVAL_SECONDS),
    reraise=True,
)
def _check_scheme_served(api_client: ApiClient, scheme: Iterable[str]) -> None:
    """Raise until every group/version in *scheme* is discoverable.

    Raises:
        RuntimeError: If some group/versions are not served yet.
    """
    served = served_group_versions(api_client)
    missing = [gv for gv in scheme if gv not in served]
    if missing:
        raise RuntimeError(f"API group/versions not served yet: {', '.join(missing)}")


def install_components(cluster: KindCluster, generators: Iterable, readiness_cfg: ReadinessConfig) -> None:
    """Apply every generator's manifests, then wait for APIs and controllers.

    Args:
        cluster: Created management cluster.
        generators: Component generators, applied in order.
        readiness_cfg: Timeout and interval for controller deployments.

    Raises:
        ProvisioningError: If applying, API discovery, or a controller rollout fails.
    """
    generators = list(generators)
    for gen in generators:
        console.print(Panel.fit(f"Installing {gen.name}", style="bold blue"))
        try:
            _apply(cluster, gen.source())
        except sh.ErrorReturnCode as err:
            raise ProvisioningError(
                f"Failed to apply {gen.name} manifests: {err.stderr.decode(errors='replace').strip()}"
            ) from err
        except sh.TimeoutException as err:
            raise ProvisioningError(f"Timed out applying {gen.name} manifests") from err
        except sh.CommandNotFound as err:
            raise ProvisioningError(f"kubectl not found on PATH: {err}") from err
        console.print(f"[green]\u2705 {gen.name} manifests applied[/green]")

    console.print("[yellow]\u2139\ufe0f  Waiting for component APIs to be served...[/yellow]")
    try:
        _check_scheme_served(cluster.client(), cluster.scheme)
    except (RuntimeError, RetryError) as err:
        raise ProvisioningError(f"Timed out waiting for component APIs: {err}") from err
    except (ApiException, HTTPError) as err:
        raise ProvisioningError(f"API discovery failed: {err}") from err

    apps_api = AppsV1Api(cluster.client())
    for gen in generators:
        for ref in gen.deployments:
            try:
                wait_for_deployment(apps_api, ref, readiness_cfg)
            except (ReadinessTimeout, WorkloadFetchError) as err:
                raise ProvisioningError(f"{gen.name} controller not ready: {err}") from err
            console.print(f"[green]\u2705 Deployment {ref} is ready[/green]")
