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


"""Configuration classes and config models."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from capz_e2e.constants import (
    DEFAULT_CLUSTER_NAME,
    DEFAULT_IMAGE_OFFER,
    DEFAULT_IMAGE_PUBLISHER,
    DEFAULT_IMAGE_SKU,
    DEFAULT_IMAGE_VERSION,
    DEFAULT_K8S_VERSION,
    DEFAULT_LOCATION,
    DEFAULT_LOG_COPY_MAX_WORKERS,
    DEFAULT_MIN_READY_REPLICAS,
    DEFAULT_NAMESPACE,
    DEFAULT_READY_POLL_INTERVAL_SECONDS,
    DEFAULT_READY_TIMEOUT_SECONDS,
    DEFAULT_SUITE_NAME,
    DEFAULT_VM_SIZE,
    ENV_ARTIFACTS,
    ENV_AZURE_CREDENTIALS,
    ENV_MANAGER_IMAGE,
    MANAGER_CONTAINER,
    dep_value,
)

_VERSION_PATTERN = r"^v[\d.]+(-[\w.]+)?$"


# ============================================================================
# Configuration classes
# ============================================================================

class SuiteConfig(BaseSettings):
    """Suite-level configuration and required environment markers.

    Attributes:
        suite_name: Name used in the JUnit report filename.
        cluster_name: Name of the kind management cluster.
        kind_node_image: kind node image, or None for the kind default.
        artifacts_dir: Root directory for logs and reports (``ARTIFACTS``).
        manager_image: Manager image loaded into the cluster (``MANAGER_IMAGE``).
        credentials_file: Azure credentials file (``AZURE_CREDENTIALS``), or
            None to load credentials from the environment.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_", extra="ignore", populate_by_name=True)

    suite_name: str = DEFAULT_SUITE_NAME
    cluster_name: str = Field(default=DEFAULT_CLUSTER_NAME, pattern=r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
    kind_node_image: str | None = dep_value("kind", "node_image")
    artifacts_dir: Path = Field(default=Path("."), validation_alias=ENV_ARTIFACTS)
    manager_image: str | None = Field(default=None, validation_alias=ENV_MANAGER_IMAGE)
    credentials_file: Path | None = Field(default=None, validation_alias=ENV_AZURE_CREDENTIALS)


class AzureConfig(BaseSettings):
    """Workload cluster parameters, auto-loaded from E2E_* env vars.

    Attributes:
        location: Azure region.
        vm_size: Default VM size for machines.
        namespace: Namespace for Cluster API objects.
        k8s_version: Kubernetes version of workload clusters.
        image_offer: Marketplace image offer.
        image_publisher: Marketplace image publisher.
        image_sku: Marketplace image SKU.
        image_version: Marketplace image version.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_", extra="ignore")

    location: str = DEFAULT_LOCATION
    vm_size: str = DEFAULT_VM_SIZE
    namespace: str = DEFAULT_NAMESPACE
    k8s_version: str = Field(default=DEFAULT_K8S_VERSION, pattern=_VERSION_PATTERN)
    image_offer: str = DEFAULT_IMAGE_OFFER
    image_publisher: str = DEFAULT_IMAGE_PUBLISHER
    image_sku: str = DEFAULT_IMAGE_SKU
    image_version: str = DEFAULT_IMAGE_VERSION

    def template_variables(self) -> dict[str, str]:
        """Return the variables consumed by cluster templates."""
        return {
            "AZURE_LOCATION": self.location,
            "AZURE_VM_SIZE": self.vm_size,
            "NAMESPACE": self.namespace,
            "KUBERNETES_VERSION": self.k8s_version,
            "IMAGE_OFFER": self.image_offer,
            "IMAGE_PUBLISHER": self.image_publisher,
            "IMAGE_SKU": self.image_sku,
            "IMAGE_VERSION": self.image_version,
        }


class ComponentConfig(BaseSettings):
    """Component versions, auto-loaded from E2E_* env vars.

    Attributes:
        capi_version: Cluster API core release.
        cabpk_version: Kubeadm bootstrap provider release.
        capz_kustomize_dir: Kustomize directory of the Azure provider config.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_", extra="ignore")

    capi_version: str = Field(default=dep_value("cluster_api", "version"), pattern=_VERSION_PATTERN)
    cabpk_version: str = Field(default=dep_value("cabpk", "version"), pattern=_VERSION_PATTERN)
    capz_kustomize_dir: Path = Path(dep_value("capz", "kustomize_dir", default="config/default"))


class ReadinessConfig(BaseSettings):
    """Readiness polling parameters, auto-loaded from E2E_READY_* env vars.

    ``min_replicas`` is the exclusive lower bound on ready replicas: the
    default of 0 accepts a deployment as soon as one replica is ready.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_READY_", extra="ignore")

    timeout: float = Field(default=DEFAULT_READY_TIMEOUT_SECONDS, gt=0)
    interval: float = Field(default=DEFAULT_READY_POLL_INTERVAL_SECONDS, gt=0)
    min_replicas: int = Field(default=DEFAULT_MIN_READY_REPLICAS, ge=0)


class WatchConfig(BaseSettings):
    """Log watching parameters, auto-loaded from E2E_WATCH_* env vars.

    Watching is opt-in: no deployment is watched unless
    ``E2E_WATCH_DEPLOYMENTS`` lists one, e.g.
    ``["capz-system/capz-controller-manager"]``.

    Attributes:
        deployments: ``namespace/name`` deployments whose logs are streamed.
        container: Only containers with this name are captured.
        max_workers: Upper bound on concurrently copied log streams.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_WATCH_", extra="ignore")

    deployments: list[str] = Field(default_factory=list)
    container: str = MANAGER_CONTAINER
    max_workers: int = Field(default=DEFAULT_LOG_COPY_MAX_WORKERS, ge=1)

    @field_validator("deployments")
    @classmethod
    def _check_refs(cls, value: list[str]) -> list[str]:
        for item in value:
            namespace, _, name = item.partition("/")
            if not namespace or not name or "/" in name:
                raise ValueError(f"expected namespace/name, got {item!r}")
        return value
