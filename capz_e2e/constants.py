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


"""Constants, dependency loading, and dep_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

# -- Resolved paths --
PACKAGE_DIR = Path(__file__).resolve().parent
REPO_DIR = PACKAGE_DIR.parent


def load_dependencies() -> dict:
    """Load component versions and manifest sources from dependencies.yaml.

    Returns:
        Parsed YAML content as a nested dictionary.
    """
    deps_file = PACKAGE_DIR / "dependencies.yaml"
    with open(deps_file) as f:
        return yaml.safe_load(f)


DEPENDENCIES = load_dependencies()


def dep_value(*keys: str, default: Any = None) -> Any:
    """Safely traverse the DEPENDENCIES dict by key path.

    Args:
        *keys: Sequence of dictionary keys to traverse.
        default: Value to return if any key is missing.

    Returns:
        The value at the nested key path, or *default* if not found.
    """
    node = DEPENDENCIES
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


# -- Environment markers --
ENV_ARTIFACTS = "ARTIFACTS"
ENV_MANAGER_IMAGE = "MANAGER_IMAGE"
ENV_AZURE_CREDENTIALS = "AZURE_CREDENTIALS"

# -- Readiness polling --
DEFAULT_READY_TIMEOUT_SECONDS = 300
DEFAULT_READY_POLL_INTERVAL_SECONDS = 15
DEFAULT_MIN_READY_REPLICAS = 0

# -- Component install --
APPLY_MAX_RETRIES = 5
APPLY_RETRY_WAIT_SECONDS = 10
API_DISCOVERY_MAX_RETRIES = 30
API_DISCOVERY_POLL_INTERVAL_SECONDS = 5
KUBECTL_TIMEOUT_SECONDS = 300

# -- Scheme: group/versions the management cluster must serve --
CORE_GROUP_VERSION = "v1"
APPS_GROUP_VERSION = "apps/v1"
CAPI_GROUP_VERSION = "cluster.x-k8s.io/v1alpha2"
CABPK_GROUP_VERSION = "bootstrap.cluster.x-k8s.io/v1alpha2"
CAPZ_GROUP_VERSION = "infrastructure.cluster.x-k8s.io/v1alpha2"
DEFAULT_SCHEME = (
    CORE_GROUP_VERSION,
    APPS_GROUP_VERSION,
    CAPI_GROUP_VERSION,
    CABPK_GROUP_VERSION,
    CAPZ_GROUP_VERSION,
)

# -- Credential placeholders in the CAPZ manager manifests --
CREDENTIAL_PLACEHOLDERS = {
    "AZURE_TENANT_ID_B64": "tenant_id",
    "AZURE_SUBSCRIPTION_ID_B64": "subscription_id",
    "AZURE_CLIENT_ID_B64": "client_id",
    "AZURE_CLIENT_SECRET_B64": "client_secret",
}

# -- Log capture --
LOGS_DIR_NAME = "logs"
LOG_FILE_MODE = 0o644
MANAGER_CONTAINER = "manager"
LOG_STREAM_CHUNK_BYTES = 4096
DEFAULT_LOG_COPY_MAX_WORKERS = 8
WATCH_DRAIN_SECONDS = 5

# -- Management cluster defaults --
DEFAULT_CLUSTER_NAME = "mgmt"
DEFAULT_SUITE_NAME = "e2e_suite"
DEFAULT_LOCATION = "westus2"
DEFAULT_VM_SIZE = "Standard_B2ms"
DEFAULT_NAMESPACE = "default"
DEFAULT_K8S_VERSION = "v1.16.2"
DEFAULT_IMAGE_OFFER = "capi"
DEFAULT_IMAGE_PUBLISHER = "cncf-upstream"
DEFAULT_IMAGE_SKU = "k8s-1dot16-ubuntu-1804"
DEFAULT_IMAGE_VERSION = "latest"

# -- Reporting --
JUNIT_FILENAME_TEMPLATE = "junit.{suite}.{worker}.xml"
