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


"""Error taxonomy for suite setup, polling, and teardown."""

from __future__ import annotations


class HarnessError(Exception):
    """Base class for all harness errors."""


class ConfigurationError(HarnessError):
    """A required environment value or credential field is missing."""


class ProvisioningError(HarnessError):
    """Cluster creation or component installation failed."""


class ClusterStateError(HarnessError):
    """A cluster handle was used outside of its created state."""


class WorkloadFetchError(HarnessError):
    """Fetching a workload's status failed (distinct from "not yet ready")."""


class ReadinessTimeout(HarnessError):
    """A workload did not satisfy its readiness condition before the deadline."""

    def __init__(self, ref, timeout: float) -> None:
        self.ref = ref
        self.timeout = timeout
        super().__init__(f"Deployment {ref} could not reach the ready state within {timeout:g}s")


class SetupError(HarnessError):
    """Suite setup aborted; the underlying error is chained."""


class TeardownError(HarnessError):
    """Tearing down the management cluster failed."""
