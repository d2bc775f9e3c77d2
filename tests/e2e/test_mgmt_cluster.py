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


"""Checks against a live management cluster; run with ``pytest --e2e``."""

from __future__ import annotations

import pytest
from kubernetes.client import AppsV1Api, CoreV1Api

from capz_e2e.components import served_group_versions
from capz_e2e.readiness import WorkloadRef, rolled_out, wait_for_deployment

pytestmark = pytest.mark.e2e


def test_component_apis_served(mgmt_cluster):
    served = served_group_versions(mgmt_cluster.client())
    assert set(mgmt_cluster.scheme) <= served


@pytest.mark.parametrize("deployment", [
    "capi-system/capi-controller-manager",
    "cabpk-system/cabpk-controller-manager",
    "capz-system/capz-controller-manager",
])
def test_controllers_rolled_out(capz_suite, deployment):
    apps_api = AppsV1Api(capz_suite.cluster.client())
    wait_for_deployment(apps_api, WorkloadRef.parse(deployment), capz_suite.readiness_cfg, rolled_out)


def test_kubeconfig_written(mgmt_cluster):
    assert mgmt_cluster.kubeconfig_path.stat().st_mode & 0o777 == 0o600


def test_workload_namespace_exists(mgmt_cluster, workload_template_vars):
    namespace = CoreV1Api(mgmt_cluster.client()).read_namespace(workload_template_vars["NAMESPACE"])
    assert namespace.status.phase == "Active"
