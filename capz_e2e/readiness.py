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

"""Deployment readiness polling with a fixed interval and deadline."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kubernetes.client import AppsV1Api
from kubernetes.client.rest import ApiException
from tenacity import RetryError, Retrying, retry_if_result, wait_fixed
from urllib3.exceptions import HTTPError

from capz_e2e import logger
from capz_e2e.config import ReadinessConfig
from capz_e2e.constants import DEFAULT_READY_POLL_INTERVAL_SECONDS, DEFAULT_READY_TIMEOUT_SECONDS
from capz_e2e.errors import ReadinessTimeout, WorkloadFetchError


@dataclass(frozen=True)
class WorkloadRef:
    """Lookup key for a namespaced workload."""

    namespace: str
    name: str

    @classmethod
    def parse(cls, value: str) -> WorkloadRef:
        """Parse ``namespace/name``.

        Raises:
            ValueError: If *value* is not of the form ``namespace/name``.
        """
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name or "/" in name:
            raise ValueError(f"expected namespace/name, got {value!r}")
        return cls(namespace, name)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


# ============================================================================
# Conditions
# ============================================================================

def ready_replicas_above(threshold: int = 0) -> Callable[[Any], bool]:
    """Condition: strictly more than *threshold* replicas are ready.

    With the default threshold this is a lenient bootstrap check, not a
    rollout check; use :func:`rolled_out` for the stricter guarantee.
    """
    def _condition(deployment: Any) -> bool:
        status = deployment.status
        return status is not None and (status.ready_replicas or 0) > threshold
    return _condition


def rolled_out(deployment: Any) -> bool:
    """Condition: every desired replica is updated and ready."""
    status = deployment.status
    if status is None:
        return False
    desired = deployment.spec.replicas if deployment.spec.replicas is not None else 1
    return (
        (status.observed_generation or 0) >= (deployment.metadata.generation or 0)
        and (status.updated_replicas or 0) >= desired
        and (status.ready_replicas or 0) >= desired
    )


def deployment_fetcher(apps_api: AppsV1Api) -> Callable[[WorkloadRef], Any]:
    """Adapt ``read_namespaced_deployment`` into a fetch function.

    API and connection errors are raised as :class:`WorkloadFetchError`.
    """
    def _fetch(ref: WorkloadRef) -> Any:
        try:
            return apps_api.read_namespaced_deployment(ref.name, ref.namespace)
        except ApiException as err:
            raise WorkloadFetchError(f"Failed to get deployment {ref}: {err.status} {err.reason}") from err
        except HTTPError as err:
            raise WorkloadFetchError(f"Failed to get deployment {ref}: {err}") from err
    return _fetch


# ============================================================================
# Polling
# ============================================================================

def wait_ready(
    fetch: Callable[[WorkloadRef], Any],
    ref: WorkloadRef,
    condition: Callable[[Any], bool] | None = None,
    timeout: float = DEFAULT_READY_TIMEOUT_SECONDS,
    interval: float = DEFAULT_READY_POLL_INTERVAL_SECONDS,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Poll *ref* every *interval* seconds until *condition* holds.

    Args:
        fetch: Returns the current workload object for a reference.
        ref: Workload to poll.
        condition: Success predicate, default :func:`ready_replicas_above` (0).
        timeout: Seconds after which polling gives up.
        interval: Seconds between polls.
        clock: Monotonic time source.
        sleep: Sleep function used between polls.

    Returns:
        The workload object for which the condition held.

    Raises:
        ReadinessTimeout: If the deadline passes first.
        WorkloadFetchError: If a fetch fails; fetch errors are not retried.
    """
    if condition is None:
        condition = ready_replicas_above(0)
    deadline = clock() + timeout
    observed: list[Any] = []

    def _poll() -> bool:
        workload = fetch(ref)
        observed.append(workload)
        return condition(workload)

    def _log_wait(retry_state) -> None:
        logger.debug("Deployment %s not ready yet (attempt %d), retrying in %ss",
                     ref, retry_state.attempt_number, interval)

    retryer = Retrying(
        retry=retry_if_result(lambda ok: not ok),
        stop=lambda _state: clock() >= deadline,
        wait=wait_fixed(interval),
        sleep=sleep,
        before_sleep=_log_wait,
    )
    try:
        retryer(_poll)
    except RetryError as err:
        raise ReadinessTimeout(ref, timeout) from err
    return observed[-1]


def wait_for_deployment(
    apps_api: AppsV1Api,
    ref: WorkloadRef,
    cfg: ReadinessConfig,
    condition: Callable[[Any], bool] | None = None,
) -> Any:
    """Wait for a deployment using the configured timeout, interval and threshold.

    Args:
        apps_api: Typed apps/v1 API client.
        ref: Deployment to wait for.
        cfg: Readiness configuration.
        condition: Overrides the configured ready-replica threshold.
    """
    logger.info("Waiting up to %ss for deployment %s", cfg.timeout, ref)
    return wait_ready(
        deployment_fetcher(apps_api),
        ref,
        condition or ready_replicas_above(cfg.min_replicas),
        timeout=cfg.timeout,
        interval=cfg.interval,
    )
