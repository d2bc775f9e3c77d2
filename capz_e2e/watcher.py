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

"""Streaming controller logs from a deployment's pods into artifact files."""

from __future__ import annotations

import os
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO

from kubernetes.client import AppsV1Api, CoreV1Api
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError, IncompleteRead, ProtocolError

from capz_e2e import logger
from capz_e2e.cluster import KindCluster
from capz_e2e.config import ReadinessConfig, WatchConfig
from capz_e2e.constants import (
    DEFAULT_LOG_COPY_MAX_WORKERS,
    LOG_FILE_MODE,
    LOG_STREAM_CHUNK_BYTES,
    LOGS_DIR_NAME,
    MANAGER_CONTAINER,
)
from capz_e2e.errors import ReadinessTimeout, WorkloadFetchError
from capz_e2e.readiness import WorkloadRef, wait_for_deployment


@dataclass
class LogCapture:
    """Outcome of copying one (pod, container) log stream.

    Attributes:
        pod: Pod name.
        container: Container name.
        path: Log file the stream was appended to.
        bytes_copied: Bytes written before the stream ended.
        error: The error that ended the copy, or None for a normal close.
    """

    pod: str
    container: str
    path: Path
    bytes_copied: int = 0
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class WatchReport:
    """Captures produced by one :func:`watch_deployment` call."""

    ref: WorkloadRef
    ready: bool = True
    error: BaseException | None = None
    captures: list[LogCapture] = field(default_factory=list)

    @property
    def failed(self) -> list[LogCapture]:
        return [c for c in self.captures if not c.ok]


# ============================================================================
# Sinks and selectors
# ============================================================================

def log_path(artifacts_dir: Path, workload: str, pod: str, container: str) -> Path:
    """Return ``<artifacts>/logs/<workload>/<pod>/<container>.log``."""
    return Path(artifacts_dir) / LOGS_DIR_NAME / workload / pod / f"{container}.log"


def open_log_sink(path: Path) -> BinaryIO:
    """Open *path* for appending, creating parent directories as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_APPEND | os.O_CREAT | os.O_WRONLY, LOG_FILE_MODE)
    return os.fdopen(fd, "ab")


def selector_as_map(selector: Any) -> dict[str, str]:
    """Convert a label selector into plain ``key: value`` pairs.

    Only ``matchLabels`` and ``In`` expressions with a single value can be
    expressed this way.

    Raises:
        ValueError: For any other expression.
    """
    labels = dict(selector.match_labels or {})
    for expr in selector.match_expressions or []:
        values = expr.values or []
        if expr.operator != "In" or len(values) != 1:
            raise ValueError(
                f"operator {expr.operator!r} on {expr.key!r} cannot be converted into a label map"
            )
        labels[expr.key] = values[0]
    return labels


def is_benign_end_of_stream(err: BaseException) -> bool:
    """True if *err* means the server closed the stream mid-read (pod went away)."""
    if isinstance(err, IncompleteRead):
        return True
    if isinstance(err, ProtocolError):
        if any(isinstance(arg, IncompleteRead) for arg in err.args):
            return True
        message = str(err)
        return "IncompleteRead" in message or "ended prematurely" in message
    return False


# ============================================================================
# Copying
# ============================================================================

def _close_stream(stream: Any) -> None:
    stream.close()
    release = getattr(stream, "release_conn", None)
    if release is not None:
        release()


def copy_log_stream(
    core_api: CoreV1Api,
    namespace: str,
    capture: LogCapture,
    stop: threading.Event | None = None,
) -> LogCapture:
    """Follow one container's logs and append them to ``capture.path``.

    Stream and file are closed on every path. A benign end-of-stream counts
    as a normal close; any other stream or file error is recorded on the
    capture instead of being raised.
    """
    try:
        stream = core_api.read_namespaced_pod_log(
            capture.pod, namespace,
            container=capture.container,
            follow=True,
            _preload_content=False,
        )
    except ApiException as err:
        capture.error = err
        logger.error("Failed to open log stream for %s/%s: %s", capture.pod, capture.container, err)
        return capture

    try:
        with open_log_sink(capture.path) as sink:
            for chunk in stream.stream(LOG_STREAM_CHUNK_BYTES):
                sink.write(chunk)
                sink.flush()
                capture.bytes_copied += len(chunk)
                if stop is not None and stop.is_set():
                    break
    except (HTTPError, OSError) as err:
        if is_benign_end_of_stream(err):
            logger.info("Log stream for %s/%s ended: %s", capture.pod, capture.container, err)
        elif stop is not None and stop.is_set():
            logger.debug("Log stream for %s/%s closed during teardown: %s", capture.pod, capture.container, err)
        else:
            capture.error = err
            logger.error("Copying logs for %s/%s failed: %s", capture.pod, capture.container, err)
    finally:
        _close_stream(stream)
    return capture


def watch_deployment(
    cluster: KindCluster,
    ref: WorkloadRef,
    artifacts_dir: Path,
    *,
    container: str = MANAGER_CONTAINER,
    readiness_cfg: ReadinessConfig | None = None,
    stop: threading.Event | None = None,
    max_workers: int = DEFAULT_LOG_COPY_MAX_WORKERS,
) -> WatchReport:
    """Stream *container* logs of every running pod of a deployment to files.

    Waits for the deployment first; if it never becomes ready the watch is
    abandoned and reported, not raised. Each (pod, container) stream is
    copied by its own worker so one failure does not stop the others.

    Args:
        cluster: Created management cluster.
        ref: Deployment to watch.
        artifacts_dir: Artifacts root; logs go under ``logs/<name>/<pod>/``.
        container: Only containers with this name are captured.
        readiness_cfg: Readiness timeout and interval, defaults from env.
        stop: Set to make copies stop after their current chunk.
        max_workers: Upper bound on concurrent stream copies.

    Returns:
        A report with one capture per (pod, container) stream.
    """
    readiness_cfg = readiness_cfg or ReadinessConfig()
    report = WatchReport(ref)
    apps_api = AppsV1Api(cluster.client())

    try:
        deployment = wait_for_deployment(apps_api, ref, readiness_cfg)
    except (ReadinessTimeout, WorkloadFetchError) as err:
        logger.warning("Not watching %s: %s", ref, err)
        report.ready = False
        report.error = err
        return report

    label_selector = ",".join(f"{k}={v}" for k, v in selector_as_map(deployment.spec.selector).items())
    pods = CoreV1Api(cluster.client()).list_namespaced_pod(ref.namespace, label_selector=label_selector)
    containers = [c.name for c in deployment.spec.template.spec.containers if c.name == container]

    units: list[LogCapture] = []
    for pod in pods.items:
        phase = pod.status.phase if pod.status else None
        if phase != "Running":
            logger.info("Skipping pod %s in phase %s", pod.metadata.name, phase)
            continue
        for name in containers:
            units.append(LogCapture(pod.metadata.name, name,
                                    log_path(artifacts_dir, ref.name, pod.metadata.name, name)))

    if not units:
        logger.warning("No running '%s' containers found for %s", container, ref)
        return report

    core_api = cluster.raw_client()
    with ThreadPoolExecutor(max_workers=min(len(units), max_workers)) as executor:
        futures = {
            executor.submit(copy_log_stream, core_api, ref.namespace, unit, stop): unit
            for unit in units
        }
        for future in as_completed(futures):
            unit = futures[future]
            try:
                future.result()
            except Exception as err:
                unit.error = err
                logger.error("Log capture for %s/%s crashed: %s", unit.pod, unit.container, err)
            report.captures.append(unit)
    return report


# ============================================================================
# Background supervision
# ============================================================================

class BackgroundWatch:
    """Run a watch on a daemon thread and report its outcome through a future.

    Exceptions never escape the thread: they are logged and stored on the
    future, so a failing watch cannot fail the suite.
    """

    def __init__(self, name: str, fn: Callable[[], WatchReport]) -> None:
        self.name = name
        self.future: Future = Future()
        self._fn = fn
        self._thread = threading.Thread(target=self._run, name=f"watch-{name}", daemon=True)

    def start(self) -> BackgroundWatch:
        self.future.set_running_or_notify_cancel()
        self._thread.start()
        return self

    def _run(self) -> None:
        try:
            result = self._fn()
        except Exception as err:
            logger.error("Background watch %s failed: %s", self.name, err, exc_info=True)
            self.future.set_exception(err)
        else:
            self.future.set_result(result)

    def done(self) -> bool:
        return self.future.done()

    @property
    def error(self) -> BaseException | None:
        return self.future.exception() if self.future.done() else None

    def wait(self, timeout: float | None = None) -> WatchReport | None:
        """Wait for the watch; returns its report, or None if it failed or is still running."""
        wait_futures([self.future], timeout=timeout)
        if not self.future.done() or self.future.exception() is not None:
            return None
        return self.future.result()


def start_watch(
    cluster: KindCluster,
    ref: WorkloadRef,
    artifacts_dir: Path,
    watch_cfg: WatchConfig,
    readiness_cfg: ReadinessConfig,
    stop: threading.Event,
) -> BackgroundWatch:
    """Launch :func:`watch_deployment` for *ref* in the background."""
    logger.info("Streaming %s logs of %s to %s", watch_cfg.container, ref, artifacts_dir)
    return BackgroundWatch(
        str(ref),
        lambda: watch_deployment(
            cluster, ref, artifacts_dir,
            container=watch_cfg.container,
            readiness_cfg=readiness_cfg,
            stop=stop,
            max_workers=watch_cfg.max_workers,
        ),
    ).start()
