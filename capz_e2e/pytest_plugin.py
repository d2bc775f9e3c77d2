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


"""pytest wiring: --e2e gate, JUnit report path, and the suite fixture."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from capz_e2e import logger
from capz_e2e.cluster import KindCluster
from capz_e2e.config import SuiteConfig
from capz_e2e.errors import TeardownError
from capz_e2e.suite import SuiteContext, junit_report_path, set_up, tear_down


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("capz-e2e")
    group.addoption(
        "--e2e", action="store_true", default=False,
        help="Run tests that need a live management cluster",
    )


@pytest.hookimpl(tryfirst=True)
def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "e2e: test needs a live management cluster (enable with --e2e)")
    if config.getoption("e2e") and not getattr(config.option, "xmlpath", None):
        suite_cfg = SuiteConfig()
        config.option.xmlpath = str(junit_report_path(suite_cfg.artifacts_dir, suite_cfg.suite_name))


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("e2e"):
        return
    skip = pytest.mark.skip(reason="needs --e2e")
    for item in items:
        if item.get_closest_marker("e2e") is not None:
            item.add_marker(skip)


def _tear_down_after_failed_setup(ctx: SuiteContext) -> None:
    try:
        tear_down(ctx)
    except TeardownError as err:
        logger.error("Teardown after failed setup also failed: %s", err)


def suite_session(ctx: SuiteContext) -> Iterator[SuiteContext]:
    """Set up *ctx*, yield it, then tear it down.

    Any setup failure tears down whatever was created before re-raising.
    """
    try:
        set_up(ctx)
    except Exception:
        _tear_down_after_failed_setup(ctx)
        raise
    yield ctx
    tear_down(ctx)


@pytest.fixture(scope="session")
def capz_suite() -> Iterator[SuiteContext]:
    """Management cluster for the whole session, torn down at the end."""
    yield from suite_session(SuiteContext())


@pytest.fixture(scope="session")
def mgmt_cluster(capz_suite: SuiteContext) -> KindCluster:
    return capz_suite.cluster


@pytest.fixture(scope="session")
def workload_template_vars(capz_suite: SuiteContext) -> dict[str, str]:
    """Variables for rendering workload cluster templates (region, VM size, image)."""
    return capz_suite.azure_cfg.template_variables()
