from __future__ import annotations

from pathlib import Path

import pytest

from reviewpin.config.loader import ConfigLoader
from reviewpin.logging.artifacts import ArtifactManager
from tests.helpers import build_runtime


@pytest.fixture(scope="session", autouse=True)
def reset_artifacts_for_test_run():
    artifacts_root = Path(__file__).resolve().parents[1] / "artifacts"
    manager = ArtifactManager(artifacts_root)
    manager.reset()
    return manager


@pytest.fixture()
def suite_config():
    config_path = Path(__file__).resolve().parents[1] / "config" / "tracking.json"
    return ConfigLoader.load(config_path)


@pytest.fixture()
def runtime(suite_config, tmp_path):
    runtime = build_runtime(suite_config, tmp_path)
    yield runtime
    runtime.session.close()
