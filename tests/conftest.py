"""
Shared test configuration for salesindex.

Every fixture works on a temporary directory so that tests never touch the
real data files, and all waiting goes through a recording sleep.
"""

import json
from pathlib import Path
from typing import Dict, List

import pytest

from salesindex.config import Config, CrawlerConfig, PathsConfig, RateLimiterConfig
from salesindex.container import DependencyContainer
from salesindex.protocols import Entity
from tests.helpers import FakeMarketplace, RecordingSleep

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")
    config.addinivalue_line("markers", "e2e: End-to-end crawl scenarios")


# ============================================================================
# Core Test Fixtures
# ============================================================================


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "BigPulp"
    path.mkdir()
    return path


@pytest.fixture
def test_config(data_dir: Path) -> Config:
    """Configuration pointing every file at the temporary data directory."""
    return Config(
        paths=PathsConfig(
            launcher_map=data_dir / "launcher_map.json",
            offers_index=data_dir / "offers_index.json",
            output=data_dir / "sales_index.json",
            checkpoint=data_dir / ".checkpoint.json",
            error_log=data_dir / ".errors.json",
        ),
        crawler=CrawlerConfig(checkpoint_interval=3, timeout=5.0),
        rate_limiter=RateLimiterConfig(),
    )


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def container(test_config: Config, recording_sleep: RecordingSleep) -> DependencyContainer:
    return DependencyContainer(config=test_config, sleep=recording_sleep)


@pytest.fixture
def entities() -> List[Entity]:
    return [Entity(internal_id=str(i), launcher=f"nft{i:03d}") for i in range(1, 11)]


@pytest.fixture
def fake_api() -> FakeMarketplace:
    return FakeMarketplace()


@pytest.fixture
def write_launcher_map(test_config: Config):
    """Write a launcher map file from an ``internal_id -> launcher`` dict."""

    def _write(mapping: Dict[str, str]) -> Path:
        path = test_config.paths.launcher_map
        path.write_text(json.dumps({"schema_version": "1.0", "count": len(mapping), "map": mapping}))
        return path

    return _write
