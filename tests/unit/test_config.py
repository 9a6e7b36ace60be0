"""
Tests for configuration loading and validation.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from salesindex.config import (
    CollectionConfig,
    Config,
    MonitoringConfig,
    RateLimiterConfig,
    find_config_file,
    load_config,
)


@pytest.mark.unit
class TestDefaults:
    def test_defaults(self):
        config = Config()
        assert config.crawler.max_retries == 10
        assert config.crawler.checkpoint_interval == 100
        assert config.rate_limiter.initial_delay_ms == 1000
        assert config.extraction.min_secondary_price == 0.8
        assert config.paths.output == Path("public/assets/BigPulp/mintgarden_sales_index_v1.json")
        assert config.paths.launcher_map == Path("public/assets/BigPulp/mintgarden_launcher_map_runtime_v1.json")
        assert config.paths.offers_index == Path("public/assets/BigPulp/mintgarden_offers_index_v1.json")
        assert config.collection.validation_entities[0].internal_id == "1563"

    def test_url_for(self):
        assert CollectionConfig().url_for("nft1abc") == "https://api.mintgarden.io/nfts/nft1abc"


@pytest.mark.unit
class TestValidation:
    def test_details_url_needs_placeholder(self):
        with pytest.raises(ValidationError):
            CollectionConfig(details_url="https://api.example.test/nfts/")

    @pytest.mark.parametrize(
        "values",
        [
            {"initial_delay_ms": 100, "min_delay_ms": 500},
            {"initial_delay_ms": 20000},
            {"min_delay_ms": 2000, "max_delay_ms": 1000},
        ],
    )
    def test_rate_limiter_bounds(self, values):
        with pytest.raises(ValidationError):
            RateLimiterConfig(**values)

    def test_zero_delays_allowed(self):
        config = RateLimiterConfig(initial_delay_ms=0, min_delay_ms=0, max_delay_ms=0)
        assert config.max_delay_ms == 0

    def test_checkpoint_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            Config(crawler={"checkpoint_interval": 0})

    def test_log_file_parent_created(self, tmp_path):
        log_file = tmp_path / "logs" / "build.jsonl"
        config = MonitoringConfig(log_file=log_file)
        assert config.log_file == str(log_file)
        assert log_file.parent.is_dir()


@pytest.mark.unit
class TestLoading:
    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SALESINDEX_CRAWLER__MAX_RETRIES", "3")
        monkeypatch.setenv("SALESINDEX_COLLECTION__COLLECTION_ID", "col1env")
        config = Config()
        assert config.crawler.max_retries == 3
        assert config.collection.collection_id == "col1env"

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "salesindex.yaml"
        path.write_text(
            "crawler:\n"
            "  checkpoint_interval: 25\n"
            "rate_limiter:\n"
            "  initial_delay_ms: 750\n"
            "paths:\n"
            "  output: out/sales.json\n"
        )
        config = Config.from_yaml(path)
        assert config.crawler.checkpoint_interval == 25
        assert config.rate_limiter.initial_delay_ms == 750
        assert config.paths.output == Path("out/sales.json")

    def test_empty_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / "salesindex.yaml"
        path.write_text("")
        assert Config.from_yaml(path).crawler.max_retries == 10

    def test_missing_yaml_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config.from_yaml(tmp_path / "missing.yaml")

    def test_find_config_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert find_config_file() is None
        (tmp_path / "salesindex.yml").write_text("crawler:\n  max_retries: 4\n")
        assert find_config_file() == tmp_path / "salesindex.yml"
        assert load_config().crawler.max_retries == 4
