"""
Configuration management for the sales indexer using Pydantic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Setup Logging ---
log = logging.getLogger(__name__)

DEFAULT_COLLECTION_ID = "col10hfq4hml2z0z0wutu3a9hvt60qy9fcq4k4dznsfncey4lu6kpt3su7u9ah"
DEFAULT_DATA_DIR = Path("public/assets/BigPulp")

# --- Nested Configuration Models ---


class ValidationEntity(BaseModel):
    """A known sale used to sanity-check extraction."""

    internal_id: str
    launcher: str
    expected_price: Optional[float] = None


class CollectionConfig(BaseModel):
    """The collection being indexed and the API endpoint that describes its items."""

    collection_id: str = Field(default=DEFAULT_COLLECTION_ID, description="Marketplace collection id.")
    details_url: str = Field(
        default="https://api.mintgarden.io/nfts/{launcher}",
        description="Per-item endpoint template; must contain '{launcher}'.",
    )
    validation_entities: List[ValidationEntity] = Field(
        default_factory=lambda: [
            ValidationEntity(
                internal_id="1563",
                launcher="nft17g7mk773vsle96sgcc2ahvezqcth0y7gpftcmnm5mq8z8dhed9qqy2x3l4",
                expected_price=3.3,
            )
        ],
        description="Known sales checked by --validate and by the index validator.",
    )

    @field_validator("details_url")
    @classmethod
    def validate_template(cls, v: str) -> str:
        if "{launcher}" not in v:
            raise ValueError("details_url must contain a '{launcher}' placeholder")
        return v

    def url_for(self, launcher: str) -> str:
        return self.details_url.format(launcher=launcher)


class PathsConfig(BaseModel):
    """Input and output file locations."""

    launcher_map: Path = Field(default=DEFAULT_DATA_DIR / "mintgarden_launcher_map_runtime_v1.json")
    offers_index: Path = Field(default=DEFAULT_DATA_DIR / "mintgarden_offers_index_v1.json")
    output: Path = Field(default=DEFAULT_DATA_DIR / "mintgarden_sales_index_v1.json")
    checkpoint: Path = Field(default=DEFAULT_DATA_DIR / ".sales_index_checkpoint.json")
    error_log: Path = Field(default=DEFAULT_DATA_DIR / ".sales_index_errors.json")


class CrawlerConfig(BaseModel):
    """HTTP and crawl loop configuration."""

    timeout: float = Field(default=30.0, description="HTTP request timeout in seconds.")
    max_retries: int = Field(default=10, ge=1, description="Total fetch attempts per entity.")
    validate_max_retries: int = Field(default=5, ge=1, description="Total fetch attempts in --validate mode.")
    user_agent: str = Field(default="salesindex/0.1.0", description="User-Agent string for HTTP requests.")
    checkpoint_interval: int = Field(default=100, ge=1, description="Entities between checkpoints.")
    auto_resume: bool = Field(default=True, description="Resume from an existing checkpoint without --resume.")
    retry_failed: bool = Field(default=False, description="Re-attempt previously failed entities on resume.")


class RateLimiterConfig(BaseModel):
    """Adaptive inter-request delay. All delays are in milliseconds."""

    initial_delay_ms: float = 1000
    min_delay_ms: float = 500
    max_delay_ms: float = 10000
    success_streak_target: int = Field(default=10, ge=1)
    success_step_ms: float = 50
    rate_limit_multiplier: float = 2.0
    error_multiplier: float = 1.5
    circuit_breaker_threshold: int = Field(default=5, ge=1)

    @model_validator(mode="after")
    def validate_bounds(self) -> "RateLimiterConfig":
        if not self.min_delay_ms <= self.initial_delay_ms <= self.max_delay_ms:
            raise ValueError("rate limiter delays must satisfy min_delay_ms <= initial_delay_ms <= max_delay_ms")
        return self


class ExtractionConfig(BaseModel):
    """Trade extraction and price normalization rules."""

    trade_event_type: int = 2
    min_secondary_price: float = Field(default=0.8, description="Trades below this XCH price are dropped.")
    mojo_threshold: float = Field(default=1e9, description="Integer prices at or above this are mojos.")
    mojo_per_xch: float = 1e12
    extreme_floor_multiple: float = 50.0
    unmapped_sample_size: int = 200


class MonitoringConfig(BaseModel):
    """Configuration for logging and metrics."""

    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: Optional[str] = Field(default=None, description="Optional JSON build log in addition to console.")
    prometheus_port: Optional[int] = Field(default=None, description="Port for Prometheus exporter. None disables.")

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)


# --- Main Configuration Class ---


class Config(BaseSettings):
    project_name: str = "salesindex"
    collection: CollectionConfig = Field(default_factory=CollectionConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    rate_limiter: RateLimiterConfig = Field(default_factory=RateLimiterConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(env_prefix="SALESINDEX_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        log.debug("Loading configuration from YAML file: %s", path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls()
        return cls(**yaml_data)


def find_config_file() -> Path | None:
    current_dir = Path.cwd()
    for path in (current_dir / "salesindex.yaml", current_dir / "salesindex.yml"):
        if path.exists():
            return path
    return None


def load_config(path: Optional[Path] = None) -> Config:
    """Load configuration from an explicit YAML file, a discovered one, or defaults plus environment."""
    config_path = path or find_config_file()
    if config_path:
        log.info("Loading configuration from: %s", config_path)
        return Config.from_yaml(config_path)
    return Config()
