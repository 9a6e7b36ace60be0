from .config import (
    CollectionConfig,
    Config,
    CrawlerConfig,
    ExtractionConfig,
    MonitoringConfig,
    PathsConfig,
    RateLimiterConfig,
    ValidationEntity,
    find_config_file,
    load_config,
)

__all__ = [
    "CollectionConfig",
    "Config",
    "CrawlerConfig",
    "ExtractionConfig",
    "MonitoringConfig",
    "PathsConfig",
    "RateLimiterConfig",
    "ValidationEntity",
    "find_config_file",
    "load_config",
]
