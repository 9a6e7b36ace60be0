"""
salesindex - Checkpointed sales index builder for a single NFT collection.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .config import Config
from .container import DependencyContainer
from .pipeline import CrawlOrchestrator

__all__ = ["__version__", "Config", "DependencyContainer", "CrawlOrchestrator"]
