"""
Single-slot checkpoint persistence for resumable crawls.

A checkpoint captures everything the orchestrator needs to continue a run as if
it had never stopped: which entities were handled, every accepted record, the
dedupe keys, the counters and the rate limiter state. Snapshots carry a schema
version and reject unknown fields, so a file written by an incompatible build
is refused instead of being half-understood.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from salesindex.crawler.rate_limiter import RateLimiterState
from salesindex.extractor.models import TradeRecord
from salesindex.observability import increment
from salesindex.utils.atomic import atomic_write_json

logger = structlog.get_logger(__name__)

CHECKPOINT_SCHEMA_VERSION = 1


class CheckpointSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: Literal[1] = CHECKPOINT_SCHEMA_VERSION
    collection_id: str
    processed_launchers: List[str] = Field(default_factory=list)
    failed_launchers: List[str] = Field(default_factory=list)
    trades: List[TradeRecord] = Field(default_factory=list)
    seen_keys: List[str] = Field(default_factory=list)
    next_index: int = 0
    processed_count: int = 0
    success_count: int = 0
    error_count: int = 0
    trades_found: int = 0
    rate_limiter: RateLimiterState
    saved_at: Optional[str] = None


class CheckpointStore:
    """Reads and writes the checkpoint file. Never raises on I/O problems."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Optional[CheckpointSnapshot]:
        """Return the stored snapshot, or None when it is missing, unreadable or incompatible."""
        if not self.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Failed to read checkpoint, ignoring it", path=str(self.path), error=str(e))
            return None

        try:
            snapshot = CheckpointSnapshot.model_validate(data)
        except ValidationError as e:
            logger.error(
                "Checkpoint does not match the expected schema, ignoring it",
                path=str(self.path),
                expected_version=CHECKPOINT_SCHEMA_VERSION,
                found_version=data.get("schema_version") if isinstance(data, dict) else None,
                errors=e.error_count(),
            )
            return None

        logger.info(
            "Checkpoint loaded",
            path=str(self.path),
            saved_at=snapshot.saved_at,
            processed=snapshot.processed_count,
            trades=len(snapshot.trades),
        )
        return snapshot

    def save(self, snapshot: CheckpointSnapshot) -> bool:
        """Atomically overwrite the checkpoint. Returns False (and logs) on failure."""
        snapshot.saved_at = datetime.now(timezone.utc).isoformat()
        try:
            atomic_write_json(self.path, snapshot.model_dump(mode="json"))
        except (OSError, ValueError) as e:
            logger.error("Failed to save checkpoint", path=str(self.path), error=str(e))
            return False
        increment("checkpoints_saved")
        logger.debug("Checkpoint saved", path=str(self.path), processed=snapshot.processed_count)
        return True

    def clear(self) -> bool:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to delete checkpoint", path=str(self.path), error=str(e))
            return False
        logger.debug("Checkpoint cleared", path=str(self.path))
        return True
