"""
Classification and persistence of per-entity fetch failures.
"""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from salesindex.protocols import ErrorType, FetchError, HttpError, NetworkError, RateLimitError
from salesindex.utils.atomic import atomic_write_json

logger = structlog.get_logger(__name__)

ERROR_LOG_SCHEMA_VERSION = 1


def classify_error(error: BaseException) -> ErrorType:
    """Map an exception raised while fetching an entity onto the error taxonomy."""
    if isinstance(error, RateLimitError):
        return ErrorType.RATE_LIMIT
    if isinstance(error, HttpError):
        if error.status == 429:
            return ErrorType.RATE_LIMIT
        if 500 <= error.status < 600:
            return ErrorType.SERVER_ERROR
        return ErrorType.CLIENT_ERROR
    if isinstance(error, NetworkError):
        return ErrorType.NETWORK_ERROR
    return ErrorType.UNKNOWN


def retry_count_of(error: BaseException) -> int:
    """Retries spent before ``error`` was given up on."""
    if isinstance(error, FetchError):
        return max(0, error.attempts - 1)
    return 0


class ErrorRecord(BaseModel):
    launcher: str
    error_type: ErrorType
    error_message: str
    retry_count: int = 0
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class ErrorLogDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: Literal[1] = ERROR_LOG_SCHEMA_VERSION
    errors: List[ErrorRecord] = Field(default_factory=list)


class ErrorLog:
    """Append-only record of failed entities for one logical run."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.records: List[ErrorRecord] = []

    def __len__(self) -> int:
        return len(self.records)

    def add(self, launcher: str, error: BaseException, error_type: Optional[ErrorType] = None) -> ErrorRecord:
        record = ErrorRecord(
            launcher=launcher,
            error_type=error_type or classify_error(error),
            error_message=str(error),
            retry_count=retry_count_of(error),
        )
        self.records.append(record)
        return record

    def failed_launchers(self) -> List[str]:
        return [record.launcher for record in self.records]

    def load(self) -> int:
        """Replace the in-memory log with the persisted one. Returns the number of records."""
        if not self.path.is_file():
            self.records = []
            return 0
        try:
            document = ErrorLogDocument.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Failed to read error log, starting empty", path=str(self.path), error=str(e))
            self.records = []
            return 0
        self.records = list(document.errors)
        return len(self.records)

    def save(self) -> bool:
        """Atomically persist the whole log. Returns False (and logs) on failure."""
        document = ErrorLogDocument(errors=self.records)
        try:
            atomic_write_json(self.path, document.model_dump(mode="json"))
        except (OSError, ValueError) as e:
            logger.error("Failed to save error log", path=str(self.path), error=str(e))
            return False
        logger.debug("Error log saved", path=str(self.path), errors=len(self.records))
        return True

    def get_stats(self) -> Dict[str, Any]:
        by_type = Counter(record.error_type.value for record in self.records)
        by_retry_count = Counter(str(record.retry_count) for record in self.records)
        return {
            "total": len(self.records),
            "by_type": dict(sorted(by_type.items())),
            "by_retry_count": dict(sorted(by_retry_count.items(), key=lambda item: int(item[0]))),
        }
