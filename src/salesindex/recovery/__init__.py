"""Checkpointing and failure bookkeeping."""

from .checkpoint import CheckpointSnapshot, CheckpointStore
from .error_log import ErrorLog, ErrorRecord, classify_error

__all__ = ["CheckpointSnapshot", "CheckpointStore", "ErrorLog", "ErrorRecord", "classify_error"]
