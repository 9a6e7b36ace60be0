"""
Atomic file writing utilities.

Readers of the index, the checkpoint and the error log must never observe a
partially written file, so every write goes to a temporary file in the target
directory which is then renamed over the target.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


def atomic_write_text(target_path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    Atomically replace ``target_path`` with ``content``.

    The temporary file lives next to the target so that ``os.replace`` stays on
    one filesystem and is atomic on both POSIX and Windows.

    Raises:
        OSError: If the file cannot be written or renamed.
    """
    target_path = Path(target_path)
    target_path.parent.mkdir(parents=True, exist_ok=True)

    temp_file_path = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=target_path.parent,
            prefix=f".{target_path.name}.",
            suffix=".tmp",
            delete=False,
            encoding=encoding,
        ) as temp_file:
            temp_file_path = Path(temp_file.name)
            temp_file.write(content)
            temp_file.flush()
            os.fsync(temp_file.fileno())

        os.replace(str(temp_file_path), str(target_path))
        logger.debug("Atomic write completed", target=str(target_path), size=len(content))
    finally:
        if temp_file_path and temp_file_path.exists():
            try:
                temp_file_path.unlink()
                logger.debug("Cleaned up temporary file", temp_file=str(temp_file_path))
            except OSError as cleanup_error:
                logger.warning(
                    "Failed to clean up temporary file", temp_file=str(temp_file_path), error=str(cleanup_error)
                )


def atomic_write_json(target_path: Path, data: Any, indent: int = 2) -> None:
    """
    Atomically write ``data`` as pretty-printed JSON with a trailing newline.

    Raises:
        ValueError: If data cannot be serialized to JSON.
        OSError: If the file cannot be written.
    """
    try:
        json_content = json.dumps(data, indent=indent, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.error("Failed to serialize data to JSON", target=str(target_path), error=str(e))
        raise ValueError(f"Cannot serialize data to JSON: {e}") from e

    atomic_write_text(target_path, json_content + "\n")
