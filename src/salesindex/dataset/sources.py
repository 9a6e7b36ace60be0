"""
Loaders for the inputs produced by other tools: the launcher map and the offers index.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from salesindex.protocols import Entity, FatalPreconditionError

logger = structlog.get_logger(__name__)


def _is_canonical_index(key: str) -> bool:
    return key.isdigit() and str(int(key)) == key


def _ordered_ids(mapping: Dict[str, Any]) -> List[str]:
    """Canonical integer ids ascending, then every other id in file order."""
    numeric = sorted((key for key in mapping if _is_canonical_index(key)), key=int)
    others = [key for key in mapping if not _is_canonical_index(key)]
    return numeric + others


def entities_from_map(mapping: Dict[str, Any]) -> List[Entity]:
    """
    Build the crawl list from an ``internal_id -> launcher`` mapping.

    A launcher listed under several ids is crawled once; it keeps the position of
    its first id and is attributed to its last one.
    """
    by_launcher: Dict[str, str] = {}
    skipped = 0
    for internal_id in _ordered_ids(mapping):
        launcher = mapping[internal_id]
        if not isinstance(launcher, str) or not launcher:
            skipped += 1
            continue
        by_launcher[launcher] = internal_id

    if skipped:
        logger.warning("Skipped launcher map entries without a launcher", count=skipped)
    return [Entity(internal_id=internal_id, launcher=launcher) for launcher, internal_id in by_launcher.items()]


def load_launcher_map(path: Path) -> List[Entity]:
    """
    Read the launcher map file and return the entities to crawl.

    Raises:
        FatalPreconditionError: If the file is missing, is not JSON, or has no ``map`` object.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise FatalPreconditionError(f"Launcher map not found: {path}") from e
    except (OSError, ValueError) as e:
        raise FatalPreconditionError(f"Launcher map is unreadable: {path}: {e}") from e

    mapping = data.get("map") if isinstance(data, dict) else None
    if not isinstance(mapping, dict):
        raise FatalPreconditionError(f"Launcher map has no 'map' object: {path}")

    entities = entities_from_map(mapping)
    logger.info("Launcher map loaded", path=str(path), entries=len(mapping), entities=len(entities))
    return entities


def load_floor_price(path: Path) -> Optional[float]:
    """Return ``market_stats.floor_xch`` from the offers index, or None if unavailable."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.info("Offers index not found, extreme-price flag will ignore the floor", path=str(path))
        return None
    except (OSError, ValueError) as e:
        logger.warning("Offers index is unreadable, ignoring floor price", path=str(path), error=str(e))
        return None

    stats = data.get("market_stats") if isinstance(data, dict) else None
    floor = stats.get("floor_xch") if isinstance(stats, dict) else None
    if isinstance(floor, bool) or not isinstance(floor, (int, float)) or floor <= 0:
        logger.info("Offers index has no usable floor price", path=str(path))
        return None

    logger.info("Floor price loaded", floor_xch=float(floor))
    return float(floor)
