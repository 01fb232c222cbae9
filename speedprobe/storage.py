"""JSON-file persistence: measurement history and the last scan.

Both stores treat an unreadable file as empty and log a warning; a
failed write is logged and re-raised.
"""

from __future__ import annotations

import json
import logging
import os
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Union

import click

from speedprobe.config import (
    APP_NAME,
    HISTORY_FILENAME,
    MAX_HISTORY_ITEMS,
    SCAN_CACHE_FILENAME,
    SCAN_CACHE_MAX_AGE,
)
from speedprobe.export import result_from_dict, result_to_dict, scan_from_dict, scan_to_dict
from speedprobe.models import HistoryStatistics, MeasurementResult, ScanResult
from speedprobe.stats import mean

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def default_data_dir() -> Path:
    """Per-user application directory (e.g. ``~/.config/speedprobe``)."""
    return Path(click.get_app_dir(APP_NAME))


def _read_json(path: Path):
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return None


def _write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, path)
    except OSError as exc:
        logger.warning("Could not write %s: %s", path, exc)
        raise


def summarize_history(results: list[MeasurementResult]) -> HistoryStatistics:
    """Aggregate statistics over *results* (any order)."""
    if not results:
        return HistoryStatistics()

    timestamps = sorted(r.timestamp for r in results)
    return HistoryStatistics(
        total_tests=len(results),
        average_download_mbps=mean([r.download_mbps for r in results]),
        average_upload_mbps=mean([r.upload_mbps for r in results]),
        average_ping_ms=mean([r.ping_ms for r in results]),
        average_jitter_ms=mean([r.jitter_ms for r in results]),
        max_download_mbps=max(r.download_mbps for r in results),
        max_upload_mbps=max(r.upload_mbps for r in results),
        min_ping_ms=min(r.ping_ms for r in results),
        connection_type_breakdown=dict(Counter(r.connection_type for r in results)),
        quality_breakdown=dict(Counter(r.quality for r in results)),
        first_timestamp=timestamps[0],
        last_timestamp=timestamps[-1],
    )


class HistoryStore:
    """Newest-first list of measurement results, capped at ``max_items``."""

    def __init__(self, path: Optional[PathLike] = None, max_items: int = MAX_HISTORY_ITEMS):
        self.path = Path(path) if path else default_data_dir() / HISTORY_FILENAME
        self.max_items = max_items

    def _load(self) -> list[MeasurementResult]:
        data = _read_json(self.path)
        if not isinstance(data, list):
            return []
        results = []
        for entry in data:
            try:
                results.append(result_from_dict(entry))
            except (KeyError, ValueError, TypeError) as exc:
                logger.warning("Skipping malformed history entry: %s", exc)
        return results

    def _save(self, results: list[MeasurementResult]) -> None:
        _write_json(self.path, [result_to_dict(r) for r in results[: self.max_items]])

    def add(self, result: MeasurementResult) -> None:
        results = self._load()
        results.insert(0, result)
        self._save(results)
        logger.info("Saved result %s to %s", result.id, self.path)

    def all(self) -> list[MeasurementResult]:
        return self._load()

    def recent(self, count: int) -> list[MeasurementResult]:
        return self._load()[: max(count, 0)]

    def get(self, result_id: str) -> Optional[MeasurementResult]:
        return next((r for r in self._load() if r.id == result_id), None)

    def delete(self, result_id: str) -> bool:
        """Remove one result; returns False if the id is unknown."""
        results = self._load()
        kept = [r for r in results if r.id != result_id]
        if len(kept) == len(results):
            return False
        self._save(kept)
        return True

    def clear(self) -> None:
        self._save([])

    def delete_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        """Drop results older than *days*; returns how many were removed."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        results = self._load()
        kept = [r for r in results if r.timestamp >= cutoff]
        removed = len(results) - len(kept)
        if removed:
            self._save(kept)
        return removed

    def statistics(self) -> HistoryStatistics:
        return summarize_history(self._load())


class ScanCache:
    """Holds the most recent scan while it is still fresh."""

    def __init__(self, path: Optional[PathLike] = None, max_age: float = SCAN_CACHE_MAX_AGE):
        self.path = Path(path) if path else default_data_dir() / SCAN_CACHE_FILENAME
        self.max_age = max_age

    def save(self, scan: ScanResult) -> None:
        _write_json(self.path, scan_to_dict(scan))

    def load(self, now: Optional[datetime] = None) -> Optional[ScanResult]:
        """The cached scan, or None if missing, unreadable or stale."""
        data = _read_json(self.path)
        if not isinstance(data, dict):
            return None
        try:
            scan = scan_from_dict(data)
        except (KeyError, ValueError, TypeError) as exc:
            logger.warning("Ignoring malformed scan cache: %s", exc)
            return None
        if not scan.is_fresh(self.max_age, now):
            logger.debug("Cached scan is %.0fs old; ignoring", scan.age_seconds(now))
            return None
        return scan

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
