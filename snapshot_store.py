"""
JSON snapshot files for migration runs.

Every run gets a directory ``<base_dir>/<run_id>/`` where the run id is the
UTC start timestamp, so directory names sort chronologically. Snapshots are
written before any destructive operation and can be read back later.
"""

import csv
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

RUN_ID_FORMAT = "%Y%m%dT%H%M%SZ"


def new_run_id(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime(RUN_ID_FORMAT)


def _default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, set):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class SnapshotStore:
    """Reads and writes per-run JSON snapshots"""

    def __init__(self, base_dir: str = "data/exports", run_id: Optional[str] = None):
        self.base_dir = base_dir
        self.run_id = run_id or new_run_id()

    @property
    def run_dir(self) -> str:
        return os.path.join(self.base_dir, self.run_id)

    def path_for(self, name: str, run_id: Optional[str] = None) -> str:
        return os.path.join(self.base_dir, run_id or self.run_id, f"{name}.json")

    def save(self, name: str, data: Any) -> str:
        """Write ``data`` as ``<run_dir>/<name>.json`` and return the path"""
        path = self.path_for(name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=_default)
        logger.info(f"💾 Snapshot saved to {path}")
        return path

    def load(self, name: str, run_id: Optional[str] = None) -> Optional[Any]:
        """Read a snapshot back; None when it does not exist"""
        path = self.path_for(name, run_id)
        if not os.path.exists(path):
            logger.warning(f"Snapshot not found: {path}")
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def list_runs(self) -> List[str]:
        if not os.path.isdir(self.base_dir):
            return []
        return sorted(
            entry for entry in os.listdir(self.base_dir)
            if os.path.isdir(os.path.join(self.base_dir, entry))
        )

    def latest_run_id(self, exclude_current: bool = False) -> Optional[str]:
        runs = self.list_runs()
        if exclude_current:
            runs = [r for r in runs if r != self.run_id]
        return runs[-1] if runs else None

    def export_csv(self, name: str, headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
        """Write a CSV report next to the JSON snapshots"""
        path = os.path.join(self.run_dir, f"{name}.csv")
        os.makedirs(self.run_dir, exist_ok=True)
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(headers)
            for row in rows:
                writer.writerow(row)
        logger.info(f"📄 Report exported to {path}")
        return path


def record_summary(record) -> Dict[str, Any]:
    """Compact JSON-ready view of a Source/DestinationRecord, without the raw payload"""
    summary = {key: value for key, value in vars(record).items() if key != "raw"}
    for key in ("participants", "linked_references"):
        if key in summary:
            summary[key] = [vars(item) for item in summary[key]]
    return summary
