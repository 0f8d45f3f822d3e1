from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from .logging_utils import get_logger, log_json
from .utils import isoformat, parse_timestamp, utcnow


CADENCES = {
    "daily": timedelta(hours=24),
    "weekly": timedelta(hours=168),
}


@dataclass
class SyncState:
    last_cursor: Optional[str] = None
    last_sync_date: Optional[str] = None
    total_records: int = 0
    storage_location: str = ""

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "SyncState":
        return cls(
            last_cursor=raw.get("lastCursor"),
            last_sync_date=raw.get("lastSyncDate"),
            total_records=int(raw.get("totalRecords") or 0),
            storage_location=raw.get("storageLocation") or raw.get("filePath") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastCursor": self.last_cursor,
            "lastSyncDate": self.last_sync_date,
            "totalRecords": self.total_records,
            "storageLocation": self.storage_location,
        }


@dataclass
class ScheduleConfig:
    enabled: bool = False
    cadence: str = "daily"
    last_run: Optional[str] = None
    datasets: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ScheduleConfig":
        return cls(
            enabled=bool(raw.get("enabled", False)),
            cadence=raw.get("type") or raw.get("cadence") or "daily",
            last_run=raw.get("lastRun"),
            datasets=list(raw.get("endpoints") or raw.get("datasets") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "type": self.cadence,
            "lastRun": self.last_run,
            "endpoints": list(self.datasets),
        }


_STATE_FIELDS = {
    "last_cursor": "lastCursor",
    "total_records": "totalRecords",
    "storage_location": "storageLocation",
}


def schedule_is_due(schedule: ScheduleConfig, now: Optional[datetime] = None) -> bool:
    """A never-run schedule is due; otherwise due once a full cadence interval has elapsed."""
    if not schedule.last_run:
        return True
    now = now or utcnow()
    interval = CADENCES.get(schedule.cadence, CADENCES["daily"])
    return now - parse_timestamp(schedule.last_run) >= interval


def validate_schedule_patch(patch: Dict[str, Any], known_datasets: Iterable[str]) -> Dict[str, Any]:
    known = set(known_datasets)
    out: Dict[str, Any] = {}
    if isinstance(patch.get("enabled"), bool):
        out["enabled"] = patch["enabled"]
    cadence = patch.get("cadence", patch.get("type"))
    if cadence in CADENCES:
        out["cadence"] = cadence
    datasets = patch.get("datasets", patch.get("endpoints"))
    if isinstance(datasets, list):
        out["datasets"] = [ds for ds in datasets if ds in known]
    return out


class SyncStateStore:
    """Cursor state per (dataset, period) plus the schedule, in one JSON document.

    Every operation loads the whole document, mutates it and writes it back.
    Mutations hold an in-process lock because units synced side by side still
    share this one document.
    """

    def __init__(self, path: str, logger: Optional[logging.Logger] = None) -> None:
        self.path = path
        self.logger = logger or get_logger()
        self._lock = threading.RLock()

    def _default_document(self) -> Dict[str, Any]:
        return {"syncState": {}, "schedule": ScheduleConfig().to_dict()}

    def load_document(self) -> Dict[str, Any]:
        doc = self._default_document()
        if not os.path.exists(self.path):
            return doc
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                parsed = json.load(f)
        except (OSError, ValueError) as exc:
            log_json(self.logger, "sync_state_unreadable", level="warning", path=self.path, error=str(exc))
            return doc
        if isinstance(parsed, dict):
            doc.update({k: v for k, v in parsed.items() if v is not None})
        return doc

    def save_document(self, doc: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2, default=str)
        os.replace(tmp_path, self.path)

    def get(self, dataset_id: str, period: str) -> Optional[SyncState]:
        raw = self.load_document()["syncState"].get(dataset_id, {}).get(period)
        if not raw:
            return None
        return SyncState.from_dict(raw)

    def update(self, dataset_id: str, period: str, **changes: Any) -> SyncState:
        unknown = set(changes) - set(_STATE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown sync state fields: {sorted(unknown)}")
        with self._lock:
            doc = self.load_document()
            per_dataset = doc["syncState"].setdefault(dataset_id, {})
            current = per_dataset.get(period) or SyncState().to_dict()
            for name, value in changes.items():
                current[_STATE_FIELDS[name]] = value
            current["lastSyncDate"] = isoformat(utcnow())
            per_dataset[period] = current
            self.save_document(doc)
        return SyncState.from_dict(current)

    def reset(self, dataset_id: str, period: str) -> bool:
        with self._lock:
            doc = self.load_document()
            per_dataset = doc["syncState"].get(dataset_id)
            if not per_dataset or period not in per_dataset:
                return False
            del per_dataset[period]
            if not per_dataset:
                del doc["syncState"][dataset_id]
            self.save_document(doc)
        log_json(self.logger, "sync_state_reset", dataset=dataset_id, period=period)
        return True

    def all_states(self) -> Dict[str, Dict[str, SyncState]]:
        raw = self.load_document()["syncState"]
        return {
            dataset_id: {period: SyncState.from_dict(state) for period, state in periods.items()}
            for dataset_id, periods in raw.items()
        }

    def get_schedule(self) -> ScheduleConfig:
        return ScheduleConfig.from_dict(self.load_document()["schedule"])

    def update_schedule(self, **changes: Any) -> ScheduleConfig:
        with self._lock:
            doc = self.load_document()
            schedule = ScheduleConfig.from_dict(doc["schedule"])
            current = asdict(schedule)
            unknown = set(changes) - set(current)
            if unknown:
                raise ValueError(f"Unknown schedule fields: {sorted(unknown)}")
            current.update(changes)
            schedule = ScheduleConfig(**current)
            doc["schedule"] = schedule.to_dict()
            self.save_document(doc)
        return schedule

    def mark_schedule_run(self, now: Optional[datetime] = None) -> ScheduleConfig:
        return self.update_schedule(last_run=isoformat(now or utcnow()))

    def is_due(self, now: Optional[datetime] = None) -> bool:
        schedule = self.get_schedule()
        return schedule.enabled and schedule_is_due(schedule, now)
