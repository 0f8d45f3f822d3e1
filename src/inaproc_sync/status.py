from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .catalog import DATASETS, dataset_label
from .logging_utils import get_logger, log_json
from .sync_state import SyncState, SyncStateStore
from .table_store import SyncUnit, TableStore
from .utils import parse_timestamp


@dataclass
class PeriodStatus:
    period: str
    state: SyncState
    file_exists: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"year": self.period, "state": self.state.to_dict(), "fileExists": self.file_exists}


@dataclass
class DatasetStatus:
    dataset_id: str
    label: str
    periods: List[PeriodStatus] = field(default_factory=list)
    last_synced_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint": self.dataset_id,
            "label": self.label,
            "years": [p.to_dict() for p in self.periods],
            "lastSynced": self.last_synced_at,
        }


def _latest(periods: List[PeriodStatus]) -> Optional[str]:
    stamps = [p.state.last_sync_date for p in periods if p.state.last_sync_date]
    if not stamps:
        return None
    return max(stamps, key=parse_timestamp)


class StatusReconciler:
    """Cross-checks stored sync state against the tables actually on disk.

    With ``verify`` on, a unit whose state claims records but whose table is
    gone has its state reset and is left out of the report; existing tables
    report their on-disk row count instead of the recorded one.
    """

    def __init__(self, tables: TableStore, states: SyncStateStore, logger: Optional[logging.Logger] = None) -> None:
        self.tables = tables
        self.states = states
        self.logger = logger or get_logger()

    async def list_all(self, verify: bool = True) -> List[DatasetStatus]:
        all_states = await asyncio.to_thread(self.states.all_states)
        dataset_ids = [spec.id for spec in DATASETS]
        known = set(dataset_ids)
        dataset_ids += sorted(ds for ds in all_states if ds not in known)

        report: List[DatasetStatus] = []
        for dataset_id in dataset_ids:
            periods: List[PeriodStatus] = []
            for period, state in sorted(all_states.get(dataset_id, {}).items()):
                if not verify:
                    periods.append(PeriodStatus(period=period, state=state))
                    continue
                checked = await self._check(dataset_id, period, state)
                if checked is not None:
                    periods.append(checked)
            report.append(
                DatasetStatus(
                    dataset_id=dataset_id,
                    label=dataset_label(dataset_id),
                    periods=periods,
                    last_synced_at=_latest(periods),
                )
            )
        return report

    async def _check(self, dataset_id: str, period: str, state: SyncState) -> Optional[PeriodStatus]:
        unit = SyncUnit(dataset_id, period)
        info = await asyncio.to_thread(self.tables.info, unit)
        if not info.exists and state.total_records > 0:
            log_json(
                self.logger,
                "status_stale_state_reset",
                level="warning",
                unit=str(unit),
                claimed_records=state.total_records,
                path=info.location,
            )
            await asyncio.to_thread(self.states.reset, dataset_id, period)
            return None
        if info.exists:
            state = SyncState(
                last_cursor=state.last_cursor,
                last_sync_date=state.last_sync_date,
                total_records=info.record_count,
                storage_location=state.storage_location or info.location,
            )
        return PeriodStatus(period=period, state=state, file_exists=info.exists)

    async def unit_status(self, dataset_id: str, period: str) -> Dict[str, Any]:
        unit = SyncUnit(dataset_id, str(period))
        state = await asyncio.to_thread(self.states.get, dataset_id, unit.period)
        info = await asyncio.to_thread(self.tables.info, unit)
        schedule = await asyncio.to_thread(self.states.get_schedule)
        return {
            "endpoint": dataset_id,
            "year": unit.period,
            "state": state.to_dict() if state else None,
            "fileInfo": info.to_dict(),
            "schedule": schedule.to_dict(),
        }
