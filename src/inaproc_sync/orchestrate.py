from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from .api_client import ApiClient
from .dedupe import collect_keys, merge_records
from .errors import AlreadyInProgress, TerminalRequestError
from .keys import KeySpec, resolve_key_fields
from .logging_utils import get_logger, log_json
from .sync_state import SyncStateStore
from .table_store import SyncUnit, TableStore


VERIFIED = "verified"
MISMATCH = "mismatch"
UNCHECKED = "unchecked"


@dataclass
class PageResult:
    records: List[Dict[str, Any]]
    next_cursor: Optional[str] = None
    has_more: bool = False


@dataclass
class CommitResult:
    new_records: int
    duplicates_skipped: int
    total_records: int
    location: str


@dataclass
class SyncResult:
    success: bool
    dataset_id: str
    period: str
    new_records: int = 0
    duplicates_skipped: int = 0
    total_records: int = 0
    storage_location: str = ""
    is_complete: bool = False
    pages_fetched: int = 0
    verification_status: str = UNCHECKED
    error: Optional[str] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "success": self.success,
            "endpoint": self.dataset_id,
            "year": self.period,
            "newRecords": self.new_records,
            "duplicatesSkipped": self.duplicates_skipped,
            "totalRecords": self.total_records,
            "filePath": self.storage_location,
            "isComplete": self.is_complete,
            "pagesFetched": self.pages_fetched,
            "verificationStatus": self.verification_status,
        }
        if self.error:
            out["error"] = self.error
            out["errorKind"] = self.error_kind
        return out


def normalize_page(payload: Any) -> PageResult:
    """Fold both response shapes into one page.

    A bare list is the whole dataset with no pagination. An envelope carries
    ``data`` plus a cursor (``cursor`` or ``meta.cursor``) and optionally
    ``has_more``; without ``has_more`` a cursor alone means more pages.
    """
    if isinstance(payload, list):
        records = payload
        next_cursor = None
        has_more = False
    elif isinstance(payload, dict):
        records = payload.get("data")
        if records is None:
            records = []
        meta = payload.get("meta") if isinstance(payload.get("meta"), dict) else {}
        next_cursor = payload.get("cursor") or meta.get("cursor") or None
        has_more = payload.get("has_more", meta.get("has_more"))
        has_more = bool(next_cursor) if has_more is None else bool(has_more)
    else:
        raise TerminalRequestError(f"Malformed response: expected list or object, got {type(payload).__name__}")
    if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
        raise TerminalRequestError("Malformed response: 'data' must be a list of objects")
    if next_cursor is not None:
        next_cursor = str(next_cursor)
    return PageResult(records=records, next_cursor=next_cursor, has_more=has_more)


class SyncOrchestrator:
    """Runs one bounded synchronization invocation for a (dataset, period) unit.

    An invocation resumes from the stored cursor when the backing table still
    exists, fetches up to ``max_pages`` pages, then commits everything fetched
    in a single merge-and-rewrite. Cursor state is written only after the
    table is durable, so a re-invocation with the same arguments continues
    where this one stopped.
    """

    def __init__(
        self,
        api: ApiClient,
        tables: TableStore,
        states: SyncStateStore,
        period_param: str = "tahun",
        extra_params: Optional[Dict[str, Any]] = None,
        page_delay_seconds: float = 0.2,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api = api
        self.tables = tables
        self.states = states
        self.period_param = period_param
        self.extra_params = dict(extra_params or {})
        self.page_delay_seconds = page_delay_seconds
        self.logger = logger or get_logger()
        self._in_flight: Set[SyncUnit] = set()

    def in_flight(self, dataset_id: str, period: str) -> bool:
        return SyncUnit(dataset_id, str(period)) in self._in_flight

    def build_params(self, period: str, batch_size: int, cursor: Optional[str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": batch_size, self.period_param: period}
        params.update(self.extra_params)
        if cursor:
            params["cursor"] = cursor
        return params

    async def sync(self, dataset_id: str, period: str, batch_size: int = 100, max_pages: int = 10) -> SyncResult:
        if batch_size < 1 or max_pages < 1:
            raise ValueError("batch_size and max_pages must be >= 1")
        unit = SyncUnit(dataset_id, str(period))
        if unit in self._in_flight:
            log_json(self.logger, "sync_rejected_in_progress", level="warning", unit=str(unit))
            raise AlreadyInProgress(dataset_id, str(period))
        self._in_flight.add(unit)
        try:
            return await self._run(unit, batch_size, max_pages)
        finally:
            self._in_flight.discard(unit)

    async def _run(self, unit: SyncUnit, batch_size: int, max_pages: int) -> SyncResult:
        state = await asyncio.to_thread(self.states.get, unit.dataset_id, unit.period)
        info = await asyncio.to_thread(self.tables.info, unit)

        cursor: Optional[str] = None
        if info.exists and state and state.last_cursor:
            cursor = state.last_cursor
            log_json(self.logger, "sync_resume", unit=str(unit), total_records=state.total_records)
        elif not info.exists and state and state.total_records:
            log_json(
                self.logger,
                "sync_recover_missing_file",
                level="warning",
                unit=str(unit),
                claimed_records=state.total_records,
                path=info.location,
            )
        else:
            log_json(self.logger, "sync_start", unit=str(unit))

        key_spec = resolve_key_fields(unit.dataset_id)
        pending: List[Dict[str, Any]] = []
        pages = 0
        complete = False
        error: Optional[str] = None
        error_kind: Optional[str] = None

        while pages < max_pages:
            params = self.build_params(unit.period, batch_size, cursor)
            try:
                payload = await self.api.get_json(unit.dataset_id, params=params)
                page = normalize_page(payload)
            except Exception as exc:
                error = f"Sync interrupted: {exc}"
                error_kind = getattr(exc, "kind", "unexpected")
                log_json(
                    self.logger,
                    "sync_interrupted",
                    level="error",
                    unit=str(unit),
                    page=pages + 1,
                    error=str(exc),
                    kind=error_kind,
                )
                break
            pages += 1
            if not page.records:
                complete = True
                cursor = None
                break
            pending.extend(page.records)
            log_json(self.logger, "sync_page", unit=str(unit), page=pages, rows=len(page.records), has_more=page.has_more)
            if not page.has_more or not page.next_cursor:
                complete = True
                cursor = None
                break
            cursor = page.next_cursor
            if pages < max_pages and self.page_delay_seconds > 0:
                await asyncio.sleep(self.page_delay_seconds)

        result = SyncResult(
            success=True,
            dataset_id=unit.dataset_id,
            period=unit.period,
            total_records=info.record_count,
            storage_location=info.location,
            is_complete=complete,
            pages_fetched=pages,
            error=error,
            error_kind=error_kind,
        )

        if pending:
            try:
                commit = await asyncio.to_thread(self._commit, unit, key_spec, pending)
            except Exception as exc:
                log_json(self.logger, "sync_commit_failed", level="error", unit=str(unit), error=str(exc))
                result.success = False
                result.is_complete = False
                result.error = f"Commit failed: {exc}"
                result.error_kind = "storage"
                return result
            result.new_records = commit.new_records
            result.duplicates_skipped = commit.duplicates_skipped
            result.total_records = commit.total_records
            result.storage_location = commit.location
            log_json(
                self.logger,
                "sync_commit",
                unit=str(unit),
                new_records=commit.new_records,
                duplicates_skipped=commit.duplicates_skipped,
                total_records=commit.total_records,
            )

        if pending or (complete and state is not None):
            try:
                await asyncio.to_thread(
                    self.states.update,
                    unit.dataset_id,
                    unit.period,
                    last_cursor=None if complete else cursor,
                    total_records=result.total_records,
                    storage_location=result.storage_location,
                )
            except OSError as exc:
                log_json(self.logger, "sync_state_write_failed", level="error", unit=str(unit), error=str(exc))
                result.success = False
                result.is_complete = False
                result.error = f"State update failed: {exc}"
                result.error_kind = "state"
                return result

        if complete:
            result.verification_status = await self._verify(unit, result.total_records)
        return result

    def _commit(self, unit: SyncUnit, key_spec: KeySpec, pending: List[Dict[str, Any]]) -> CommitResult:
        table = self.tables.load(unit)
        stale_spec = table.key_fields != key_spec
        existing_keys = collect_keys(table.records, key_spec) if stale_spec else table.keys
        merged = merge_records(existing_keys, key_spec, pending)
        all_records = table.records + merged.unique
        if merged.unique or not table.records or stale_spec:
            location = self.tables.persist(unit, all_records, key_spec)
        else:
            location = self.tables.location(unit)
        return CommitResult(
            new_records=len(merged.unique),
            duplicates_skipped=merged.duplicate_count,
            total_records=len(all_records),
            location=location,
        )

    async def _verify(self, unit: SyncUnit, expected: int) -> str:
        info = await asyncio.to_thread(self.tables.info, unit)
        if info.record_count == expected:
            return VERIFIED
        log_json(
            self.logger,
            "sync_verify_mismatch",
            level="warning",
            unit=str(unit),
            state_records=expected,
            file_records=info.record_count,
        )
        return MISMATCH
