from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .api_client import ApiClient, ApiConfig
from .catalog import DATASETS, is_syncable, syncable_datasets
from .config import Config, get_api_token
from .errors import AlreadyInProgress
from .logging_utils import log_json
from .orchestrate import SyncOrchestrator, SyncResult
from .status import StatusReconciler
from .sync_state import ScheduleConfig, SyncStateStore, validate_schedule_patch
from .table_store import build_table_store


class SyncService:
    """Entry points used by the CLI and any route layer in front of it."""

    def __init__(
        self,
        config: Config,
        logger: logging.Logger,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.logger = logger
        self.tables = build_table_store(config.storage_format, config.base_path, logger)
        self.states = SyncStateStore(config.state_path, logger)
        api_cfg = ApiConfig(**config.api)
        self.api = ApiClient(token or get_api_token(), api_cfg, transport=transport)
        self.api.set_logger(self.logger)
        self.orchestrator = SyncOrchestrator(
            self.api,
            self.tables,
            self.states,
            period_param=api_cfg.period_param,
            extra_params=api_cfg.extra_params,
            page_delay_seconds=float(config.sync["page_delay_seconds"]),
            logger=logger,
        )
        self.reconciler = StatusReconciler(self.tables, self.states, logger)

    async def close(self) -> None:
        await self.api.close()

    async def sync(
        self,
        dataset_id: str,
        period: str,
        batch_size: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> SyncResult:
        period = str(period)
        if not is_syncable(dataset_id):
            log_json(self.logger, "sync_rejected_not_syncable", level="warning", dataset=dataset_id)
            return SyncResult(
                success=False,
                dataset_id=dataset_id,
                period=period,
                error=f"{dataset_id} requires additional parameters and cannot be synced",
                error_kind="not_syncable",
            )
        try:
            return await self.orchestrator.sync(
                dataset_id,
                period,
                batch_size=batch_size or int(self.config.sync["batch_size"]),
                max_pages=max_pages or int(self.config.sync["max_pages"]),
            )
        except AlreadyInProgress as exc:
            return SyncResult(
                success=False,
                dataset_id=dataset_id,
                period=period,
                error=str(exc),
                error_kind=exc.kind,
            )

    async def sync_until_complete(
        self,
        dataset_id: str,
        period: str,
        batch_size: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> SyncResult:
        """Re-invoke ``sync`` until the unit completes, errors, or the invocation cap is hit."""
        max_invocations = int(self.config.sync["max_invocations"])
        delay = float(self.config.sync["invocation_delay_seconds"])
        new_records = 0
        duplicates = 0
        pages = 0
        result = None
        for invocation in range(1, max_invocations + 1):
            result = await self.sync(dataset_id, period, batch_size=batch_size, max_pages=max_pages)
            new_records += result.new_records
            duplicates += result.duplicates_skipped
            pages += result.pages_fetched
            if result.is_complete or result.error:
                break
            log_json(
                self.logger,
                "sync_continue",
                dataset=dataset_id,
                period=str(period),
                invocation=invocation,
                total_records=result.total_records,
            )
            if delay > 0:
                await asyncio.sleep(delay)
        result.new_records = new_records
        result.duplicates_skipped = duplicates
        result.pages_fetched = pages
        return result

    async def sync_range(
        self,
        start_period: int,
        end_period: int,
        datasets: Optional[Sequence[str]] = None,
    ) -> List[SyncResult]:
        if end_period < start_period:
            raise ValueError("end period must be >= start period")
        targets = list(datasets) if datasets else [spec.id for spec in syncable_datasets()]
        results: List[SyncResult] = []
        for period in range(start_period, end_period + 1):
            for dataset_id in targets:
                result = await self.sync_until_complete(dataset_id, str(period))
                results.append(result)
                log_json(
                    self.logger,
                    "range_unit_done",
                    dataset=dataset_id,
                    period=period,
                    complete=result.is_complete,
                    error=result.error,
                )
        return results

    async def sync_status(
        self,
        dataset_id: Optional[str] = None,
        period: Optional[str] = None,
        verify: bool = True,
    ) -> Dict[str, Any]:
        if dataset_id and period:
            return await self.reconciler.unit_status(dataset_id, str(period))
        report = await self.reconciler.list_all(verify=verify)
        if dataset_id:
            report = [status for status in report if status.dataset_id == dataset_id]
        schedule = await asyncio.to_thread(self.states.get_schedule)
        return {
            "endpoints": [status.to_dict() for status in report],
            "schedule": schedule.to_dict(),
            "basePath": self.config.base_path,
        }

    def get_schedule(self) -> Dict[str, Any]:
        return {"schedule": self.states.get_schedule().to_dict(), "isDue": self.states.is_due()}

    def update_schedule(self, patch: Dict[str, Any]) -> ScheduleConfig:
        changes = validate_schedule_patch(patch, (spec.id for spec in DATASETS))
        schedule = self.states.update_schedule(**changes)
        log_json(self.logger, "schedule_updated", changes=changes)
        return schedule

    def mark_schedule_run(self) -> ScheduleConfig:
        return self.states.mark_schedule_run()

    async def run_scheduled(self, start_period: int, end_period: Optional[int] = None) -> Optional[List[SyncResult]]:
        if not self.states.is_due():
            log_json(self.logger, "schedule_not_due")
            return None
        schedule = self.states.get_schedule()
        results = await self.sync_range(
            start_period,
            end_period if end_period is not None else start_period,
            datasets=schedule.datasets or None,
        )
        self.mark_schedule_run()
        return results
