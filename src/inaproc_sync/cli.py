from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any

from .config import load_config
from .logging_utils import setup_logging
from .service import SyncService


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="inaproc-sync")
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync")
    sync.add_argument("--dataset", required=True, help="Dataset path, e.g. /v1/rup/paket-penyedia-terumumkan")
    sync.add_argument("--period", required=True, help="Year")
    sync.add_argument("--batch-size", type=int)
    sync.add_argument("--max-pages", type=int)
    sync.add_argument("--until-complete", action="store_true")

    range_ = sub.add_parser("range")
    range_.add_argument("--start", type=int, required=True)
    range_.add_argument("--end", type=int)
    range_.add_argument("--datasets", help="Comma-separated dataset paths; defaults to every syncable dataset")

    status = sub.add_parser("status")
    status.add_argument("--dataset")
    status.add_argument("--period")
    status.add_argument("--no-verify", action="store_true")

    schedule = sub.add_parser("schedule")
    schedule_sub = schedule.add_subparsers(dest="action", required=True)
    schedule_sub.add_parser("show")
    schedule_set = schedule_sub.add_parser("set")
    toggle = schedule_set.add_mutually_exclusive_group()
    toggle.add_argument("--enabled", dest="enabled", action="store_true", default=None)
    toggle.add_argument("--disabled", dest="enabled", action="store_false", default=None)
    schedule_set.add_argument("--cadence", choices=["daily", "weekly"])
    schedule_set.add_argument("--datasets", help="Comma-separated dataset paths")
    schedule_sub.add_parser("mark-run")

    scheduled = sub.add_parser("scheduled", help="Run the scheduled sync if it is due")
    scheduled.add_argument("--start", type=int, required=True)
    scheduled.add_argument("--end", type=int)

    return parser.parse_args(argv)


def _parse_list(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    return [x.strip() for x in raw.split(",") if x.strip()]


def _schedule_patch(args: argparse.Namespace) -> dict[str, Any]:
    patch: dict[str, Any] = {}
    if args.enabled is not None:
        patch["enabled"] = args.enabled
    if args.cadence:
        patch["cadence"] = args.cadence
    datasets = _parse_list(args.datasets)
    if datasets is not None:
        patch["datasets"] = datasets
    return patch


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    logger = setup_logging(args.log_level)
    cfg = load_config(args.config)
    service = SyncService(cfg, logger)

    async def _run() -> None:
        try:
            if args.command == "sync":
                if args.until_complete:
                    result = await service.sync_until_complete(args.dataset, args.period, args.batch_size, args.max_pages)
                else:
                    result = await service.sync(args.dataset, args.period, args.batch_size, args.max_pages)
                _emit(result.to_dict())
            elif args.command == "range":
                results = await service.sync_range(args.start, args.end or args.start, _parse_list(args.datasets))
                _emit([r.to_dict() for r in results])
            elif args.command == "status":
                _emit(await service.sync_status(args.dataset, args.period, verify=not args.no_verify))
            elif args.command == "schedule":
                if args.action == "show":
                    _emit(service.get_schedule())
                elif args.action == "set":
                    _emit({"success": True, "schedule": service.update_schedule(_schedule_patch(args)).to_dict()})
                elif args.action == "mark-run":
                    _emit({"success": True, "schedule": service.mark_schedule_run().to_dict()})
            elif args.command == "scheduled":
                results = await service.run_scheduled(args.start, args.end)
                _emit({"ran": results is not None, "results": [r.to_dict() for r in results or []]})
        finally:
            await service.close()

    asyncio.run(_run())


if __name__ == "__main__":
    main()
