"""Shared test fixtures for the inaproc_sync test suite.

Provides a fast config rooted in a temp directory, a paginated fake of the
INAPROC API served through httpx.MockTransport, and sample records shaped
like the RUP / tender datasets.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx
import pytest

from inaproc_sync.config import Config, build_config
from inaproc_sync.service import SyncService
from inaproc_sync.sync_state import SyncStateStore
from inaproc_sync.table_store import ParquetTableStore, XlsxTableStore


DATASET = "/v1/rup/paket-penyedia-terumumkan"


def make_records(start: int, count: int, **extra: Any) -> List[Dict[str, Any]]:
    """RUP-style records keyed by ``kode_rup``."""
    return [
        {
            "kode_rup": 30000000 + i,
            "nama_paket": f"Pengadaan Barang {i}",
            "pagu": 1_000_000 + i,
            "kd_klpd": "K34",
            **extra,
        }
        for i in range(start, start + count)
    ]


class PagedRemote:
    """Fake paginated dataset: the cursor is the offset of the next page.

    ``fail_offsets`` answers 503 for pages starting at those offsets until
    cleared, which exhausts the client's retries.
    """

    def __init__(self, records: List[Dict[str, Any]], fail_offsets: Iterable[int] = (), bare: bool = False) -> None:
        self.records = list(records)
        self.fail_offsets = set(fail_offsets)
        self.bare = bare
        self.calls: List[Dict[str, str]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        self.calls.append(params)
        if self.bare:
            return httpx.Response(200, json=self.records)
        limit = int(params["limit"])
        offset = int(params.get("cursor", 0))
        if offset in self.fail_offsets:
            return httpx.Response(503, json={"error": "unavailable"})
        chunk = self.records[offset : offset + limit]
        if not chunk:
            return httpx.Response(200, json={"data": [], "cursor": None})
        return httpx.Response(200, json={"data": chunk, "cursor": str(offset + limit), "has_more": True})

    def cursors(self) -> List[Optional[str]]:
        return [c.get("cursor") for c in self.calls]


@pytest.fixture()
def logger() -> logging.Logger:
    return logging.getLogger("inaproc_sync.tests")


@pytest.fixture()
def sample_config(tmp_path) -> Config:
    """Config with tiny retry delays and no pacing, rooted in tmp_path."""
    return build_config({
        "api": {
            "base_url": "https://data.test/api",
            "timeout_seconds": 5,
            "max_concurrency": 2,
            "rate_limit_per_sec": 1000,
            "retry": {
                "max_retries": 3,
                "base_delay_seconds": 0.001,
                "max_delay_seconds": 0.005,
            },
        },
        "sync": {
            "batch_size": 100,
            "max_pages": 10,
            "page_delay_seconds": 0,
            "invocation_delay_seconds": 0,
        },
        "storage": {"base_path": str(tmp_path / "data"), "format": "xlsx"},
    })


@pytest.fixture(autouse=True)
def _no_location_env(monkeypatch):
    monkeypatch.delenv("SYNC_LOCATION", raising=False)
    monkeypatch.delenv("INAPROC_DATA_PATH", raising=False)


@pytest.fixture()
async def make_service(sample_config, logger):
    services: List[SyncService] = []

    def _make(remote: PagedRemote, config: Optional[Config] = None) -> SyncService:
        service = SyncService(
            config or sample_config,
            logger,
            token="test-token",
            transport=httpx.MockTransport(remote.handler),
        )
        services.append(service)
        return service

    yield _make
    for service in services:
        await service.close()


@pytest.fixture()
def xlsx_store(tmp_path, logger) -> XlsxTableStore:
    return XlsxTableStore(str(tmp_path / "data"), logger)


@pytest.fixture()
def parquet_store(tmp_path, logger) -> ParquetTableStore:
    return ParquetTableStore(str(tmp_path / "data"), logger)


@pytest.fixture()
def state_store(tmp_path, logger) -> SyncStateStore:
    return SyncStateStore(str(tmp_path / "data" / "sync-state.json"), logger)


@pytest.fixture()
def sample_records() -> List[Dict[str, Any]]:
    return [
        {
            "kode_rup": 41234567,
            "nama_paket": "Belanja Alat Tulis Kantor",
            "pagu": 150000000,
            "is_tkdn": True,
            "lokasi": [{"provinsi": "DKI Jakarta", "kabupaten": "Jakarta Pusat"}],
            "sumber_dana": {"kode": "APBN", "tahun": 2024},
        },
        {
            "kode_rup": 41234568,
            "nama_paket": "=SUM(A1:A3)",
            "pagu": 2500000.5,
            "is_tkdn": False,
            "keterangan": None,
        },
        {
            "kode_rup": "41234569",
            "nama_paket": "Jasa Konsultansi\x07Perencanaan",
            "pagu": 99,
        },
    ]
