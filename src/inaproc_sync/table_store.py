"""Durable per-(dataset, period) tables.

Every persist rewrites the whole table, with a metadata record next to the
data: spreadsheet formats cannot append in place, and a full rewrite through
a temp file keeps the file on disk self-consistent after each write.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

import pyarrow as pa
import pyarrow.parquet as pq
from openpyxl import Workbook, load_workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from .catalog import storage_path
from .dedupe import collect_keys
from .errors import StorageCorruption
from .keys import KeySpec, normalize_key_spec, resolve_key_fields
from .logging_utils import get_logger, log_json
from .utils import isoformat, utcnow


METADATA_SHEET = "_metadata"
PARQUET_METADATA_KEY = b"inaproc_sync"


@dataclass(frozen=True)
class SyncUnit:
    dataset_id: str
    period: str

    def __str__(self) -> str:
        return f"{self.dataset_id}@{self.period}"


@dataclass
class LoadedTable:
    records: List[Dict[str, Any]] = field(default_factory=list)
    keys: Set[str] = field(default_factory=set)
    key_fields: KeySpec = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class TableInfo:
    exists: bool
    location: str
    size_bytes: int = 0
    record_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exists": self.exists,
            "path": self.location,
            "size": self.size_bytes,
            "recordCount": self.record_count,
        }


def _columns(records: List[Dict[str, Any]]) -> List[str]:
    seen: Dict[str, None] = {}
    for rec in records:
        for k in rec:
            seen.setdefault(k, None)
    return list(seen)


def _value_kinds(records: List[Dict[str, Any]], column: str) -> Set[type]:
    return {type(rec[column]) for rec in records if rec.get(column) is not None}


def _strip_empty(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in row.items() if v is not None}


class TableStore:
    extension = ""

    def __init__(self, base_path: str, logger: Optional[logging.Logger] = None) -> None:
        self.base_path = base_path
        self.logger = logger or get_logger()

    def location(self, unit: SyncUnit) -> str:
        return storage_path(self.base_path, unit.dataset_id, unit.period, self.extension)

    def load(self, unit: SyncUnit) -> LoadedTable:
        path = self.location(unit)
        fallback = resolve_key_fields(unit.dataset_id)
        if not os.path.exists(path):
            return LoadedTable(key_fields=fallback)
        try:
            records, metadata = self._read(path)
        except Exception as exc:
            log_json(
                self.logger,
                "table_corrupt",
                level="warning",
                unit=str(unit),
                path=path,
                error=str(StorageCorruption(f"{type(exc).__name__}: {exc}")),
            )
            return LoadedTable(key_fields=fallback)
        key_fields = normalize_key_spec(metadata.get("key_fields")) if metadata else fallback
        return LoadedTable(
            records=records,
            keys=collect_keys(records, key_fields),
            key_fields=key_fields,
            metadata=metadata,
        )

    def persist(self, unit: SyncUnit, records: List[Dict[str, Any]], key_fields: KeySpec) -> str:
        path = self.location(unit)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        metadata = {
            "dataset_id": unit.dataset_id,
            "period": unit.period,
            "key_fields": key_fields,
            "last_updated": isoformat(utcnow()),
            "total_records": len(records),
        }
        tmp_path = f"{path}.tmp"
        try:
            self._write(tmp_path, unit, records, metadata)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        log_json(self.logger, "table_persisted", unit=str(unit), path=path, rows=len(records))
        return path

    def info(self, unit: SyncUnit) -> TableInfo:
        path = self.location(unit)
        if not os.path.exists(path):
            return TableInfo(exists=False, location=path)
        return TableInfo(
            exists=True,
            location=path,
            size_bytes=os.path.getsize(path),
            record_count=len(self.load(unit).records),
        )

    def delete(self, unit: SyncUnit) -> bool:
        path = self.location(unit)
        if not os.path.exists(path):
            return False
        os.remove(path)
        log_json(self.logger, "table_deleted", unit=str(unit), path=path)
        return True

    def _read(self, path: str) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]]]:
        raise NotImplementedError

    def _write(self, path: str, unit: SyncUnit, records: List[Dict[str, Any]], metadata: Dict[str, Any]) -> None:
        raise NotImplementedError


class XlsxTableStore(TableStore):
    """One workbook per unit: a ``Data <period>`` sheet and a ``_metadata`` sheet.

    Cells only hold scalars and a single numeric type, so a column that
    carries nested values, mixed value types, whole-number floats or
    characters Excel rejects is stored JSON-encoded and listed in the
    metadata under ``json_columns``. Column names are kept verbatim in the
    metadata under ``columns``; the header row is written as plain text.
    """

    extension = "xlsx"

    def _write(self, path: str, unit: SyncUnit, records: List[Dict[str, Any]], metadata: Dict[str, Any]) -> None:
        columns = _columns(records)
        json_columns = [c for c in columns if self._needs_json(records, c)]
        wb = Workbook()
        ws = wb.active
        ws.title = f"Data {unit.period}"[:31]
        for col_idx, name in enumerate(columns, start=1):
            header = ws.cell(row=1, column=col_idx, value=ILLEGAL_CHARACTERS_RE.sub("", name))
            header.data_type = "s"
        json_set = set(json_columns)
        for row_idx, rec in enumerate(records, start=2):
            for col_idx, name in enumerate(columns, start=1):
                value = rec.get(name)
                if value is None:
                    continue
                if name in json_set:
                    value = json.dumps(value, ensure_ascii=True)
                cell = ws.cell(row=row_idx, column=col_idx, value=value)
                if isinstance(value, str):
                    # keep strings such as "=SUM(...)" from becoming formulas
                    cell.data_type = "s"

        meta_ws = wb.create_sheet(METADATA_SHEET)
        meta_row = dict(metadata)
        meta_row["key_fields"] = json.dumps(metadata["key_fields"])
        meta_row["json_columns"] = json.dumps(json_columns)
        # exact names; the header row only holds what Excel accepts
        meta_row["columns"] = json.dumps(columns, ensure_ascii=True)
        meta_ws.append(list(meta_row))
        meta_ws.append(list(meta_row.values()))
        wb.save(path)

    @staticmethod
    def _needs_json(records: List[Dict[str, Any]], column: str) -> bool:
        kinds = _value_kinds(records, column)
        if len(kinds) > 1 or kinds & {dict, list}:
            return True
        if kinds == {float}:
            # 1500000.0 would read back as the int 1500000
            return any(rec[column].is_integer() for rec in records if isinstance(rec.get(column), float))
        if kinds == {str}:
            return any(
                ILLEGAL_CHARACTERS_RE.search(rec[column]) or rec[column] == ""
                for rec in records
                if isinstance(rec.get(column), str)
            )
        return False

    def _read(self, path: str) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]]]:
        wb = load_workbook(path, read_only=True, data_only=True)
        try:
            metadata = None
            if METADATA_SHEET in wb.sheetnames:
                metadata = self._read_metadata(wb[METADATA_SHEET])
            data_sheets = [name for name in wb.sheetnames if name != METADATA_SHEET]
            if not data_sheets:
                raise StorageCorruption(f"No data sheet in {path}")
            rows = wb[data_sheets[0]].iter_rows(values_only=True)
            header = next(rows, None)
            if header is None:
                return [], metadata
            columns = [str(h) if h is not None else "" for h in header]
            stored_columns = metadata.get("columns") if metadata else None
            if isinstance(stored_columns, list) and len(stored_columns) == len(columns):
                columns = [str(name) for name in stored_columns]
            json_columns = set(metadata.get("json_columns", [])) if metadata else set()
            records: List[Dict[str, Any]] = []
            for row in rows:
                rec: Dict[str, Any] = {}
                for name, value in zip(columns, row):
                    if value is None or not name:
                        continue
                    rec[name] = json.loads(value) if name in json_columns else value
                if rec:
                    records.append(rec)
            return records, metadata
        finally:
            wb.close()

    @staticmethod
    def _read_metadata(ws) -> Optional[Dict[str, Any]]:
        rows = list(ws.iter_rows(values_only=True))
        if len(rows) < 2:
            return None
        meta = dict(zip(rows[0], rows[1]))
        for k in ("key_fields", "json_columns", "columns"):
            if isinstance(meta.get(k), str):
                meta[k] = json.loads(meta[k])
        return meta


class ParquetTableStore(TableStore):
    """Parquet table with the metadata record in the schema key/value metadata."""

    extension = "parquet"

    def _write(self, path: str, unit: SyncUnit, records: List[Dict[str, Any]], metadata: Dict[str, Any]) -> None:
        columns = _columns(records)
        json_columns = []
        arrays = {}
        for name in columns:
            kinds = _value_kinds(records, name)
            values = [rec.get(name) for rec in records]
            if len(kinds) > 1 or kinds & {dict, list}:
                json_columns.append(name)
                values = [None if v is None else json.dumps(v) for v in values]
            arrays[name] = pa.array(values)
        table = pa.table(arrays)
        meta = dict(metadata, json_columns=json_columns)
        table = table.replace_schema_metadata({PARQUET_METADATA_KEY: json.dumps(meta).encode("utf-8")})
        pq.write_table(table, path, compression="snappy")

    def _read(self, path: str) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]]]:
        table = pq.read_table(path)
        raw_meta = (table.schema.metadata or {}).get(PARQUET_METADATA_KEY)
        metadata = json.loads(raw_meta) if raw_meta else None
        json_columns = set(metadata.get("json_columns", [])) if metadata else set()
        records = []
        for row in table.to_pylist():
            rec = _strip_empty(row)
            for name in json_columns & rec.keys():
                rec[name] = json.loads(rec[name])
            records.append(rec)
        return records, metadata


def build_table_store(fmt: str, base_path: str, logger: Optional[logging.Logger] = None) -> TableStore:
    if fmt == "xlsx":
        return XlsxTableStore(base_path, logger)
    if fmt == "parquet":
        return ParquetTableStore(base_path, logger)
    raise ValueError(f"Unknown storage format: {fmt}")
