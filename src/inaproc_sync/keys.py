"""Deduplication keys per dataset.

A key spec is a list of components; each component is a fallback chain of
field names and the first non-empty field wins. Records whose components
are all empty are keyed by a hash of their full content instead.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

from .catalog import dataset_name
from .utils import stable_hash


KeySpec = List[List[str]]

DEFAULT_KEY_FIELDS: KeySpec = [["kode_rup"]]

KEY_FIELDS: Dict[str, KeySpec] = {
    "paket-e-purchasing": [["kd_paket", "kode_paket"], ["kode_rup", "rup_id"]],
    "instansi-satker": [["kode_klpd", "kd_klpd"], ["kode_satker", "kd_satker"]],
    "komoditas-detail": [["id_komoditas", "kd_komoditas"], ["kode_produk", "kd_produk"]],
    "penyedia-detail": [["kd_penyedia", "kode_penyedia"], ["npwp", "npwp_penyedia"]],
    "penyedia-distributor-detail": [["kd_penyedia", "kode_penyedia"], ["kd_distributor", "kode_distributor"]],
    "master-satker": [["kode_klpd", "kd_klpd"], ["kode_satker", "kd_satker"]],
    "paket-anggaran-penyedia": [["kode_rup"]],
    "paket-anggaran-swakelola": [["kode_rup"]],
    "paket-penyedia-terumumkan": [["kode_rup"]],
    "paket-swakelola-terumumkan": [["kode_rup"]],
    "program-master": [["kode_program", "kd_program"]],
    "jadwal-tahapan-non-tender": [["kode_rup", "kd_nontender"], ["kode_tahap", "kd_tahapan"]],
    "jadwal-tahapan-tender": [["kode_rup", "kd_tender"], ["kode_tahap", "kd_tahapan"]],
    "non-tender-ekontrak-kontrak": [["kode_rup", "kd_nontender"], ["kd_kontrak", "no_kontrak"]],
    "non-tender-pengumuman": [["kode_rup", "kd_nontender"]],
    "non-tender-selesai": [["kode_rup", "kd_nontender"]],
    "pencatatan-non-tender": [["kode_rup"]],
    "pencatatan-non-tender-realisasi": [["kode_rup"], ["id_realisasi", "kd_realisasi"]],
    "pencatatan-swakelola": [["kode_rup"]],
    "pencatatan-swakelola-realisasi": [["kode_rup"], ["id_realisasi", "kd_realisasi"]],
    "pengumuman": [["kode_rup", "kd_tender"]],
    "peserta-tender": [["kode_rup", "kd_tender"], ["kd_penyedia", "kode_penyedia"]],
    "tender-ekontrak-kontrak": [["kode_rup", "kd_tender"], ["kd_kontrak", "no_kontrak"]],
    "tender-selesai-nilai": [["kode_rup", "kd_tender"]],
}


def resolve_key_fields(dataset_id: str) -> KeySpec:
    spec = KEY_FIELDS.get(dataset_name(dataset_id), DEFAULT_KEY_FIELDS)
    return [list(component) for component in spec]


def normalize_key_spec(raw: Any) -> KeySpec:
    """Accept both ``["a", "b"]`` and ``[["a", "x"], ["b"]]`` shapes."""
    if not raw:
        return [list(c) for c in DEFAULT_KEY_FIELDS]
    spec: KeySpec = []
    for component in raw:
        if isinstance(component, str):
            spec.append([component])
        else:
            spec.append([str(name) for name in component])
    return spec


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def canonical_value(value: Any) -> Any:
    """Fold whole-number floats to ints, recursively.

    Spreadsheets keep one numeric type, so ``5.0`` comes back as ``5``; keys
    and hashes must not tell the two apart.
    """
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {k: canonical_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [canonical_value(v) for v in value]
    return value


def _component_value(record: Mapping[str, Any], candidates: Sequence[str]) -> str:
    for name in candidates:
        value = record.get(name)
        if not _is_empty(value):
            return str(canonical_value(value))
    return ""


def content_of(record: Mapping[str, Any]) -> Dict[str, Any]:
    # Empty cells do not survive a spreadsheet round trip, so they do not count as content.
    return {k: canonical_value(v) for k, v in record.items() if not (v is None or v == "")}


def record_key(record: Mapping[str, Any], key_spec: KeySpec) -> str:
    parts = [_component_value(record, component) for component in key_spec]
    if not any(parts):
        return "hash:" + stable_hash(content_of(record))
    return "|".join(parts)
