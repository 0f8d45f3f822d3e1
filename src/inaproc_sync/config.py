from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml


STORAGE_FORMATS = ("xlsx", "parquet")

DEFAULTS: Dict[str, Any] = {
    "api": {
        "base_url": "https://data.inaproc.id/api",
        "timeout_seconds": 30,
        "max_concurrency": 2,
        "rate_limit_per_sec": 5,
        "retry": {
            "max_retries": 3,
            "base_delay_seconds": 1.0,
            "max_delay_seconds": 10.0,
        },
        "period_param": "tahun",
        "extra_params": {"kode_klpd": "K34"},
    },
    "sync": {
        "batch_size": 100,
        "max_pages": 50,
        "page_delay_seconds": 0.2,
        "invocation_delay_seconds": 0.5,
        "max_invocations": 200,
    },
    "storage": {
        "base_path": "./data",
        "format": "xlsx",
        "state_file": "sync-state.json",
    },
}


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def api(self) -> Dict[str, Any]:
        return self.raw["api"]

    @property
    def sync(self) -> Dict[str, Any]:
        return self.raw["sync"]

    @property
    def storage(self) -> Dict[str, Any]:
        return self.raw["storage"]

    @property
    def base_path(self) -> str:
        return os.getenv("SYNC_LOCATION") or os.getenv("INAPROC_DATA_PATH") or self.storage["base_path"]

    @property
    def storage_format(self) -> str:
        return self.storage["format"]

    @property
    def state_path(self) -> str:
        return os.path.join(self.base_path, self.storage["state_file"])


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def build_config(raw: Optional[Dict[str, Any]] = None) -> Config:
    merged = _merge(DEFAULTS, raw or {})
    fmt = merged["storage"].get("format")
    if fmt not in STORAGE_FORMATS:
        raise ValueError(f"storage.format must be one of {STORAGE_FORMATS}, got {fmt!r}")
    return Config(merged)


def load_config(path: str = "config.yaml") -> Config:
    if not os.path.exists(path):
        return build_config()
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return build_config(raw)


def get_api_token() -> str:
    token = os.getenv("JWT_TOKEN") or os.getenv("INAPROC_TOKEN")
    if not token:
        raise RuntimeError("Missing API token; set JWT_TOKEN or INAPROC_TOKEN")
    return token
