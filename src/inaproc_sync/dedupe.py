from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Set

from .keys import KeySpec, record_key


@dataclass
class MergeResult:
    unique: List[Dict[str, Any]] = field(default_factory=list)
    duplicate_count: int = 0
    keys: Set[str] = field(default_factory=set)


def merge_records(
    existing_keys: Iterable[str],
    key_spec: KeySpec,
    incoming: Iterable[Dict[str, Any]],
) -> MergeResult:
    """Split ``incoming`` into records to append and duplicates to skip.

    The first occurrence of a key wins, including within ``incoming`` itself.
    ``existing_keys`` is copied, never mutated; the returned ``keys`` holds
    the existing keys plus those of the unique records.
    """
    seen = set(existing_keys)
    result = MergeResult()
    for rec in incoming:
        key = record_key(rec, key_spec)
        if key in seen:
            result.duplicate_count += 1
            continue
        seen.add(key)
        result.unique.append(rec)
    result.keys = seen
    return result


def dedupe_records(records: Iterable[Dict[str, Any]], key_spec: KeySpec) -> List[Dict[str, Any]]:
    return merge_records((), key_spec, records).unique


def collect_keys(records: Iterable[Dict[str, Any]], key_spec: KeySpec) -> Set[str]:
    return {record_key(rec, key_spec) for rec in records}
