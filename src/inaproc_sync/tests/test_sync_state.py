from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from inaproc_sync.sync_state import (
    ScheduleConfig,
    SyncState,
    SyncStateStore,
    schedule_is_due,
    validate_schedule_patch,
)
from inaproc_sync.utils import isoformat


DS = "/v1/tender/pengumuman"
NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestSyncStateRecords:
    def test_missing_state_is_none(self, state_store):
        """No entry yet means None."""
        assert state_store.get(DS, "2024") is None

    def test_update_creates_and_merges(self, state_store):
        """Updates create the entry and merge later fields into it."""
        state_store.update(DS, "2024", last_cursor="abc", total_records=100)
        state = state_store.update(DS, "2024", storage_location="/tmp/x.xlsx")
        assert state.last_cursor == "abc"
        assert state.total_records == 100
        assert state.storage_location == "/tmp/x.xlsx"
        assert state.last_sync_date is not None
        assert state_store.get(DS, "2024") == state

    def test_periods_are_independent(self, state_store):
        """Each period of a dataset has its own entry."""
        state_store.update(DS, "2024", last_cursor="a")
        state_store.update(DS, "2023", last_cursor="b")
        assert state_store.get(DS, "2024").last_cursor == "a"
        assert state_store.get(DS, "2023").last_cursor == "b"
        assert set(state_store.all_states()[DS]) == {"2023", "2024"}

    def test_cursor_can_be_cleared(self, state_store):
        """A None cursor marks the unit complete."""
        state_store.update(DS, "2024", last_cursor="a")
        assert state_store.update(DS, "2024", last_cursor=None).last_cursor is None

    def test_unknown_field_rejected(self, state_store):
        """Only cursor, total and location can be updated."""
        with pytest.raises(ValueError, match="Unknown sync state fields"):
            state_store.update(DS, "2024", cursor="oops")

    def test_reset(self, state_store):
        state_store.update(DS, "2024", total_records=5)
        assert state_store.reset(DS, "2024") is True
        assert state_store.get(DS, "2024") is None
        assert DS not in state_store.load_document()["syncState"]
        assert state_store.reset(DS, "2024") is False

    def test_document_uses_camel_case(self, state_store):
        """The state file uses camelCase keys."""
        state_store.update(DS, "2024", last_cursor="c1", total_records=7, storage_location="f.xlsx")
        with open(state_store.path, "r", encoding="utf-8") as f:
            doc = json.load(f)
        stored = doc["syncState"][DS]["2024"]
        assert stored["lastCursor"] == "c1"
        assert stored["totalRecords"] == 7
        assert stored["storageLocation"] == "f.xlsx"
        assert doc["schedule"]["type"] == "daily"

    def test_legacy_file_path_key_is_read(self):
        """Older documents with filePath still load."""
        state = SyncState.from_dict({"lastCursor": None, "totalRecords": "12", "filePath": "old.xlsx"})
        assert state.total_records == 12
        assert state.storage_location == "old.xlsx"


class TestDocumentRecovery:
    def test_corrupt_document_falls_back_to_defaults(self, state_store, tmp_path):
        """An unreadable state file loads as defaults."""
        (tmp_path / "data").mkdir(parents=True, exist_ok=True)
        with open(state_store.path, "w", encoding="utf-8") as f:
            f.write("{not json")
        doc = state_store.load_document()
        assert doc["syncState"] == {}
        assert doc["schedule"]["enabled"] is False

    def test_update_after_corruption_rewrites_document(self, state_store, tmp_path):
        """The next write replaces a corrupt state file."""
        (tmp_path / "data").mkdir(parents=True, exist_ok=True)
        with open(state_store.path, "w", encoding="utf-8") as f:
            f.write("garbage")
        state_store.update(DS, "2024", total_records=1)
        assert state_store.get(DS, "2024").total_records == 1


class TestScheduleDue:
    def _schedule(self, cadence, last_run_delta=None):
        last_run = isoformat(NOW - last_run_delta) if last_run_delta is not None else None
        return ScheduleConfig(enabled=True, cadence=cadence, last_run=last_run)

    def test_never_run_is_due(self):
        """A schedule that never ran is due."""
        assert schedule_is_due(self._schedule("weekly"), NOW) is True

    def test_weekly_eight_days_ago_is_due(self):
        """Weekly, last run eight days ago: due."""
        assert schedule_is_due(self._schedule("weekly", timedelta(days=8)), NOW) is True

    def test_weekly_two_days_ago_is_not_due(self):
        """Weekly, last run two days ago: not due."""
        assert schedule_is_due(self._schedule("weekly", timedelta(days=2)), NOW) is False

    def test_daily_boundary(self):
        """Daily becomes due at exactly 24 hours."""
        assert schedule_is_due(self._schedule("daily", timedelta(hours=24)), NOW) is True
        assert schedule_is_due(self._schedule("daily", timedelta(hours=23)), NOW) is False

    def test_store_requires_enabled(self, state_store):
        """The stored schedule is only due when enabled."""
        assert state_store.is_due(NOW) is False
        state_store.update_schedule(enabled=True)
        assert state_store.is_due(NOW) is True

    def test_mark_schedule_run(self, state_store):
        """Marking a run resets the due clock."""
        state_store.update_schedule(enabled=True, cadence="weekly")
        schedule = state_store.mark_schedule_run(NOW)
        assert schedule.last_run == "2025-03-10T12:00:00Z"
        assert state_store.is_due(NOW + timedelta(days=1)) is False
        assert state_store.is_due(NOW + timedelta(days=7)) is True

    def test_update_schedule_rejects_unknown_fields(self, state_store):
        """Unknown schedule fields raise ValueError."""
        with pytest.raises(ValueError):
            state_store.update_schedule(frequency="hourly")


class TestSchedulePatch:
    KNOWN = ["/v1/rup/program-master", "/v1/tender/pengumuman"]

    def test_valid_patch(self):
        """type and endpoints aliases are accepted."""
        patch = {"enabled": True, "type": "weekly", "endpoints": ["/v1/rup/program-master"]}
        assert validate_schedule_patch(patch, self.KNOWN) == {
            "enabled": True,
            "cadence": "weekly",
            "datasets": ["/v1/rup/program-master"],
        }

    def test_invalid_values_are_dropped(self):
        """Wrongly typed patch values are ignored."""
        patch = {"enabled": "yes", "cadence": "hourly", "datasets": "all"}
        assert validate_schedule_patch(patch, self.KNOWN) == {}

    def test_unknown_datasets_filtered(self):
        """Only catalog datasets stay in the allow-list."""
        patch = {"datasets": ["/v1/tender/pengumuman", "/v1/nope"]}
        assert validate_schedule_patch(patch, self.KNOWN) == {"datasets": ["/v1/tender/pengumuman"]}
