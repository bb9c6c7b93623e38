"""
Tests for private_dca/dca/models.py and private_dca/dca/store.py

Tests cover:
- Schedule validation and frequency parsing
- Execution ids
- JSON file persistence, upsert and corruption handling
"""

import json
import re

import pytest

from private_dca.dca import Execution, JsonScheduleStore, Schedule, ScheduleFrequency, StoreError
from private_dca.errors import ValidationError


def make_schedule(**overrides):
    fields = dict(from_token="usdc", to_token="sol", amount_per_execution=10, frequency="daily")
    fields.update(overrides)
    return Schedule(**fields)


class TestSchedule:

    def test_normalizes(self):
        schedule = make_schedule(frequency="Weekly")
        assert schedule.from_token == "USDC"
        assert schedule.to_token == "SOL"
        assert schedule.frequency is ScheduleFrequency.WEEKLY
        assert schedule.active
        assert schedule.executed_count == 0

    def test_bad_frequency(self):
        with pytest.raises(ValidationError, match="Invalid frequency: fortnightly"):
            make_schedule(frequency="fortnightly")

    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"to_token": "USDC"}, "must differ"),
            ({"to_token": "DOGE"}, "Unknown token: DOGE"),
            ({"amount_per_execution": 0}, "Amount must be positive"),
            ({"total_executions": 0}, "at least 1"),
            ({"slippage_bps": 20_000}, "Slippage"),
        ],
    )
    def test_validate(self, overrides, message):
        with pytest.raises(ValidationError, match=message):
            make_schedule(**overrides).validate()

    def test_cap(self):
        assert not make_schedule().cap_reached()
        assert make_schedule(total_executions=2, executed_count=2).cap_reached()
        assert not make_schedule(total_executions=2, executed_count=1).cap_reached()

    def test_ids_unique(self):
        assert make_schedule().id != make_schedule().id


class TestExecution:

    def test_id_format(self):
        execution = Execution(schedule_id="s1", success=True, signature="sig")
        assert re.fullmatch(r"exec-\d+-[0-9a-f]{6}", execution.id)

    def test_from_dict_keeps_id(self):
        data = Execution(schedule_id="s1", success=False, error="[quote] no route").to_dict()
        restored = Execution.from_dict(data)
        assert restored.id == data["id"]
        assert restored.error == "[quote] no route"
        assert restored.executed_at.tzinfo is not None


class TestJsonScheduleStore:

    def test_empty(self, temp_dir):
        store = JsonScheduleStore(temp_dir / "data")
        assert store.list_schedules() == []
        assert store.list_executions() == []
        assert store.get_schedule("nope") is None

    def test_save_and_reload(self, temp_dir):
        schedule = make_schedule(total_executions=30, use_ephemeral=True, destination="Dest111")
        JsonScheduleStore(temp_dir).save_schedule(schedule)

        loaded = JsonScheduleStore(temp_dir).get_schedule(schedule.id)
        assert loaded.to_dict() == schedule.to_dict()

    def test_upsert(self, temp_dir):
        store = JsonScheduleStore(temp_dir)
        schedule = make_schedule()
        store.save_schedule(schedule)
        schedule.executed_count = 3
        store.save_schedule(schedule)

        schedules = store.list_schedules()
        assert len(schedules) == 1
        assert schedules[0].executed_count == 3

    def test_find_by_prefix(self, temp_dir):
        store = JsonScheduleStore(temp_dir)
        a = make_schedule(id="abc12345-0000")
        b = make_schedule(id="abd99999-0000")
        store.save_schedule(a)
        store.save_schedule(b)

        assert [s.id for s in store.find_by_prefix("abc")] == [a.id]
        assert len(store.find_by_prefix("ab")) == 2
        assert store.find_by_prefix("zzz") == []

    def test_remove(self, temp_dir):
        store = JsonScheduleStore(temp_dir)
        schedule = make_schedule()
        store.save_schedule(schedule)

        assert store.remove_schedule(schedule.id)
        assert not store.remove_schedule(schedule.id)
        assert store.list_schedules() == []

    def test_executions_filtered(self, temp_dir):
        store = JsonScheduleStore(temp_dir)
        store.append_execution(Execution(schedule_id="a", success=True))
        store.append_execution(Execution(schedule_id="b", success=False, error="x"))
        store.append_execution(Execution(schedule_id="a", success=True))

        assert len(store.list_executions()) == 3
        assert [e.schedule_id for e in store.list_executions("a")] == ["a", "a"]

    def test_files_are_json_arrays(self, temp_dir):
        store = JsonScheduleStore(temp_dir)
        store.save_schedule(make_schedule())
        store.append_execution(Execution(schedule_id="a", success=True))

        assert isinstance(json.loads(store.schedules_path.read_text()), list)
        assert isinstance(json.loads(store.executions_path.read_text()), list)
        assert not list(temp_dir.glob("*.tmp"))

    def test_corrupt_file_not_overwritten(self, temp_dir):
        store = JsonScheduleStore(temp_dir)
        store.schedules_path.write_text("[{broken")

        with pytest.raises(StoreError, match="Corrupt store file"):
            store.save_schedule(make_schedule())
        assert store.schedules_path.read_text() == "[{broken"

    def test_not_an_array(self, temp_dir):
        store = JsonScheduleStore(temp_dir)
        store.executions_path.write_text('{"executions": []}')
        with pytest.raises(StoreError):
            store.list_executions()
