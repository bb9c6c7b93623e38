"""
JSON file store for schedules and executions.

Two files in one directory:
    schedules.json   - array of schedules, rewritten on every mutation
    executions.json  - array of executions, rewritten on every append

Every call reads the file again, so a daemon and a short-lived CLI process
sharing the directory both see the latest state. There is no file locking:
two processes writing at the same moment can lose an update.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from private_dca.dca.models import Execution, Schedule
from private_dca.errors import DCAError

logger = logging.getLogger(__name__)


class StoreError(DCAError):
    """A store file exists but cannot be parsed."""
    code = "STORE_001"


class JsonScheduleStore:
    """Schedules and execution history persisted as JSON arrays."""

    def __init__(self, data_dir):
        self.data_dir = Path(data_dir).expanduser()
        self.schedules_path = self.data_dir / "schedules.json"
        self.executions_path = self.data_dir / "executions.json"

    def _read(self, path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse {path}: {e}")
            raise StoreError(f"Corrupt store file {path}: {e}", {"path": str(path)}) from e
        if not isinstance(data, list):
            raise StoreError(f"Store file {path} does not hold a JSON array", {"path": str(path)})
        return data

    def _write(self, path: Path, records: List[Dict[str, Any]]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2)
        os.replace(tmp_path, path)

    # Schedules

    def list_schedules(self) -> List[Schedule]:
        return [Schedule.from_dict(d) for d in self._read(self.schedules_path)]

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        for schedule in self.list_schedules():
            if schedule.id == schedule_id:
                return schedule
        return None

    def find_by_prefix(self, prefix: str) -> List[Schedule]:
        return [s for s in self.list_schedules() if s.id.startswith(prefix)]

    def save_schedule(self, schedule: Schedule) -> None:
        """Insert or replace a schedule by id."""
        records = self._read(self.schedules_path)
        for i, record in enumerate(records):
            if record.get("id") == schedule.id:
                records[i] = schedule.to_dict()
                break
        else:
            records.append(schedule.to_dict())
        self._write(self.schedules_path, records)

    def remove_schedule(self, schedule_id: str) -> bool:
        records = self._read(self.schedules_path)
        kept = [r for r in records if r.get("id") != schedule_id]
        if len(kept) == len(records):
            return False
        self._write(self.schedules_path, kept)
        return True

    # Executions

    def list_executions(self, schedule_id: Optional[str] = None) -> List[Execution]:
        executions = [Execution.from_dict(d) for d in self._read(self.executions_path)]
        if schedule_id:
            executions = [e for e in executions if e.schedule_id == schedule_id]
        return executions

    def append_execution(self, execution: Execution) -> None:
        records = self._read(self.executions_path)
        records.append(execution.to_dict())
        self._write(self.executions_path, records)
