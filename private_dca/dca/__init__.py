"""
Recurring private swaps.

- ScheduleEngine: cron timers, caps, pause/resume/cancel
- JsonScheduleStore: schedules.json / executions.json persistence
"""

from private_dca.dca.models import Execution, Schedule, ScheduleFrequency
from private_dca.dca.scheduler import ScheduleEngine, cron_expression
from private_dca.dca.store import JsonScheduleStore, StoreError

__all__ = [
    "Execution",
    "Schedule",
    "ScheduleFrequency",
    "ScheduleEngine",
    "cron_expression",
    "JsonScheduleStore",
    "StoreError",
]
