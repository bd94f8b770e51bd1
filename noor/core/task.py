"""
Base task type and abstract BaseTask with next_run persistence in the settings collection.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from queue import Queue
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

SCHEDULE_COLLECTION = "settings"


class TaskType:
    """Schedule kind for tasks."""
    DAILY = "daily"
    HOURLY = "hourly"
    INTERVAL_SECONDS = "interval_seconds"


def _local_now() -> datetime:
    """Schedules are local wall-clock times."""
    return datetime.now()


def _schedule_key(component_name: str) -> str:
    return f"task_schedule:{component_name}"


def _parse_hhmm(value: Any, default: str = "00:00") -> tuple:
    parts = str(value or default).strip().split(":")
    hour = int(parts[0]) if parts and parts[0] else 0
    minute = int(parts[1]) if len(parts) > 1 else 0
    return hour, minute


def compute_next_run(
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    last_run: Optional[datetime],
) -> datetime:
    """Compute next run datetime from schedule_type, schedule_config, and last_run."""
    if last_run is None:
        last_run = _local_now()

    if schedule_type == TaskType.DAILY and schedule_config:
        hour, minute = _parse_hhmm(schedule_config.get("time"))
        next_run = last_run.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if next_run <= last_run:
            next_run += timedelta(days=1)
        return next_run

    if schedule_type == TaskType.HOURLY:
        return last_run + timedelta(hours=1)

    if schedule_type == TaskType.INTERVAL_SECONDS and schedule_config:
        sec = int(schedule_config.get("interval_seconds", 86400))
        return last_run + timedelta(seconds=sec)

    return last_run + timedelta(days=1)


def _load_schedule(store, component_name: str) -> Optional[Dict[str, Any]]:
    if store is None:
        return None
    row = store.get(SCHEDULE_COLLECTION, _schedule_key(component_name), None)
    return row if isinstance(row, dict) else None


def get_next_run_from_store(store, component_name: str) -> Optional[datetime]:
    """Read next_run_at for component. None means no schedule yet (task runs immediately)."""
    try:
        row = _load_schedule(store, component_name)
        if row and row.get("next_run_at"):
            return datetime.fromisoformat(row["next_run_at"])
    except Exception as e:
        logger.debug(f"get_next_run_from_store {component_name}: {e}")
    return None


def upsert_task_schedule(
    store,
    component_name: str,
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    next_run_at: Optional[datetime] = None,
    last_run_at: Optional[datetime] = None,
    last_error: Optional[str] = None,
) -> None:
    """Create or update the schedule row. Leaves next_run_at unchanged on an existing row when not given."""
    if store is None:
        return
    with store.transaction() as tx:
        row = tx.get(SCHEDULE_COLLECTION, _schedule_key(component_name), None)
        row = dict(row) if isinstance(row, dict) else {"next_run_at": None, "last_run_at": None, "last_error": None}
        row["component_name"] = component_name
        row["schedule_type"] = schedule_type
        row["schedule_config"] = schedule_config
        if next_run_at is not None:
            row["next_run_at"] = next_run_at.isoformat()
        if last_run_at is not None:
            row["last_run_at"] = last_run_at.isoformat()
        if last_error is not None:
            row["last_error"] = last_error
        row["updated_at"] = _local_now().isoformat()
        tx.put(SCHEDULE_COLLECTION, _schedule_key(component_name), row)


def update_after_run(store, component_name: str, error: Optional[str] = None) -> None:
    """Update last_run_at and next_run_at after a run."""
    if store is None:
        return
    with store.transaction() as tx:
        row = tx.get(SCHEDULE_COLLECTION, _schedule_key(component_name), None)
        if not isinstance(row, dict):
            return
        row = dict(row)
        now = _local_now()
        row["last_run_at"] = now.isoformat()
        row["last_error"] = error
        row["next_run_at"] = compute_next_run(row.get("schedule_type"), row.get("schedule_config"), now).isoformat()
        row["updated_at"] = now.isoformat()
        tx.put(SCHEDULE_COLLECTION, _schedule_key(component_name), row)


def get_all_task_schedules(store) -> list:
    """Return all persisted task schedules (for API)."""
    if store is None:
        return []
    return [
        value for key, value in store.items(SCHEDULE_COLLECTION)
        if key.startswith("task_schedule:") and isinstance(value, dict)
    ]


class BaseTask(ABC):
    """
    Abstract base for background tasks. Subclasses implement run();
    base helps with get_next_run and persisting next_run in the store.
    """

    def __init__(self, component_name: str, schedule_type: str, schedule_config: Optional[Dict[str, Any]] = None, store=None):
        self.component_name = component_name
        self.schedule_type = schedule_type
        self.schedule_config = schedule_config or {}
        self.store = store
        self.logger = logging.getLogger(self.__class__.__name__)

    def get_next_run(self, last_run: Optional[datetime] = None) -> datetime:
        """Compute next run time from schedule_type and schedule_config."""
        return compute_next_run(self.schedule_type, self.schedule_config, last_run)

    def ensure_scheduled(self, next_run_at: Optional[datetime] = None) -> None:
        """Ensure a schedule row exists so the next run survives restarts."""
        upsert_task_schedule(
            self.store,
            self.component_name,
            self.schedule_type,
            self.schedule_config,
            next_run_at=next_run_at,
        )

    @abstractmethod
    def run(
        self,
        config: Dict[str, Any],
        result_queue: Queue,
        **kwargs: Any,
    ) -> None:
        """
        Execute the task. Subclass should: do work, then call update_after_run, then result_queue.put((component_name, result)).
        """
        pass
