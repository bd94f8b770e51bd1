"""
Background task: sync today's and tomorrow's prayer times into the store, persist next_run.
"""
from datetime import timedelta
from typing import Any, Dict, Optional

from noor.core.errors import TimeSourceUnavailable
from noor.core.task import BaseTask, TaskType, update_after_run


class PrayerTimesTask(BaseTask):
    """Fetch prayer times through the time source (write-through), update next_run."""

    def __init__(self, component_name: str, config: Dict[str, Any], time_source, settings, store=None):
        schedule_type, schedule_config = self._schedule_from_config(config)
        super().__init__(component_name, schedule_type, schedule_config, store=store)
        self.config = config
        self.time_source = time_source
        self.settings = settings

    def _schedule_from_config(self, config: Dict[str, Any]) -> tuple:
        schedule_time = config.get("schedule_time")
        update_interval = config.get("update_interval", 3600)
        if schedule_time:
            try:
                parts = str(schedule_time).strip().split(":")
                hour = int(parts[0]) if parts else 0
                minute = int(parts[1]) if len(parts) > 1 else 0
                return TaskType.DAILY, {"time": f"{hour:02d}:{minute:02d}"}
            except (ValueError, IndexError):
                return TaskType.DAILY, {"time": "00:05"}
        return TaskType.INTERVAL_SECONDS, {"interval_seconds": int(update_interval)}

    def run(
        self,
        config: Dict[str, Any],
        result_queue: Any,
        config_data: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        location = self.settings.get_location()
        if location is None:
            self.logger.warning("Prayer Times: no location configured, skipping sync")
            update_after_run(self.store, self.component_name, error="no location")
            result_queue.put((self.component_name, None))
            return

        calculation = self.settings.load().calculation
        today = self.time_source.clock().date()
        tables = {}
        error = None
        for target_date in (today, today + timedelta(days=1)):
            try:
                table = self.time_source.get_times_for(location, calculation, target_date, refresh=True)
            except TimeSourceUnavailable as e:
                self.logger.error(f"Prayer Times: sync for {target_date} failed: {e}")
                error = str(e)
                continue
            tables[target_date.isoformat()] = table
            state = "stale cache" if table.stale else "saved"
            self.logger.info(f"Prayer Times: {state} for {target_date} ({table.key})")
            if table.stale and error is None:
                error = f"stale data served for {target_date}"

        update_after_run(self.store, self.component_name, error=error)
        result_queue.put((self.component_name, tables or None))
