"""
Single place for scheduling: in-memory timers and store-backed registered tasks.
"""
import logging
import threading
from datetime import datetime, timedelta
from queue import Queue
from threading import Timer
from typing import Any, Callable, Dict, List, Optional

from noor.core.task import get_next_run_from_store

# Used when a registered task has no schedule of its own to fall back on
DEFAULT_RETRY_SECONDS = 3600


class TaskManager:
    def __init__(self, store=None):
        self.store = store
        self.tasks: Dict[str, Timer] = {}
        self.result_queue = Queue()
        self.logger = logging.getLogger("TaskManager")
        self._lock = threading.RLock()
        self._stopped = False
        self._registered_tasks: Dict[str, Callable[..., None]] = {}
        self._registered_config: Dict[str, tuple] = {}  # component_name -> (config, config_data)
        self._registered_next_run: Dict[str, Callable[[Optional[datetime]], datetime]] = {}

    def schedule_task(self, name: str, callback: Callable, delay: float, one_time: bool = True) -> None:
        """Schedule a task to run after delay seconds. Recurring tasks restart their timer after each run."""
        with self._lock:
            if self._stopped:
                self.logger.debug(f"Task manager stopped; not scheduling {name}")
                return
            if name in self.tasks:
                self.logger.debug(f"Cancelling existing task {name}")
                self.tasks[name].cancel()

            scheduled_time = datetime.now().timestamp() + delay
            timer = Timer(delay, self._run_task, args=(name, callback, delay, one_time))
            timer.daemon = True
            timer.scheduled_time = scheduled_time
            self.tasks[name] = timer
            timer.start()
        self.logger.debug(f"Timer started for {name}, scheduled for {datetime.fromtimestamp(scheduled_time)}")

    def cancel_task(self, name: str) -> bool:
        """Cancel a named timer. Returns False if nothing was scheduled under that name."""
        with self._lock:
            timer = self.tasks.pop(name, None)
        if timer is None:
            return False
        timer.cancel()
        self.logger.info(f"Cancelled task {name}")
        return True

    def is_scheduled(self, name: str) -> bool:
        with self._lock:
            return name in self.tasks

    def _run_task(self, name: str, callback: Callable, delay: float, one_time: bool) -> None:
        """Run the task; a failing run never stops a recurring task."""
        current = threading.current_thread()
        try:
            callback()
            current.last_run = datetime.now().timestamp()
        except Exception as e:
            self.logger.exception(f"Error running task {name}: {e}")
        finally:
            with self._lock:
                # Only the timer still registered under this name may reschedule or clean up
                still_owned = self.tasks.get(name) is current
                if still_owned and one_time:
                    del self.tasks[name]
            if still_owned and not one_time:
                self.schedule_task(name, callback, delay, one_time)

    def register_task(
        self,
        component_name: str,
        runnable: Callable[..., None],
        next_run: Optional[Callable[[Optional[datetime]], datetime]] = None,
    ) -> None:
        """
        Register a runnable for a component. runnable(config, result_queue, **kwargs) does the work and updates next_run.
        next_run(last_run) is the task's own schedule, used when the store has no next_run (e.g. store not open).
        """
        self._registered_tasks[component_name] = runnable
        if next_run is not None:
            self._registered_next_run[component_name] = next_run
        self.logger.debug(f"Registered task for component: {component_name}")

    def schedule_registered_task(
        self,
        component_name: str,
        config: Dict[str, Any],
        config_data: Optional[Dict[str, Any]] = None,
        after_run: bool = False,
    ) -> None:
        """
        Schedule a registered task: run at next_run from the store (or immediately if past due).
        After a run the task is never rescheduled with no delay: without a stored next_run in the
        future, the task's own schedule decides.
        """
        if component_name not in self._registered_tasks:
            self.logger.warning(f"No task registered for component: {component_name}")
            return
        self._registered_config[component_name] = (config, config_data)
        next_run = get_next_run_from_store(self.store, component_name)
        now = datetime.now()
        if after_run and (next_run is None or next_run <= now):
            next_run = self._fallback_next_run(component_name, now)
            self.logger.info(f"No stored next run for {component_name}; next run at {next_run}")
        if next_run is None:
            delay = 0
        else:
            delay = max(0, int((next_run - now).total_seconds()))
        callback = lambda: self._run_registered_and_reschedule(component_name)
        self.schedule_task(component_name, callback, delay, one_time=True)

    def _fallback_next_run(self, component_name: str, now: datetime) -> datetime:
        schedule = self._registered_next_run.get(component_name)
        next_run = schedule(now) if schedule is not None else None
        if next_run is None or next_run <= now:
            next_run = now + timedelta(seconds=DEFAULT_RETRY_SECONDS)
        return next_run

    def _run_registered_and_reschedule(self, component_name: str) -> None:
        """Run the registered runnable then reschedule for the next run."""
        config, config_data = self._registered_config.get(component_name, (None, None))
        self.run_task_now(component_name, config, config_data)
        if config is not None:
            self.schedule_registered_task(component_name, config, config_data, after_run=True)

    def run_task_now(
        self,
        component_name: str,
        config: Optional[Dict[str, Any]],
        config_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Run a registered task once immediately (e.g. manual refresh). Puts result on result_queue."""
        runnable = self._registered_tasks.get(component_name)
        if not runnable:
            self.logger.warning(f"No task registered for component: {component_name}")
            return
        if config is None:
            return
        try:
            if config_data is not None:
                runnable(config, self.result_queue, config_data=config_data)
            else:
                runnable(config, self.result_queue)
        except Exception as e:
            self.logger.exception(f"Registered task {component_name} failed: {e}")

    def get_active_timers(self) -> List[Dict[str, Any]]:
        """Return list of active timer names and their next run time (for API)."""
        result = []
        with self._lock:
            timers = list(self.tasks.items())
        for name, timer in timers:
            if getattr(timer, "scheduled_time", None) is not None:
                next_run = datetime.fromtimestamp(timer.scheduled_time)
                result.append({"name": name, "next_run_at": next_run})
        return result

    def stop(self) -> None:
        """Stop all scheduled tasks. Safe to call more than once."""
        with self._lock:
            self._stopped = True
            timers = list(self.tasks.values())
            self.tasks.clear()
        for timer in timers:
            timer.cancel()
