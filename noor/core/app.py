import logging
import sys
from datetime import date
from queue import Empty
from typing import Any, Callable, Dict, Optional

from noor.core.config import PRAYER_COMPONENT, QURAN_COMPONENT, Config
from noor.core.errors import StorageUnavailable
from noor.core.store import LocalStore
from noor.core.task_manager import TaskManager
from noor.plugins.prayer.audio_manager import DEFAULT_VOLUME, AudioResourceManager, PlayableHandle
from noor.plugins.prayer.countdown import NextPrayerFeed, NextPrayerUpdate
from noor.plugins.prayer.dispatcher import NotificationDispatcher
from noor.plugins.prayer.models import CalculationConfig, Location, PrayerTimeTable
from noor.plugins.prayer.notifier import PlatformNotifier
from noor.plugins.prayer.prayer_base import AladhanBackend
from noor.plugins.prayer.service import PrayerTimesService
from noor.plugins.prayer.settings import AdhanSettings, SettingsService
from noor.plugins.prayer.task import PrayerTimesTask
from noor.plugins.quran.service import QuranService


class NoorApp:
    def __init__(
        self,
        config_path: Optional[str] = None,
        watch_config: bool = True,
        setup_logging: bool = True,
        backend=None,
        notifier=None,
        player=None,
        quran_client=None,
    ):
        # Initialize logger
        self.logger = logging.getLogger(self.__class__.__name__)
        self._shut_down = False

        # Initialize configuration
        self.config = Config(config_path=config_path, watch=watch_config)
        self.config.register_change_callback(self.handle_config_change)

        if setup_logging:
            self._setup_logging()

        # Open the local store; without it the app runs network-only
        self.store = LocalStore(config_data=self.config.data)
        try:
            self.store.open()
        except StorageUnavailable as e:
            self.logger.warning(f"Continuing without local store: {e}")

        self.task_manager = TaskManager(store=self.store)

        prayer_config = self.prayer_config
        self.prayer_service = PrayerTimesService(self.store, backend or AladhanBackend(prayer_config))
        self.settings = SettingsService(self.store, prayer_config)
        self.settings.register_change_callback(self._on_settings_change)

        self.audio_manager = AudioResourceManager(
            self.store,
            player=player,
            default_volume=(prayer_config.get("adhan") or {}).get("volume", DEFAULT_VOLUME),
        )
        self.notifier = notifier or PlatformNotifier()

        adhan = self.settings.load()
        self.dispatcher = NotificationDispatcher(
            self.prayer_service,
            self.audio_manager,
            self.notifier,
            task_manager=self.task_manager,
            interval=int(prayer_config.get("tick_interval", 30)),
            voice_id=adhan.voice_id,
            enabled_prayers=adhan.enabled_prayers(),
        )
        self.feed = NextPrayerFeed(
            self.prayer_service,
            self.settings,
            task_manager=self.task_manager,
            is_stale=lambda: bool(self.dispatcher.table is not None and self.dispatcher.table.stale),
        )

        quran_config = self.config.get_component_config(QURAN_COMPONENT) or {}
        self.quran_service = QuranService(
            self.store,
            client=quran_client,
            reciter=quran_config.get("reciter", "ar.alafasy"),
            translation=quran_config.get("translation", "en.sahih"),
        )

        # Daily sync of today's and tomorrow's tables
        self.prayer_task = PrayerTimesTask(PRAYER_COMPONENT, prayer_config, self.prayer_service, self.settings, store=self.store)
        self.prayer_task.ensure_scheduled()
        self.task_manager.register_task(PRAYER_COMPONENT, self.prayer_task.run, next_run=self.prayer_task.get_next_run)

    @property
    def prayer_config(self) -> Dict[str, Any]:
        return self.config.get_component_config(PRAYER_COMPONENT) or {}

    def _setup_logging(self):
        """Configure logging to write to both file and stdout"""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
        log_config = self.config.data.get("logging") or {}
        root_logger.setLevel(getattr(logging, str(log_config.get("level", "INFO")).upper(), logging.INFO))

        # Create formatter with line numbers
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        )

        # File handler
        if log_config.get("file"):
            try:
                file_handler = logging.FileHandler(log_config["file"])
                file_handler.setFormatter(formatter)
                root_logger.addHandler(file_handler)
            except OSError as e:
                sys.stderr.write(f"Cannot open log file {log_config['file']}: {e}\n")

        # Console handler
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        logging.info("Noor starting...")

    # Lifecycle

    def start(self) -> None:
        """Schedule background work, arm the dispatcher and start the API server."""
        self.task_manager.schedule_registered_task(PRAYER_COMPONENT, self.prayer_config, self.config.data)

        if self.prayer_config.get("unlock_audio", False):
            self.unlock_audio()
        self.arm_dispatcher()

        # Start API server if enabled (api.enabled in config)
        try:
            from noor.api import run_api_server
            run_api_server(self)
        except Exception as e:
            self.logger.warning(f"API server not started: {e}")

    def run(self) -> None:
        self.start()
        try:
            while True:
                self.process_results(timeout=1.0)
        except KeyboardInterrupt:
            self.logger.info("Interrupted, shutting down")
        finally:
            self.shutdown()

    def process_results(self, timeout: Optional[float] = None) -> None:
        """Handle background task results from the task manager's queue."""
        try:
            task_name, result = self.task_manager.result_queue.get(timeout=timeout)
        except Empty:
            return
        self.logger.debug(f"Processing task result for {task_name}")
        if task_name == PRAYER_COMPONENT and result:
            # Fresh tables are in the store; the dispatcher picks them up on its next tick
            self.dispatcher.request_refresh()

    def shutdown(self) -> None:
        """Stop everything. Safe to call more than once."""
        if self._shut_down:
            return
        self._shut_down = True
        self.logger.info("Shutting down")
        self.dispatcher.disarm()
        self.task_manager.stop()
        self.audio_manager.release_all()
        player = getattr(self.audio_manager, "player", None)
        if player is not None and hasattr(player, "quit"):
            player.quit()
        self.config.cleanup()
        self.store.close()

    # Config and settings

    def handle_config_change(self, new_config: Dict[str, Any]) -> None:
        """Handle configuration changes"""
        self.logger.info("Handling config change")
        prayer_config = (new_config.get("components") or {}).get(PRAYER_COMPONENT) or {}
        self.settings.update_defaults(prayer_config)

        quran_config = (new_config.get("components") or {}).get(QURAN_COMPONENT) or {}
        self.quran_service.reciter = quran_config.get("reciter", self.quran_service.reciter)
        self.quran_service.translation = quran_config.get("translation", self.quran_service.translation)

    def _on_settings_change(self, settings: AdhanSettings, location: Optional[Location]) -> None:
        self.dispatcher.reconfigure(
            location=location,
            config=settings.calculation,
            notifications=settings.enabled_prayers(),
            voice_id=settings.voice_id,
        )

    # Public API

    def sync_now(self) -> Dict[str, PrayerTimeTable]:
        """Run the daily sync once in the calling thread; returns tables keyed by ISO date."""
        self.prayer_task.run(self.prayer_config, self.task_manager.result_queue)
        tables: Dict[str, PrayerTimeTable] = {}
        while True:
            try:
                task_name, result = self.task_manager.result_queue.get_nowait()
            except Empty:
                return tables
            if task_name == PRAYER_COMPONENT and result:
                tables.update(result)
                self.dispatcher.request_refresh()


    def subscribe_next_prayer(self, callback: Callable[[NextPrayerUpdate], None]) -> Callable[[], None]:
        return self.feed.subscribe(callback)

    def get_cached_times(self, target_date: date, location: Location, config: CalculationConfig) -> Optional[PrayerTimeTable]:
        return self.prayer_service.get_cached_times(target_date, location, config)

    def unlock_audio(self) -> None:
        """User granted audio/notification access: re-enable channels without a restart."""
        self.notifier.reset_permissions()
        self.dispatcher.unlock_audio()

    def arm_dispatcher(self, location: Optional[Location] = None, config: Optional[CalculationConfig] = None) -> bool:
        location = location or self.settings.get_location()
        if location is None:
            self.logger.warning("Cannot arm dispatcher without a location")
            return False
        self.dispatcher.arm(location, config or self.settings.load().calculation)
        return True

    def disarm_dispatcher(self) -> None:
        self.dispatcher.disarm()

    def preview_voice(self, voice_id: str) -> PlayableHandle:
        return self.audio_manager.preview_voice(voice_id)
