"""
YAML configuration for Noor.

The file lives at ~/.noor/config.yaml unless a path is given. Values may
reference environment variables as ${NAME} (anywhere in a string) or as a
bare $NAME; a .env file next to the config or in the working directory is
loaded first without overriding the real environment. Keys missing from the
file fall back to default_config(). When watching, edits are picked up by a
watchdog observer and pushed to registered callbacks.
"""
import copy
import logging
import os
import re
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

PRAYER_COMPONENT = "Prayer Times"
QURAN_COMPONENT = "Quran"

_ENV_LINE = re.compile(r'^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$')
_ENV_REF = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')
_BARE_ENV_REF = re.compile(r'^\$([A-Za-z_][A-Za-z0-9_]*)$')

ConfigChange = Tuple[str, Any, Any]


def default_config(config_dir: Path) -> Dict[str, Any]:
    return {
        "database": {
            "path": str(config_dir / "noor.db"),
        },
        "api": {
            "enabled": False,
            "host": "127.0.0.1",
            "port": 8765,
        },
        "components": {
            PRAYER_COMPONENT: {
                "enable": True,
                "location": {"lat": 21.4225, "lng": 39.8262, "name": "Makkah"},
                "calculation": {"method": 2, "school": 0},
                "adhan": {
                    "voice_id": "makkah",
                    "style_id": "full",
                    "volume": 0.7,
                },
                "notifications": {"Fajr": True, "Dhuhr": True, "Asr": True, "Maghrib": True, "Isha": True},
                "tick_interval": 30,
                "schedule_time": "00:05",
                "unlock_audio": True,
            },
            QURAN_COMPONENT: {
                "enable": True,
                "reciter": "ar.alafasy",
                "translation": "en.sahih",
            },
        },
        "logging": {
            "level": "INFO",
            "file": str(config_dir / "noor.log"),
        },
    }


def merge_defaults(data: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    """Fill keys missing from data with defaults, recursing into nested sections."""
    merged = copy.deepcopy(defaults)
    for key, value in data.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_defaults(value, merged[key])
        else:
            merged[key] = value
    return merged


def diff_config(old: Dict[str, Any], new: Dict[str, Any], path: str = "") -> List[ConfigChange]:
    """Flat list of (dotted.path, old, new) for every leaf that differs."""
    changes: List[ConfigChange] = []
    for key in sorted(set(old) | set(new), key=str):
        current = f"{path}.{key}" if path else str(key)
        before, after = old.get(key), new.get(key)
        if isinstance(before, dict) and isinstance(after, dict):
            changes.extend(diff_config(before, after, current))
        elif before != after:
            changes.append((current, before, after))
    return changes


def validate_prayer_config(section: Dict[str, Any]) -> None:
    """Raise ValueError when the prayer location or calculation cannot be used."""
    location = section.get("location")
    if location:
        try:
            lat, lng = float(location["lat"]), float(location["lng"])
        except (KeyError, TypeError, ValueError):
            raise ValueError(f"{PRAYER_COMPONENT}.location needs numeric lat and lng")
        if not -90 <= lat <= 90 or not -180 <= lng <= 180:
            raise ValueError(f"{PRAYER_COMPONENT}.location out of range: {lat}, {lng}")

    calculation = section.get("calculation") or {}
    for field in ("method", "school"):
        if field in calculation:
            try:
                int(calculation[field])
            except (TypeError, ValueError):
                raise ValueError(f"{PRAYER_COMPONENT}.calculation.{field} must be an integer")


class ConfigChangeHandler(FileSystemEventHandler):
    """Reloads on writes to the config file, including editors that save by rename."""

    def __init__(self, config: "Config", cooldown: float = 1.0):
        self.config = config
        self.cooldown = cooldown
        self.last_reload = 0.0

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in ("modified", "created", "moved"):
            return
        target = str(self.config.config_file)
        if target not in (event.src_path, getattr(event, "dest_path", None)):
            return

        now = time.monotonic()
        if now - self.last_reload < self.cooldown:
            return
        self.last_reload = now
        self.config.reload()


class Config:
    def __init__(self, config_path: Optional[str] = None, watch: bool = True):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.change_callbacks: List[Callable[[Dict[str, Any]], None]] = []
        self.observer: Optional[Observer] = None
        self.data: Dict[str, Any] = {}
        self._reload_lock = threading.Lock()

        if config_path:
            self.config_file = Path(config_path).expanduser().resolve()
        else:
            self.config_file = Path.home() / ".noor" / "config.yaml"
        self.config_dir = self.config_file.parent
        self.logger.debug(f"Using config file: {self.config_file}")

        self._load_env_file()
        self._ensure_config_exists()
        self._load_config()

        if watch:
            self.observer = Observer()
            self.observer.schedule(ConfigChangeHandler(self), str(self.config_dir), recursive=False)
            self.observer.daemon = True
            self.observer.start()
            self.logger.info(f"Watching {self.config_file} for changes")

    def register_change_callback(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        self.change_callbacks.append(callback)

    def reload(self) -> None:
        """Re-read the file; callbacks only run when something actually changed."""
        if not self._reload_lock.acquire(blocking=False):
            return
        try:
            # Editors may still be flushing the file
            time.sleep(0.1)
            old_config = copy.deepcopy(self.data)
            self._load_config()

            changes = diff_config(old_config, self.data)
            if not changes:
                self.logger.debug("Config file touched without changes")
                return
            for path, before, after in changes:
                self.logger.info(f"Config changed: {path}: {before!r} -> {after!r}")

            for callback in self.change_callbacks:
                try:
                    callback(self.data)
                except Exception as e:
                    self.logger.exception(f"Config change callback {callback!r} failed: {e}")
        finally:
            self._reload_lock.release()

    def cleanup(self) -> None:
        """Stop the file observer"""
        if self.observer is None:
            return
        self.observer.stop()
        self.observer.join()
        self.observer = None

    def _ensure_config_exists(self) -> None:
        if self.config_file.exists():
            return
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"Writing default config to {self.config_file}")
        self.config_file.write_text(yaml.safe_dump(default_config(self.config_dir), sort_keys=False))

    def _load_env_file(self) -> None:
        """Load NAME=value pairs from the first .env found; the real environment wins."""
        env_file = next(
            (p for p in (self.config_dir / ".env", Path.cwd() / ".env") if p.is_file()),
            None,
        )
        if env_file is None:
            self.logger.debug("No .env file found")
            return

        self.logger.info(f"Loading environment variables from {env_file}")
        try:
            lines = env_file.read_text().splitlines()
        except OSError as e:
            self.logger.warning(f"Could not read {env_file}: {e}")
            return

        for line in lines:
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            match = _ENV_LINE.match(line)
            if not match:
                self.logger.debug(f"Ignoring malformed .env line: {line!r}")
                continue
            key, value = match.groups()
            os.environ.setdefault(key, value.strip().strip('"').strip("'"))

    def _substitute_env_vars(self, data: Any) -> Any:
        """Resolve $NAME and ${NAME} references; unknown names are left as written."""
        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]
        if not isinstance(data, str):
            return data

        bare = _BARE_ENV_REF.match(data)
        if bare:
            return os.environ.get(bare.group(1), data)
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), m.group(0)), data)

    def _load_config(self) -> None:
        try:
            with open(self.config_file) as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ValueError("root of the config file must be a mapping")

            data = merge_defaults(self._substitute_env_vars(loaded), default_config(self.config_dir))
            validate_prayer_config((data.get("components") or {}).get(PRAYER_COMPONENT) or {})
        except (OSError, yaml.YAMLError, ValueError) as e:
            if self.data:
                self.logger.error(f"Invalid config in {self.config_file}, keeping previous configuration: {e}")
            else:
                self.logger.error(f"Invalid config in {self.config_file}, using defaults: {e}")
                self.data = default_config(self.config_dir)
            return

        log_file = data.get("logging", {}).get("file")
        if log_file:
            data["logging"]["file"] = os.path.expanduser(log_file)
        self.data = data
        self.logger.debug(f"Loaded config from {self.config_file}")

    def get_component_config(self, component_name: str) -> Optional[Dict[str, Any]]:
        return (self.data.get("components") or {}).get(component_name)

    def save_component_config(self, component_name: str, config: Dict[str, Any]) -> None:
        """Persist one component section; the watcher picks the write up as a reload."""
        self.data.setdefault("components", {})[component_name] = config
        with open(self.config_file, "w") as f:
            yaml.safe_dump(self.data, f, sort_keys=False)
