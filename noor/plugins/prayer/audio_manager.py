import logging
import os
import tempfile
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from noor.core.errors import AudioResolutionFailed
from noor.core.store import NOT_FOUND
from noor.plugins.prayer.constants import ADHAN_OPTIONS

AUDIO_COLLECTION = "audio"
VOICES_COLLECTION = "voices"
SETTINGS_COLLECTION = "settings"
VOLUME_KEY = "adhan_volume"
DEFAULT_VOLUME = 0.7

DISPATCH_SLOT = "dispatch"
PREVIEW_SLOT = "preview"


class PlayableHandle:
    """Audio ready for playback, backed by a downloaded blob or a remote URL.

    A blob is materialised into a temporary file owned by the handle; a remote
    URL is streamed into one on first play. release() deletes that file and is
    safe to call any number of times.
    """

    DOWNLOADED = "downloaded"
    REMOTE = "remote"

    def __init__(self, voice_id: str, source: str, url: Optional[str] = None, path: Optional[str] = None):
        self.voice_id = voice_id
        self.source = source
        self.url = url
        self.path = path
        self.released = False
        self._lock = threading.Lock()

    def release(self) -> None:
        with self._lock:
            if self.released:
                return
            self.released = True
            path, self.path = self.path, None
        if path:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass

    def __repr__(self) -> str:
        return f"PlayableHandle({self.voice_id!r}, {self.source}, released={self.released})"


def _temp_audio_file(voice_id: str) -> str:
    fd, path = tempfile.mkstemp(prefix=f"noor-{voice_id}-", suffix=".mp3")
    os.close(fd)
    return path


class AudioResourceManager:
    """Resolve voices to playable handles and own one handle per playback slot."""

    def __init__(
        self,
        store,
        player=None,
        voices: Optional[List[Dict[str, Any]]] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        default_volume: float = DEFAULT_VOLUME,
    ):
        self.store = store
        self.logger = logging.getLogger(self.__class__.__name__)
        self.default_volume = default_volume
        if player is None:
            from noor.plugins.prayer.player import AdhanPlayer
            player = AdhanPlayer(volume=self._load_volume())
        self.player = player
        self.voices = {v["id"]: v for v in (voices if voices is not None else ADHAN_OPTIONS)}
        self.session = session or requests.Session()
        self.timeout = timeout
        self._slots: Dict[str, PlayableHandle] = {}
        self._slot_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def resolve_playable(self, voice_id: str) -> PlayableHandle:
        """Downloaded blob first; otherwise the voice's remote URL."""
        blob = self.store.get(AUDIO_COLLECTION, voice_id)
        if isinstance(blob, (bytes, bytearray)) and blob:
            handle = PlayableHandle(voice_id, PlayableHandle.DOWNLOADED, path=_temp_audio_file(voice_id))
            try:
                with open(handle.path, "wb") as f:
                    f.write(blob)
            except OSError:
                handle.release()
                raise
            self.logger.debug(f"Resolved {voice_id} to downloaded audio ({len(blob)} bytes)")
            return handle

        voice = self.voices.get(voice_id)
        if voice and voice.get("url"):
            self.logger.debug(f"Resolved {voice_id} to remote URL {voice['url']}")
            return PlayableHandle(voice_id, PlayableHandle.REMOTE, url=voice["url"])

        raise AudioResolutionFailed(f"No downloaded audio or remote URL for voice {voice_id}")

    def _slot_lock(self, slot: str) -> threading.Lock:
        with self._lock:
            return self._slot_locks.setdefault(slot, threading.Lock())

    def play(self, slot: str, voice_id: str) -> PlayableHandle:
        """Acquire a handle into slot (releasing the slot's previous one), then play it.

        Calls for the same slot are serialised, so a slot never holds more than one handle.
        """
        self.reap_finished()
        with self._slot_lock(slot):
            with self._lock:
                previous = self._slots.pop(slot, None)
            if previous is not None:
                self._release(slot, previous)

            handle = None
            try:
                handle = self.resolve_playable(voice_id)
                self._materialize(handle)
                self.player.play(slot, handle.path)
            except Exception as e:
                if handle is not None:
                    handle.release()
                if isinstance(e, AudioResolutionFailed):
                    raise
                raise AudioResolutionFailed(f"Could not play voice {voice_id}: {e}") from e

            with self._lock:
                displaced = self._slots.get(slot)
                self._slots[slot] = handle
            if displaced is not None:
                displaced.release()
            return handle

    def play_for_dispatch(self, voice_id: str) -> PlayableHandle:
        return self.play(DISPATCH_SLOT, voice_id)

    def preview_voice(self, voice_id: str) -> PlayableHandle:
        return self.play(PREVIEW_SLOT, voice_id)

    def current_handle(self, slot: str) -> Optional[PlayableHandle]:
        with self._lock:
            return self._slots.get(slot)

    def stop(self, slot: str) -> None:
        with self._lock:
            handle = self._slots.pop(slot, None)
        if handle is not None:
            self._release(slot, handle)

    def reap_finished(self) -> None:
        """Release handles whose playback has completed."""
        with self._lock:
            finished = [(slot, h) for slot, h in self._slots.items() if not self.player.is_playing(slot)]
            for slot, _ in finished:
                del self._slots[slot]
        for slot, handle in finished:
            self.logger.debug(f"Playback finished in {slot} slot")
            self._release(slot, handle)

    def release_all(self) -> None:
        with self._lock:
            held = list(self._slots.items())
            self._slots.clear()
        for slot, handle in held:
            self._release(slot, handle)

    def _release(self, slot: str, handle: PlayableHandle) -> None:
        try:
            self.player.stop(slot)
        except Exception as e:
            self.logger.warning(f"Error stopping {slot} playback: {e}")
        finally:
            handle.release()

    def _materialize(self, handle: PlayableHandle) -> None:
        """Stream a remote handle into its own temporary file."""
        if handle.path:
            return
        path = _temp_audio_file(handle.voice_id)
        handle.path = path
        self.logger.info(f"Downloading adhan from {handle.url}")
        response = self.session.get(handle.url, stream=True, timeout=self.timeout)
        response.raise_for_status()
        with open(path, "wb") as f:
            for chunk in response.iter_content(chunk_size=8192):
                f.write(chunk)

    # Downloads (explicit user actions)

    def download_voice(self, voice_id: str) -> int:
        """Fetch a voice and store blob + downloaded flag in one unit of work. Returns the size."""
        voice = self.voices.get(voice_id)
        if not voice:
            raise KeyError(f"Unknown voice: {voice_id}")
        self.logger.info(f"Downloading voice {voice_id} from {voice['url']}")
        response = self.session.get(voice["url"], timeout=self.timeout)
        response.raise_for_status()
        blob = response.content
        with self.store.transaction() as tx:
            tx.put(AUDIO_COLLECTION, voice_id, blob)
            tx.put(VOICES_COLLECTION, voice_id, {
                "id": voice_id,
                "is_downloaded": True,
                "size": len(blob),
                "downloaded_at": datetime.now().isoformat(),
            })
        self.logger.info(f"Voice {voice_id} stored ({len(blob)} bytes)")
        return len(blob)

    def remove_voice(self, voice_id: str) -> None:
        with self.store.transaction() as tx:
            tx.delete(AUDIO_COLLECTION, voice_id)
            tx.put(VOICES_COLLECTION, voice_id, {"id": voice_id, "is_downloaded": False})
        self.logger.info(f"Removed downloaded voice {voice_id}")

    def list_voices(self) -> List[Dict[str, Any]]:
        """Catalog entries with their is_downloaded flag."""
        result = []
        for voice_id, voice in self.voices.items():
            record = self.store.get(VOICES_COLLECTION, voice_id)
            downloaded = isinstance(record, dict) and bool(record.get("is_downloaded"))
            result.append({**voice, "is_downloaded": downloaded})
        return result

    # Volume

    def _load_volume(self) -> float:
        """Volume saved through set_volume, else the configured adhan volume."""
        saved = self.store.get(SETTINGS_COLLECTION, VOLUME_KEY)
        if saved is NOT_FOUND:
            saved = self.default_volume
        try:
            return max(0.0, min(1.0, float(saved)))
        except (TypeError, ValueError):
            self.logger.warning(f"Ignoring unusable volume {saved!r}")
            return DEFAULT_VOLUME

    def get_volume(self) -> float:
        return self.player.volume

    def set_volume(self, volume: float) -> None:
        volume = max(0.0, min(1.0, volume))
        self.player.set_volume(volume)
        self.store.put(SETTINGS_COLLECTION, VOLUME_KEY, volume)
