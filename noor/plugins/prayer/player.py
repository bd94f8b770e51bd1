import logging
import os
from typing import Dict

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
import pygame

from noor.core.errors import PermissionDenied


class AdhanPlayer:
    """pygame mixer playback with one mixer channel per named slot, so slots never cut each other off."""

    SLOTS = ("dispatch", "preview")

    def __init__(self, volume: float = 0.7):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.volume = max(0.0, min(1.0, volume))
        self._mixer_ready = None
        self._sounds: Dict[str, "pygame.mixer.Sound"] = {}

    def _ensure_mixer(self) -> bool:
        if self._mixer_ready is None:
            try:
                pygame.mixer.init()
                pygame.mixer.set_num_channels(max(8, len(self.SLOTS)))
                self._mixer_ready = True
            except pygame.error as e:
                self.logger.error(f"Audio mixer unavailable: {e}")
                self._mixer_ready = False
        return self._mixer_ready

    def _channel(self, slot: str) -> "pygame.mixer.Channel":
        return pygame.mixer.Channel(self.SLOTS.index(slot))

    def play(self, slot: str, path: str) -> None:
        """Play a local audio file in the given slot, replacing whatever that slot was playing."""
        if not self._ensure_mixer():
            raise PermissionDenied("audio", "mixer unavailable")
        channel = self._channel(slot)
        channel.stop()
        sound = pygame.mixer.Sound(path)
        sound.set_volume(self.volume)
        channel.play(sound)
        self._sounds[slot] = sound
        self.logger.info(f"Adhan playback started in {slot} slot")

    def stop(self, slot: str) -> None:
        if not self._mixer_ready:
            return
        self._channel(slot).stop()
        self._sounds.pop(slot, None)

    def is_playing(self, slot: str) -> bool:
        if not self._mixer_ready:
            return False
        return bool(self._channel(slot).get_busy())

    def set_volume(self, volume: float) -> None:
        self.volume = max(0.0, min(1.0, volume))
        for sound in self._sounds.values():
            sound.set_volume(self.volume)

    def quit(self) -> None:
        if self._mixer_ready:
            pygame.mixer.quit()
        self._mixer_ready = None
        self._sounds.clear()
