import builtins
import os
import tempfile
import threading
import time

import pytest
import responses

from noor.core.errors import AudioResolutionFailed
from noor.core.store import NOT_FOUND
from noor.plugins.prayer.audio_manager import (
    AUDIO_COLLECTION,
    DISPATCH_SLOT,
    PREVIEW_SLOT,
    AudioResourceManager,
    PlayableHandle,
)
from noor.plugins.prayer.constants import find_voice

from conftest import FakePlayer

MAKKAH_URL = find_voice("makkah")["url"]


@pytest.fixture(autouse=True)
def temp_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    return tmp_path


@pytest.fixture
def player():
    return FakePlayer()


@pytest.fixture
def manager(store, player):
    return AudioResourceManager(store, player=player)


def test_downloaded_blob_never_touches_remote_url(store, manager):
    store.put(AUDIO_COLLECTION, "makkah", b"ID3-local-adhan")

    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        mock.add(responses.GET, MAKKAH_URL, body=b"remote")
        handle = manager.resolve_playable("makkah")
        manager.play_for_dispatch("makkah")
        assert len(mock.calls) == 0

    assert handle.source == PlayableHandle.DOWNLOADED
    with open(handle.path, "rb") as f:
        assert f.read() == b"ID3-local-adhan"
    handle.release()


def test_missing_blob_resolves_to_remote_url(manager):
    handle = manager.resolve_playable("makkah")
    assert handle.source == PlayableHandle.REMOTE
    assert handle.url == MAKKAH_URL
    assert handle.path is None


def test_unknown_voice_without_blob_fails(manager):
    with pytest.raises(AudioResolutionFailed):
        manager.resolve_playable("nowhere")


def test_remote_handle_is_streamed_on_play(manager, player):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, MAKKAH_URL, body=b"remote-adhan")
        handle = manager.play_for_dispatch("makkah")

    slot, path = player.played[0]
    assert slot == DISPATCH_SLOT
    assert path == handle.path
    with open(path, "rb") as f:
        assert f.read() == b"remote-adhan"


def test_release_is_idempotent_and_removes_file(store, manager):
    store.put(AUDIO_COLLECTION, "makkah", b"data")
    handle = manager.resolve_playable("makkah")
    path = handle.path
    handle.release()
    handle.release()
    assert handle.released
    assert not os.path.exists(path)


def test_preview_and_dispatch_slots_are_independent(store, manager, player):
    store.put(AUDIO_COLLECTION, "makkah", b"a")
    store.put(AUDIO_COLLECTION, "madinah", b"b")

    dispatch = manager.play_for_dispatch("makkah")
    preview = manager.preview_voice("madinah")

    assert player.is_playing(DISPATCH_SLOT)
    assert player.is_playing(PREVIEW_SLOT)
    assert not dispatch.released
    assert manager.current_handle(DISPATCH_SLOT) is dispatch
    assert manager.current_handle(PREVIEW_SLOT) is preview


def test_acquiring_into_a_slot_releases_its_previous_handle(store, manager, player):
    store.put(AUDIO_COLLECTION, "makkah", b"a")
    first = manager.preview_voice("makkah")
    first_path = first.path
    second = manager.preview_voice("makkah")

    assert first.released
    assert not os.path.exists(first_path)
    assert PREVIEW_SLOT in player.stopped
    assert manager.current_handle(PREVIEW_SLOT) is second


def test_failed_play_releases_everything(store, manager, player, temp_dir):
    store.put(AUDIO_COLLECTION, "makkah", b"a")
    previous = manager.preview_voice("makkah")

    player.error = RuntimeError("mixer busy")
    with pytest.raises(AudioResolutionFailed):
        manager.preview_voice("makkah")

    assert previous.released
    assert manager.current_handle(PREVIEW_SLOT) is None
    assert list(temp_dir.iterdir()) == []


def test_finished_playback_is_reaped(store, manager, player):
    store.put(AUDIO_COLLECTION, "makkah", b"a")
    handle = manager.play_for_dispatch("makkah")
    player.finish(DISPATCH_SLOT)
    manager.reap_finished()
    assert handle.released
    assert manager.current_handle(DISPATCH_SLOT) is None


def test_download_and_remove_voice(store, manager):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, MAKKAH_URL, body=b"0123456789")
        size = manager.download_voice("makkah")

    assert size == 10
    assert store.get(AUDIO_COLLECTION, "makkah") == b"0123456789"
    voices = {v["id"]: v for v in manager.list_voices()}
    assert voices["makkah"]["is_downloaded"]
    assert not voices["madinah"]["is_downloaded"]

    manager.remove_voice("makkah")
    assert store.get(AUDIO_COLLECTION, "makkah") is NOT_FOUND
    assert not {v["id"]: v for v in manager.list_voices()}["makkah"]["is_downloaded"]


def test_download_unknown_voice(manager):
    with pytest.raises(KeyError):
        manager.download_voice("nowhere")


def test_volume_is_clamped_and_persisted(store, manager, player):
    manager.set_volume(1.5)
    assert player.volume == 1.0
    assert manager.get_volume() == 1.0
    assert manager._load_volume() == 1.0


class BlockingPlayer(FakePlayer):
    """Holds the first play() open until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.proceed = threading.Event()
        self.calls = 0

    def play(self, slot, path):
        self.calls += 1
        if self.calls == 1:
            self.entered.set()
            self.proceed.wait(2.0)
        super().play(slot, path)


def test_concurrent_previews_leave_one_handle(store, temp_dir):
    player = BlockingPlayer()
    manager = AudioResourceManager(store, player=player)
    store.put(AUDIO_COLLECTION, "makkah", b"a")
    handles = []

    first = threading.Thread(target=lambda: handles.append(manager.preview_voice("makkah")))
    first.start()
    assert player.entered.wait(2.0)
    second = threading.Thread(target=lambda: handles.append(manager.preview_voice("makkah")))
    second.start()
    time.sleep(0.1)
    player.proceed.set()
    first.join(2.0)
    second.join(2.0)

    assert len(handles) == 2
    held = manager.current_handle(PREVIEW_SLOT)
    assert held in handles
    assert not held.released
    assert [h.released for h in handles].count(True) == 1
    assert [p.name for p in temp_dir.iterdir()] == [os.path.basename(held.path)]


def test_failed_blob_write_removes_temp_file(store, manager, temp_dir, monkeypatch):
    store.put(AUDIO_COLLECTION, "makkah", b"a")

    def broken_open(path, mode="r", *args, **kwargs):
        if "w" in mode:
            raise OSError("disk full")
        return builtins.open(path, mode, *args, **kwargs)

    monkeypatch.setattr("noor.plugins.prayer.audio_manager.open", broken_open, raising=False)
    with pytest.raises(OSError):
        manager.resolve_playable("makkah")
    with pytest.raises(AudioResolutionFailed):
        manager.preview_voice("makkah")

    assert list(temp_dir.iterdir()) == []
    assert manager.current_handle(PREVIEW_SLOT) is None


def test_volume_starts_from_configured_default(store):
    manager = AudioResourceManager(store, default_volume=0.4)
    assert manager.get_volume() == 0.4

    manager.set_volume(0.9)
    assert AudioResourceManager(store, default_volume=0.4).get_volume() == 0.9


def test_unusable_configured_volume_falls_back(store):
    manager = AudioResourceManager(store, default_volume="loud")
    assert manager.get_volume() == 0.7
