"""
Scripture cache: surah list and downloaded surah content in the local store.

Content and the surah's is_downloaded flag are always written together, so a
reader never sees a surah marked downloaded without its verses.
"""
import logging
from typing import Any, Dict, List, Optional

from noor.plugins.quran.quran_api import AlQuranCloudClient

SURAHS_COLLECTION = "surahs"
AYAHS_COLLECTION = "ayahs"
SURAH_COUNT = 114


def ayah_key(surah_number: int, number_in_surah: int) -> str:
    return f"{surah_number}_{number_in_surah}"


class QuranService:
    def __init__(self, store, client: Optional[AlQuranCloudClient] = None, reciter: str = "ar.alafasy", translation: str = "en.sahih"):
        self.store = store
        self.client = client or AlQuranCloudClient()
        self.reciter = reciter
        self.translation = translation
        self.logger = logging.getLogger(self.__class__.__name__)

    def save_surahs(self, surahs: List[Dict[str, Any]]) -> None:
        """Store surah metadata, keeping the is_downloaded flag of surahs already known."""
        with self.store.transaction() as tx:
            for surah in surahs:
                number = int(surah["number"])
                existing = tx.get(SURAHS_COLLECTION, number, None)
                downloaded = bool(existing.get("is_downloaded")) if isinstance(existing, dict) else False
                tx.put(SURAHS_COLLECTION, number, {**surah, "is_downloaded": downloaded})
        self.logger.info(f"Saved {len(surahs)} surahs")

    def get_surahs(self) -> List[Dict[str, Any]]:
        """Cached surahs by number; may be partial until the list is synced."""
        surahs = [s for s in self.store.get_all(SURAHS_COLLECTION) if isinstance(s, dict)]
        return sorted(surahs, key=lambda s: int(s.get("number", 0)))

    def get_surah(self, number: int) -> Optional[Dict[str, Any]]:
        surah = self.store.get(SURAHS_COLLECTION, number)
        return surah if isinstance(surah, dict) else None

    def sync_surahs(self) -> List[Dict[str, Any]]:
        """Refresh the surah list from the network. A failed fetch leaves the cached list untouched."""
        surahs = self.client.fetch_surahs()
        self.save_surahs(surahs)
        return self.get_surahs()

    def save_surah_content(self, surah_number: int, ayahs: List[Dict[str, Any]]) -> None:
        """Verses and the downloaded flag in one unit; a surah not in the cached list gets a minimal record."""
        with self.store.transaction() as tx:
            for ayah in ayahs:
                key = ayah_key(surah_number, ayah["numberInSurah"])
                tx.put(AYAHS_COLLECTION, key, {**ayah, "id": key, "surahNumber": surah_number})
            surah = tx.get(SURAHS_COLLECTION, surah_number, None)
            if not isinstance(surah, dict):
                surah = {"number": surah_number, "numberOfAyahs": len(ayahs)}
            tx.put(SURAHS_COLLECTION, surah_number, {**surah, "is_downloaded": True})
        self.logger.info(f"Stored {len(ayahs)} ayahs for surah {surah_number}")

    def get_surah_content(self, surah_number: int) -> List[Dict[str, Any]]:
        ayahs = [
            a for a in self.store.get_all(AYAHS_COLLECTION)
            if isinstance(a, dict) and a.get("surahNumber") == surah_number
        ]
        return sorted(ayahs, key=lambda a: int(a.get("numberInSurah", 0)))

    def remove_surah_content(self, surah_number: int) -> None:
        with self.store.transaction() as tx:
            prefix = f"{surah_number}_"
            for key, _ in tx.items(AYAHS_COLLECTION):
                if key.startswith(prefix):
                    tx.delete(AYAHS_COLLECTION, key)
            surah = tx.get(SURAHS_COLLECTION, surah_number, None)
            if isinstance(surah, dict):
                tx.put(SURAHS_COLLECTION, surah_number, {**surah, "is_downloaded": False})
        self.logger.info(f"Removed content of surah {surah_number}")

    def has_full_list(self) -> bool:
        return len(self.get_surahs()) >= SURAH_COUNT

    def is_downloaded(self, surah_number: int) -> bool:
        surah = self.store.get(SURAHS_COLLECTION, surah_number)
        return isinstance(surah, dict) and bool(surah.get("is_downloaded"))

    def download_surah(self, surah_number: int) -> List[Dict[str, Any]]:
        """Fetch a surah with its translation and store it for offline reading."""
        ayahs = self.client.fetch_surah_ayahs(surah_number, self.reciter, self.translation)
        self.save_surah_content(surah_number, ayahs)
        return self.get_surah_content(surah_number)
