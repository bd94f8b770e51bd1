import logging
from typing import Any, Dict, List, Optional

import requests

QURAN_API_BASE = "https://api.alquran.cloud/v1"


class QuranAPIError(Exception):
    """AlQuran Cloud answered with something unusable."""


class AlQuranCloudClient:
    """Surah list and surah content from api.alquran.cloud"""

    def __init__(self, config: Optional[Dict[str, Any]] = None, session: Optional[requests.Session] = None):
        self.config = config or {}
        self.session = session or requests.Session()
        self.base_url = self.config.get("base_url", QURAN_API_BASE)
        self.timeout = self.config.get("timeout", 15)
        self.logger = logging.getLogger(self.__class__.__name__)

    def _get_data(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        self.logger.info(f"Making API request to {url}")
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        try:
            payload = response.json()
        except ValueError as e:
            raise QuranAPIError(f"Invalid JSON from {url}: {e}") from e
        if payload.get("code") != 200 or "data" not in payload:
            raise QuranAPIError(f"Invalid response from {url}: {payload.get('status')}")
        return payload["data"]

    def fetch_surahs(self) -> List[Dict[str, Any]]:
        """Metadata for all 114 surahs."""
        return list(self._get_data("/surah"))

    def fetch_surah_ayahs(self, number: int, reciter: str = "ar.alafasy", translation: str = "en.sahih") -> List[Dict[str, Any]]:
        """Verses of one surah in the reciter's edition, each carrying the translation text."""
        arabic = self._get_data(f"/surah/{number}/{reciter}")
        translated = self._get_data(f"/surah/{number}/{translation}")
        translations = {a.get("numberInSurah"): a.get("text", "") for a in translated.get("ayahs", [])}

        ayahs = []
        for ayah in arabic.get("ayahs", []):
            ayahs.append({**ayah, "translation": translations.get(ayah.get("numberInSurah"), "")})
        self.logger.debug(f"Fetched {len(ayahs)} ayahs for surah {number}")
        return ayahs
