"""
Per-plugin API for the Quran cache. Mounted at /api/components/quran/.
"""
from typing import Any, Dict, List, Optional

import requests
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict

from noor.plugins.quran.quran_api import QuranAPIError


class SurahResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    number: int
    name: str = ""
    englishName: str = ""
    englishNameTranslation: str = ""
    numberOfAyahs: int = 0
    revelationType: str = ""
    is_downloaded: bool = False


class AyahResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    number: int
    numberInSurah: int
    text: str = ""
    translation: str = ""
    audio: Optional[str] = None
    juz: Optional[int] = None
    surahNumber: int


def get_router(noor_app) -> Optional[APIRouter]:
    """Return router for this plugin; mounted with prefix /api/components/quran."""
    router = APIRouter(tags=["Quran"])

    def _upstream_error(e: Exception) -> HTTPException:
        return HTTPException(status_code=503, detail=f"Quran service unavailable: {e}")

    @router.get("/surahs", response_model=List[SurahResponse])
    def list_surahs(refresh: bool = False) -> List[Dict[str, Any]]:
        """Cached surah list; fetched from the network when incomplete or on refresh=true."""
        service = noor_app.quran_service
        surahs = service.get_surahs()
        if refresh or not service.has_full_list():
            try:
                surahs = service.sync_surahs()
            except (requests.RequestException, QuranAPIError) as e:
                if not surahs:
                    raise _upstream_error(e)
                noor_app.logger.warning(f"Surah list refresh failed, serving cache: {e}")
        return surahs

    @router.get("/surahs/{number}", response_model=List[AyahResponse])
    def get_surah(number: int) -> List[Dict[str, Any]]:
        ayahs = noor_app.quran_service.get_surah_content(number)
        if not ayahs:
            raise HTTPException(status_code=404, detail=f"Surah {number} is not downloaded")
        return ayahs

    @router.post("/surahs/{number}/download", response_model=List[AyahResponse])
    def download_surah(number: int) -> List[Dict[str, Any]]:
        if not 1 <= number <= 114:
            raise HTTPException(status_code=404, detail=f"No surah {number}")
        try:
            return noor_app.quran_service.download_surah(number)
        except (requests.RequestException, QuranAPIError) as e:
            raise _upstream_error(e)

    @router.delete("/surahs/{number}")
    def remove_surah(number: int) -> Dict[str, Any]:
        noor_app.quran_service.remove_surah_content(number)
        return {"number": number, "is_downloaded": False}

    return router
