"""
Per-plugin API for Prayer Times. Mounted at /api/components/prayer/.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict

from noor.core.errors import AudioResolutionFailed
from noor.plugins.prayer.models import CalculationConfig, Location
from noor.plugins.prayer.settings import AdhanSettings


class PrayerTimesResponse(BaseModel):
    """Pydantic view of PrayerTimeTable; serializes from the dataclass attributes."""

    model_config = ConfigDict(from_attributes=True)

    date: date
    key: str
    times: Dict[str, str]
    hijri_date: str = ""
    fetched_at: Optional[datetime] = None
    stale: bool = False


class NextPrayerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    time: str
    instant: datetime
    remaining_seconds: int
    remaining_text: str
    stale: bool = False
    approximate: bool = False


class LocationBody(BaseModel):
    lat: float
    lng: float
    name: str = ""


class ArmRequest(BaseModel):
    location: Optional[LocationBody] = None
    method: Optional[int] = None
    school: Optional[int] = None
    fajr_angle: Optional[float] = None
    isha_angle: Optional[float] = None


class DispatcherStatus(BaseModel):
    state: str
    armed: bool
    audio_unlocked: bool
    last_key: Optional[List[str]] = None
    table_date: Optional[date] = None


class VoiceResponse(BaseModel):
    id: str
    name: str
    muezzin: str = ""
    url: str = ""
    is_downloaded: bool = False


class SettingsBody(BaseModel):
    voice_id: str = "makkah"
    style_id: str = "full"
    method: int = 2
    school: int = 0
    fajr_angle: Optional[float] = None
    isha_angle: Optional[float] = None
    notifications: Dict[str, bool] = {}


def _location_and_config(noor_app, lat: Optional[float], lng: Optional[float], method: Optional[int], school: Optional[int]):
    location = noor_app.settings.get_location()
    if lat is not None and lng is not None:
        location = Location(lat=lat, lng=lng)
    if location is None:
        raise HTTPException(status_code=400, detail="No location configured")
    config = noor_app.settings.load().calculation
    if method is not None or school is not None:
        config = CalculationConfig(
            method=config.method if method is None else method,
            school=config.school if school is None else school,
            fajr_angle=config.fajr_angle,
            isha_angle=config.isha_angle,
        )
    return location, config


def _dispatcher_status(dispatcher) -> DispatcherStatus:
    last_key = dispatcher.ledger.last_key
    return DispatcherStatus(
        state=dispatcher.state,
        armed=dispatcher.is_armed,
        audio_unlocked=dispatcher.audio_unlocked,
        last_key=list(last_key) if last_key else None,
        table_date=dispatcher.table.date if dispatcher.table else None,
    )


def get_router(noor_app) -> Optional[APIRouter]:
    """Return router for this plugin; mounted with prefix /api/components/prayer."""
    router = APIRouter(tags=["Prayer Times"])

    @router.get("/times", response_model=PrayerTimesResponse)
    def get_times(
        day: Optional[date] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        method: Optional[int] = None,
        school: Optional[int] = None,
    ) -> PrayerTimesResponse:
        """Cached table for the day (default today); never touches the network."""
        location, config = _location_and_config(noor_app, lat, lng, method, school)
        table = noor_app.get_cached_times(day or datetime.now().date(), location, config)
        if table is None:
            raise HTTPException(status_code=404, detail="No prayer times cached for this day")
        return PrayerTimesResponse.model_validate(table)

    @router.post("/sync", response_model=PrayerTimesResponse)
    def sync_times(
        day: Optional[date] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        method: Optional[int] = None,
        school: Optional[int] = None,
    ) -> PrayerTimesResponse:
        """Fetch live (stale cache on failure). TimeSourceUnavailable surfaces as 503."""
        location, config = _location_and_config(noor_app, lat, lng, method, school)
        table = noor_app.prayer_service.get_times_for(location, config, day, refresh=True)
        return PrayerTimesResponse.model_validate(table)

    @router.get("/next", response_model=NextPrayerResponse)
    def get_next() -> NextPrayerResponse:
        update = noor_app.feed.current()
        if update is None:
            raise HTTPException(status_code=404, detail="No prayer times cached for today")
        return NextPrayerResponse(
            name=update.name,
            time=update.time,
            instant=update.instant,
            remaining_seconds=int(update.remaining.total_seconds()),
            remaining_text=update.remaining_text,
            stale=update.stale,
            approximate=update.approximate,
        )

    @router.get("/dispatcher", response_model=DispatcherStatus)
    def dispatcher_status() -> DispatcherStatus:
        return _dispatcher_status(noor_app.dispatcher)

    @router.post("/dispatcher/arm", response_model=DispatcherStatus)
    def arm(body: Optional[ArmRequest] = None) -> DispatcherStatus:
        """Arm with the given or saved location/config. Counts as the audio unlock gesture."""
        body = body or ArmRequest()
        location = Location(**body.location.model_dump()) if body.location else None
        config = None
        if body.method is not None or body.school is not None or body.fajr_angle is not None or body.isha_angle is not None:
            saved = noor_app.settings.load().calculation
            config = CalculationConfig(
                method=saved.method if body.method is None else body.method,
                school=saved.school if body.school is None else body.school,
                fajr_angle=body.fajr_angle,
                isha_angle=body.isha_angle,
            )
        noor_app.unlock_audio()
        if not noor_app.arm_dispatcher(location, config):
            raise HTTPException(status_code=400, detail="No location configured")
        return _dispatcher_status(noor_app.dispatcher)

    @router.post("/dispatcher/disarm", response_model=DispatcherStatus)
    def disarm() -> DispatcherStatus:
        noor_app.disarm_dispatcher()
        return _dispatcher_status(noor_app.dispatcher)

    @router.get("/voices", response_model=List[VoiceResponse])
    def list_voices() -> List[VoiceResponse]:
        return [VoiceResponse(**v) for v in noor_app.audio_manager.list_voices()]

    @router.post("/voices/{voice_id}/preview")
    def preview(voice_id: str) -> Dict[str, str]:
        try:
            handle = noor_app.preview_voice(voice_id)
        except AudioResolutionFailed as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"voice_id": voice_id, "source": handle.source}

    @router.post("/voices/{voice_id}/download")
    def download(voice_id: str) -> Dict[str, Any]:
        try:
            size = noor_app.audio_manager.download_voice(voice_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown voice: {voice_id}")
        return {"voice_id": voice_id, "size": size, "is_downloaded": True}

    @router.delete("/voices/{voice_id}")
    def remove(voice_id: str) -> Dict[str, Any]:
        noor_app.audio_manager.remove_voice(voice_id)
        return {"voice_id": voice_id, "is_downloaded": False}

    @router.get("/settings", response_model=SettingsBody)
    def get_settings() -> SettingsBody:
        return SettingsBody(**noor_app.settings.load().to_dict())

    @router.put("/settings", response_model=SettingsBody)
    def put_settings(body: SettingsBody) -> SettingsBody:
        settings = AdhanSettings.from_dict(body.model_dump())
        noor_app.settings.save(settings)
        return SettingsBody(**settings.to_dict())

    @router.put("/location", response_model=LocationBody)
    def put_location(body: LocationBody) -> LocationBody:
        noor_app.settings.save_location(Location(**body.model_dump()))
        return body

    return router
