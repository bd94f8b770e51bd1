"""
Per-plugin API for the Qiblah direction. Mounted at /api/components/qiblah/.
"""
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from .bearing import distance_km, qiblah_bearing


class BearingResponse(BaseModel):
    lat: float
    lng: float
    bearing: float
    distance_km: float


def get_router(noor_app) -> Optional[APIRouter]:
    router = APIRouter(tags=["Qiblah"])

    @router.get("/bearing", response_model=BearingResponse)
    def get_bearing(
        lat: Optional[float] = Query(None, ge=-90, le=90),
        lng: Optional[float] = Query(None, ge=-180, le=180),
    ) -> BearingResponse:
        """Bearing for the given coordinates, or for the saved location."""
        if lat is None or lng is None:
            location = noor_app.settings.get_location()
            if location is None:
                raise HTTPException(status_code=400, detail="No location configured")
            lat, lng = location.lat, location.lng
        return BearingResponse(
            lat=lat,
            lng=lng,
            bearing=round(qiblah_bearing(lat, lng), 2),
            distance_km=round(distance_km(lat, lng), 1),
        )

    return router
