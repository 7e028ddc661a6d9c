"""
Per-plugin API for the Ramadan window. Mounted at /api/components/ramadan_window/.
"""
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from .models import RamadanWindowState, SourceMode


class SourceModeRequest(BaseModel):
    mode: SourceMode


class LocationRequest(BaseModel):
    city: str = ""
    country: str = ""


class ManualWindowRequest(BaseModel):
    start: str
    end: str


class ManualWindowResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool
    error: str = ""
    season_year: Optional[int] = Field(None, alias="seasonYear")
    state: RamadanWindowState


def get_router(ramadan_app) -> Optional[APIRouter]:
    """Return router for this plugin."""
    router = APIRouter(tags=["Ramadan Window"])

    @router.get("/window", response_model=RamadanWindowState)
    def get_window() -> RamadanWindowState:
        """Current window, lifecycle status, source mode and error."""
        return ramadan_app.controller.state

    @router.post("/source-mode", response_model=RamadanWindowState)
    async def set_source_mode(request: SourceModeRequest) -> RamadanWindowState:
        await ramadan_app.controller.set_source_mode(request.mode)
        return ramadan_app.controller.state

    @router.post("/location", response_model=RamadanWindowState)
    async def update_location(request: LocationRequest) -> RamadanWindowState:
        await ramadan_app.controller.update_location(request.city, request.country)
        return ramadan_app.controller.state

    @router.post("/manual", response_model=ManualWindowResponse)
    async def save_manual_window(request: ManualWindowRequest) -> ManualWindowResponse:
        result = await ramadan_app.controller.save_manual_window(request.start, request.end)
        if not result.ok:
            raise HTTPException(status_code=422, detail=result.error)
        return ManualWindowResponse(
            ok=True,
            season_year=result.season_year,
            state=ramadan_app.controller.state,
        )

    @router.post("/retry", response_model=RamadanWindowState)
    async def retry_resolve() -> RamadanWindowState:
        ramadan_app.controller.retry_resolve()
        return ramadan_app.controller.state

    return router
