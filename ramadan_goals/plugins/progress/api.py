"""
Per-plugin API for progress snapshots. Mounted at /api/components/progress/.
Reads goals and check-ins from the app document and the window from the controller.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from ramadan_goals.core.dates import is_iso_date, today_str

from .service import build_circle_snapshot, ramadan_day


class GoalProgressResponse(BaseModel):
    goalId: Any = None
    title: str = ""
    target: Any = 1
    unit: str = ""
    completionPctToDate: float = 0.0
    todayCompleted: bool = False


class CircleSnapshotResponse(BaseModel):
    snapshotDate: str
    overallCompletionPct: float
    todayCompletedCount: int
    todayTotalGoals: int
    goalProgress: List[GoalProgressResponse]


class RamadanDayResponse(BaseModel):
    date: str
    day: Optional[int] = None


def _checked_date(value: Optional[str]) -> Optional[str]:
    if value is not None and not is_iso_date(value):
        raise HTTPException(status_code=422, detail="Enter dates in YYYY-MM-DD format.")
    return value


def get_router(ramadan_app) -> Optional[APIRouter]:
    """Return router for this plugin."""
    router = APIRouter(tags=["Progress"])

    @router.get("/snapshot", response_model=CircleSnapshotResponse)
    def get_snapshot(date: Optional[str] = Query(None)) -> Dict[str, Any]:
        """Aggregate completion for the resolved Ramadan window up to date (default today)."""
        snapshot_date = _checked_date(date)
        return build_circle_snapshot(ramadan_app.app_data.document, ramadan_app.controller.window, snapshot_date)

    @router.get("/day", response_model=RamadanDayResponse)
    def get_day(date: Optional[str] = Query(None)) -> RamadanDayResponse:
        """Day number of Ramadan for date (default today); null outside the window."""
        value = _checked_date(date) or today_str()
        return RamadanDayResponse(date=value, day=ramadan_day(ramadan_app.controller.window, value))

    return router
