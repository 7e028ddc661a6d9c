"""
Service layer: aggregate progress for the resolved Ramadan window. The
snapshot is what gets shared with a circle; no per-day detail leaves here.
"""
from typing import Any, Dict, List, Optional

from ramadan_goals.core.dates import clamp_date, get_days_in_range, get_ramadan_day, today_str
from ramadan_goals.plugins.ramadan_window.models import RamadanWindow


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _day_checkins(checkins: Dict[str, Any], day: str) -> Dict[str, Any]:
    value = checkins.get(day)
    return value if isinstance(value, dict) else {}


def build_circle_snapshot(
    app_data: Dict[str, Any],
    window: RamadanWindow,
    snapshot_date: Optional[str] = None,
) -> Dict[str, Any]:
    """Completion per goal from the first day of Ramadan up to snapshot_date (clamped into the window)."""
    bounded_date = clamp_date(snapshot_date or today_str(), window.start, window.end)
    days_to_date = get_days_in_range(window.start, bounded_date)
    total_days = max(len(days_to_date), 1)
    goals: List[Dict[str, Any]] = [g for g in app_data.get("goals") or [] if isinstance(g, dict)]
    checkins: Dict[str, Any] = app_data.get("checkins") or {}
    today_checkins = _day_checkins(checkins, bounded_date)

    goal_progress = []
    for goal in goals:
        goal_id = goal.get("id")
        target = _number(goal.get("target", 1))
        completed_days = sum(
            1 for day in days_to_date
            if _number(_day_checkins(checkins, day).get(goal_id, 0)) >= target
        )
        goal_progress.append({
            "goalId": goal_id,
            "title": goal.get("title", ""),
            "target": goal.get("target", 1),
            "unit": goal.get("unit") or "",
            "completionPctToDate": round(completed_days / total_days * 100, 2),
            "todayCompleted": _number(today_checkins.get(goal_id, 0)) >= target,
        })

    overall = 0.0
    if goal_progress:
        overall = round(sum(g["completionPctToDate"] for g in goal_progress) / len(goal_progress), 2)

    return {
        "snapshotDate": bounded_date,
        "overallCompletionPct": overall,
        "todayCompletedCount": sum(1 for g in goal_progress if g["todayCompleted"]),
        "todayTotalGoals": len(goals),
        "goalProgress": goal_progress,
    }


def ramadan_day(window: RamadanWindow, value: Optional[str] = None) -> Optional[int]:
    return get_ramadan_day(value or today_str(), window.start, window.end)
