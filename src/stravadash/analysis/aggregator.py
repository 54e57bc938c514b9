"""
Display aggregates derived from the cached activity list.

Pure functions: no network or disk access, `today` is always injectable.

  weekly_distance_series  cumulative distance per ISO week, one series per year
  effort_series           weekly sum of the relative-effort (suffer) score
  recent_comparison       last K activities of a type vs. their own average
  goal_progress           share of an annual distance goal vs. share of year elapsed
  summarise_activities    per-period chart bars (months for "ytd", weekdays otherwise)
"""
import calendar
from datetime import date, timedelta
from itertools import accumulate
from statistics import mean
from typing import Any, Dict, Iterable, List, Optional

from stravadash.analysis.pace import format_pace, pace_seconds, run_unit, speed, swim_unit
from stravadash.models.activity import Activity

WEEKS_PER_YEAR = 53
TRENDING_COUNT = 3


def activity_day(activity: Activity) -> Optional[date]:
    moment = activity.start_date_local or activity.start_date
    return moment.date() if moment else None


def matches_type(activity: Activity, activity_type: str) -> bool:
    """Case-insensitive type match with virtual activities merged (VirtualRun is a run)."""
    return activity.base_type.lower() == activity_type.lower()


def _of_type(activities: Iterable[Activity], activity_type: str) -> List[Activity]:
    return [a for a in activities if matches_type(a, activity_type) and activity_day(a)]


def distance_unit(units: str) -> float:
    return 1000.0 if units == "metric" else 1609.344


def iso_week_bucket(day: date) -> int:
    """
    ISO week number corrected to the calendar year of `day`.

    The first days of January can fall in ISO week 52/53 of the previous
    year; they count as week 1. Late-December days in ISO week 1 of the next
    year count as week 53.
    """
    week = day.isocalendar()[1]
    if day.timetuple().tm_yday < 6 and week > 51:
        return 1
    if day.month == 12 and week == 1:
        return WEEKS_PER_YEAR
    return week


def weekly_distance_series(
    activities: Iterable[Activity],
    activity_type: str,
    *,
    years: int = 3,
    today: Optional[date] = None,
    units: str = "metric",
) -> Dict[int, List[float]]:
    """
    Running distance total per week for each of the trailing `years` years.

    Returns:
        {year: [cumulative km (or mi) at end of week 1, week 2, ...]}. Past
        years have 53 values; the current year stops at the current week.
    """
    today = today or date.today()
    first_year = today.year - years + 1
    weekly = {year: [0.0] * WEEKS_PER_YEAR for year in range(first_year, today.year + 1)}

    for activity in _of_type(activities, activity_type):
        day = activity_day(activity)
        if day.year in weekly:
            weekly[day.year][iso_week_bucket(day) - 1] += activity.distance

    unit = distance_unit(units)
    series = {}
    for year, weeks in weekly.items():
        cumulative = list(accumulate(weeks))
        if year == today.year:
            cumulative = cumulative[:iso_week_bucket(today)]
        series[year] = [round(total / unit, 2) for total in cumulative]
    return series


def effort_series(
    activities: Iterable[Activity],
    *,
    weeks: int = 12,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Summed suffer_score for each of the trailing `weeks` Monday-based weeks, oldest first."""
    today = today or date.today()
    current_week = today - timedelta(days=today.weekday())
    starts = [current_week - timedelta(weeks=n) for n in range(weeks - 1, -1, -1)]
    scores = {start: 0.0 for start in starts}

    for activity in activities:
        day = activity_day(activity)
        if day is None or not activity.suffer_score:
            continue
        week_start = day - timedelta(days=day.weekday())
        if week_start in scores:
            scores[week_start] += activity.suffer_score

    return [{"week_start": start.isoformat(), "score": scores[start]} for start in starts]


def _pace_value(activity_type: str, distance: float, moving_time: float, units: str) -> Optional[float]:
    """Seconds per unit for runs/swims, speed for rides."""
    if activity_type.lower() == "ride":
        return speed(distance, moving_time, units)
    unit = swim_unit(units) if activity_type.lower() == "swim" else run_unit(units)
    return pace_seconds(moving_time, distance, unit)


def _format_pace_value(activity_type: str, value: Optional[float]) -> Any:
    if value is None:
        return None
    if activity_type.lower() == "ride":
        return round(value, 2)
    return format_pace(value)


def _trend(value: Optional[float], average: Optional[float], lower_is_better: bool = False) -> Optional[str]:
    if value is None or average is None:
        return None
    better = value < average if lower_is_better else value > average
    return "up" if better else "down"


def recent_comparison(
    activities: Iterable[Activity],
    activity_type: str,
    *,
    count: int = 10,
    units: str = "metric",
) -> Dict[str, Any]:
    """
    Compare the latest activities of one type with their own recent average.

    The last `count` activities give the averages; each of the newest three
    is flagged "up"/"down" per metric. For pace "up" means faster than
    average (lower time per unit, or higher speed for rides).
    """
    recent = sorted(_of_type(activities, activity_type), key=activity_day, reverse=True)[:count]
    if not recent:
        return {"type": activity_type, "count": 0, "latest": []}

    total_distance = sum(a.distance for a in recent)
    total_time = sum(a.moving_time for a in recent)
    avg_distance = mean(a.distance for a in recent)
    avg_elevation = mean(a.total_elevation_gain for a in recent)
    avg_pace = _pace_value(activity_type, total_distance, total_time, units)
    pace_lower_is_better = activity_type.lower() != "ride"

    latest = []
    for activity in recent[:TRENDING_COUNT]:
        pace = _pace_value(activity_type, activity.distance, activity.moving_time, units)
        latest.append(
            {
                "id": activity.id,
                "name": activity.name,
                "date": activity_day(activity).isoformat(),
                "distance": activity.distance,
                "moving_time": activity.moving_time,
                "elevation": activity.total_elevation_gain,
                "pace": _format_pace_value(activity_type, pace),
                "distance_trend": _trend(activity.distance, avg_distance),
                "elevation_trend": _trend(activity.total_elevation_gain, avg_elevation),
                "pace_trend": _trend(pace, avg_pace, lower_is_better=pace_lower_is_better),
            }
        )

    return {
        "type": activity_type,
        "count": len(recent),
        "distance": avg_distance,
        "moving_time": total_time / len(recent),
        "elevation": avg_elevation,
        "pace": _format_pace_value(activity_type, avg_pace),
        "latest": latest,
    }


def goal_progress(
    activities: Iterable[Activity],
    activity_type: str,
    goal: float,
    *,
    today: Optional[date] = None,
    units: str = "metric",
) -> Optional[Dict[str, Any]]:
    """
    Progress towards an annual distance goal.

    Args:
        goal: distance goal for the calendar year, in km (metric) or mi.

    Returns:
        None for a non-positive goal, else the year-to-date distance, both
        percentages, their signed difference and an ahead/behind status with
        the colour the dashboard uses for it.
    """
    if goal <= 0:
        return None
    today = today or date.today()
    unit = distance_unit(units)
    done = sum(
        a.distance for a in _of_type(activities, activity_type)
        if activity_day(a).year == today.year and activity_day(a) <= today
    ) / unit

    days_in_year = 366 if calendar.isleap(today.year) else 365
    year_fraction = today.timetuple().tm_yday / days_in_year
    percent_of_goal = done / goal * 100
    percent_of_year = year_fraction * 100
    deviation = percent_of_goal - percent_of_year
    ahead = deviation >= 0

    return {
        "type": activity_type,
        "goal": goal,
        "distance": round(done, 2),
        "expected": round(goal * year_fraction, 2),
        "percent_of_goal": round(percent_of_goal, 1),
        "percent_of_year": round(percent_of_year, 1),
        "deviation": round(deviation, 1),
        "status": "ahead" if ahead else "behind",
        "color": "green" if ahead else "red",
    }


def summarise_activities(
    activities: Iterable[Activity],
    activity_types: Iterable[str],
    *,
    period: str = "recent",
    today: Optional[date] = None,
) -> Dict[str, Dict[str, Any]]:
    """
    Totals plus chart bars per activity type for the display period.

    "ytd" covers the current year with one bar per month; any other period
    covers the current Monday-based week with one bar per weekday.
    """
    today = today or date.today()
    activities = list(activities)
    if period == "ytd":
        start, bars = date(today.year, 1, 1), 12
        bar_index = lambda day: day.month - 1  # noqa: E731
    else:
        start, bars = today - timedelta(days=today.weekday()), 7
        bar_index = lambda day: day.weekday()  # noqa: E731

    summary: Dict[str, Dict[str, Any]] = {}
    for activity_type in activity_types:
        totals = {
            "total_distance": 0.0,
            "total_elevation_gain": 0.0,
            "total_moving_time": 0,
            "max_interval_distance": 0.0,
            "intervals": [0.0] * bars,
        }
        for activity in _of_type(activities, activity_type):
            day = activity_day(activity)
            if not start <= day <= today:
                continue
            totals["total_distance"] += activity.distance
            totals["total_elevation_gain"] += activity.total_elevation_gain
            totals["total_moving_time"] += activity.moving_time
            totals["intervals"][bar_index(day)] += activity.distance
        totals["max_interval_distance"] = max(totals["intervals"])
        summary[activity_type.lower()] = totals
    return summary


def build_summary(activities: List[Activity], config, today: Optional[date] = None) -> Dict[str, Any]:
    """Everything the SUMMARY notification carries, for a DashboardConfig."""
    today = today or date.today()
    types = [t.lower() for t in config.activities]
    analysis = config.analysis
    return {
        "weekly_distance": {
            t: {
                str(year): series
                for year, series in weekly_distance_series(
                    activities, t, years=analysis.years, today=today, units=config.units
                ).items()
            }
            for t in types
        },
        "effort": effort_series(activities, weeks=analysis.effort_weeks, today=today),
        "recent": {
            t: recent_comparison(activities, t, count=analysis.recent_count, units=config.units)
            for t in types
        },
        "goals": {
            t: goal_progress(activities, t, goal, today=today, units=config.units)
            for t, goal in config.goals.items()
        },
        "period": summarise_activities(activities, types, period=config.period, today=today),
    }
