"""
Pace and speed derivation for athlete totals and recent activities.

Runs are shown as time per kilometre / mile, rides as average speed in
km/h / mph, swims as time per 100 m / 100 yd.
"""
from typing import Any, Dict, Optional, Union

METERS_PER_KM = 1000.0
METERS_PER_MILE = 1609.344
METERS_PER_100M = 100.0
METERS_PER_100YD = 91.44


def pace_seconds(moving_time: float, distance_m: float, unit_m: float) -> Optional[float]:
    """
    Seconds needed per `unit_m` metres.

    Returns:
        Pace in seconds per unit, or None if the distance is zero or negative.
    """
    if distance_m <= 0:
        return None
    return moving_time / (distance_m / unit_m)


def format_pace(seconds: float) -> str:
    """Format a pace as "m:ss" (minutes are not wrapped at the hour)."""
    total = int(round(seconds))
    return f"{total // 60}:{total % 60:02d}"


def speed(distance_m: float, moving_time: float, units: str = "metric") -> Optional[float]:
    """Average speed in km/h (metric) or mph (imperial); None without moving time."""
    if moving_time <= 0:
        return None
    unit_m = METERS_PER_KM if units == "metric" else METERS_PER_MILE
    return (distance_m / unit_m) / (moving_time / 3600.0)


def run_unit(units: str) -> float:
    return METERS_PER_KM if units == "metric" else METERS_PER_MILE


def swim_unit(units: str) -> float:
    return METERS_PER_100M if units == "metric" else METERS_PER_100YD


def totals_pace(key: str, totals: Dict[str, Any], units: str = "metric") -> Union[str, int]:
    """
    Display pace for one `*_totals` bucket of the athlete stats.

    `key` decides the sport: "...run..." → "m:ss" per km/mi, "...ride..." →
    speed with two decimals, anything else (swims) → "m:ss" per 100 m/yd.
    Empty buckets get 0.
    """
    distance = totals.get("distance") or 0
    moving_time = totals.get("moving_time") or 0
    if distance <= 0:
        return 0

    if "ride" in key:
        value = speed(distance, moving_time, units)
        return f"{value:.2f}" if value is not None else 0

    unit_m = run_unit(units) if "run" in key else swim_unit(units)
    return format_pace(pace_seconds(moving_time, distance, unit_m))


def add_stats_pace(stats: Dict[str, Any], units: str = "metric") -> Dict[str, Any]:
    """Return a copy of athlete stats with a `pace` field on every totals bucket."""
    result = dict(stats)
    for key, value in stats.items():
        if "totals" in key and isinstance(value, dict):
            result[key] = {**value, "pace": totals_pace(key, value, units)}
    return result
