"""
Default performance scorer for derived training sessions.

Any callable (RawActivity) -> float | None can replace it; the derivation
pipeline takes the scorer as a parameter.
"""
from typing import Callable

from fitlink.schemas.activity import RawActivity

Scorer = Callable[[RawActivity], float | None]

# (pace upper bound in min/km, score)
RUN_PACE_BANDS = ((4.0, 95.0), (4.5, 88.0), (5.0, 82.0), (5.5, 75.0), (6.0, 68.0))


def default_score(activity: RawActivity) -> float | None:
    if not activity.average_speed or not activity.distance:
        return 50.0
    speed_kmh = activity.average_speed * 3.6
    if (activity.type or "").lower() == "run":
        pace = 60 / speed_kmh
        for bound, score in RUN_PACE_BANDS:
            if pace < bound:
                return score
        return 60.0
    return min(95.0, max(50.0, speed_kmh * 5))


def average_pace(distance: float | None, duration: int | None) -> float | None:
    """Seconds per km."""
    if not distance or not duration:
        return None
    return duration / (distance / 1000)
