from typing import List, NamedTuple, Optional

from planner.core.geo import visit_duration_minutes
from planner.core.models import AccommodationAnchor, ItineraryOptions, Leg, Stop

DEFAULT_START_TIME = "09:00"

# parking, walking in and out
TRANSITION_BUFFER_MINUTES = 10

MINUTES_PER_DAY = 24 * 60


class DaySchedule(NamedTuple):
    start_time: str
    end_time: str
    end_minutes: int   # minutes after midnight of the start day, not wrapped
    runs_late: bool


def parse_time_to_minutes(value: str) -> int:
    """'HH:MM' -> minutes after midnight"""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time_string(minutes: int) -> str:
    minutes = int(minutes) % MINUTES_PER_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _starts_at_accommodation(legs: List[Leg]) -> bool:
    return bool(legs) and isinstance(legs[0].origin, AccommodationAnchor)


def schedule_day(
    stops: List[Stop],
    legs: List[Leg],
    start_time: Optional[str] = None,
    options: Optional[ItineraryOptions] = None,
) -> DaySchedule:
    """
    Turn an ordered day into start/end wall-clock times.

    Each stop adds its visit duration. Each leg to the next stop adds its
    travel time plus TRANSITION_BUFFER_MINUTES. When the day starts and ends
    at an accommodation, the leg out adds travel plus buffer before the first
    visit and the leg back adds travel only.

    A fixed end time never drops stops: an overrun is reported as
    "<fixed> (may run late)".
    """
    options = options or ItineraryOptions()
    start_time = start_time or options.start_time or DEFAULT_START_TIME
    start_minutes = parse_time_to_minutes(start_time)
    elapsed_seconds = 0

    anchored = _starts_at_accommodation(legs)
    between = legs[1:] if anchored else legs

    if anchored:
        elapsed_seconds += legs[0].duration_seconds + TRANSITION_BUFFER_MINUTES * 60

    for index, stop in enumerate(stops):
        elapsed_seconds += visit_duration_minutes(stop) * 60
        if index < len(stops) - 1 and index < len(between):
            elapsed_seconds += between[index].duration_seconds + TRANSITION_BUFFER_MINUTES * 60

    if anchored and len(legs) == len(stops) + 1:
        elapsed_seconds += legs[-1].duration_seconds

    end_minutes = start_minutes + elapsed_seconds // 60
    end_time = minutes_to_time_string(end_minutes)
    runs_late = False

    if options.has_fixed_end:
        fixed_minutes = parse_time_to_minutes(options.fixed_end_time)
        runs_late = end_minutes > fixed_minutes
        end_time = f"{options.fixed_end_time} (may run late)" if runs_late else options.fixed_end_time

    return DaySchedule(start_time, end_time, end_minutes, runs_late)
