"""Receive and mute window evaluation (core domain).

Windows are local wall-clock "HH:MM" pairs. A window whose start is after its
end wraps across midnight, and "24:00" is only meaningful as an end bound
where it stands for the end of the day. Equal bounds make an empty window.
Bad config never blocks delivery: anything that fails to parse is treated
as "no window".
"""

from __future__ import annotations

from datetime import datetime, time
from typing import Optional

END_OF_DAY = "24:00"


def parse_time_of_day(value: Optional[str]) -> Optional[time]:
    """Parse "HH:MM" or "HH:MM:SS"; returns None for anything malformed."""

    if not value:
        return None
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        numbers = [int(part) for part in parts]
    except ValueError:
        return None
    hour, minute = numbers[0], numbers[1]
    second = numbers[2] if len(numbers) == 3 else 0
    try:
        return time(hour, minute, second)
    except ValueError:
        return None


def _in_window(moment: time, start: time, end: Optional[time]) -> bool:
    # end=None stands for "24:00": the window runs to the end of the day.
    if end is None:
        return moment >= start
    if start == end:
        return False
    if start < end:
        return start <= moment < end
    return moment >= start or moment < end


def in_window(moment: time, start_raw: Optional[str], end_raw: Optional[str]) -> Optional[bool]:
    """Return whether ``moment`` lies in [start, end).

    Returns None when the window is malformed so callers can pick their own
    default.
    """

    start = parse_time_of_day(start_raw)
    if start is None:
        return None
    if end_raw is not None and end_raw.strip() == END_OF_DAY:
        return _in_window(moment, start, None)
    end = parse_time_of_day(end_raw)
    if end is None:
        return None
    return _in_window(moment, start, end)


def is_within_receive_window(
    now: datetime,
    receive_start: Optional[str],
    receive_end: Optional[str],
    mute_start: Optional[str] = None,
    mute_end: Optional[str] = None,
) -> bool:
    """Time-window gate: inside the receive window and outside the mute window."""

    moment = now.time().replace(microsecond=0)

    if mute_start and mute_end:
        muted = in_window(moment, mute_start, mute_end)
        if muted:
            return False

    receiving = in_window(moment, receive_start, receive_end)
    if receiving is None:
        return True
    return receiving
