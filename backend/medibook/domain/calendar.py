from datetime import date, time

from .errors import InvalidWindow

MINUTES_PER_DAY = 24 * 60


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"minute offset {minutes} is outside a single day")
    return time(hour=minutes // 60, minute=minutes % 60)


def overlaps(a_start: time, a_minutes: int, b_start: time, b_minutes: int) -> bool:
    """Half-open interval overlap: [a, a + a_minutes) vs [b, b + b_minutes)."""
    a0 = to_minutes(a_start)
    b0 = to_minutes(b_start)
    return a0 < b0 + b_minutes and b0 < a0 + a_minutes


def _check_window(window_start_hour: int, window_end_hour: int, granularity_minutes: int) -> None:
    if not (0 <= window_start_hour < 24 and 0 <= window_end_hour < 24):
        raise InvalidWindow("window hours must be within [0, 24)")
    if window_end_hour <= window_start_hour:
        raise InvalidWindow("window end must be after window start")
    if granularity_minutes <= 0:
        raise InvalidWindow("slot granularity must be positive")


def generate_slots(window_start_hour: int, window_end_hour: int, granularity_minutes: int) -> list[time]:
    """Every grid point in [start, end) stepped by the granularity, in order."""
    _check_window(window_start_hour, window_end_hour, granularity_minutes)
    start = window_start_hour * 60
    end = window_end_hour * 60
    return [from_minutes(m) for m in range(start, end, granularity_minutes)]


def is_on_grid(value: time, window_start_hour: int, granularity_minutes: int) -> bool:
    if value.second or value.microsecond:
        return False
    offset = to_minutes(value) - window_start_hour * 60
    return offset >= 0 and offset % granularity_minutes == 0


def fits_window(value: time, duration_minutes: int, window_start_hour: int, window_end_hour: int) -> bool:
    start = to_minutes(value)
    return window_start_hour * 60 <= start and start + duration_minutes <= window_end_hour * 60


def occupancy_key(doctor_id: int, day: date, slot_time: time) -> str:
    """Key held by an occupying appointment; unique per doctor, day and start time."""
    return f"{doctor_id}:{day.isoformat()}:{slot_time.strftime('%H:%M')}"
