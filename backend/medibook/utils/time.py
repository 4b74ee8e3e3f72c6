from datetime import datetime, time, timezone


def utc_now_naive() -> datetime:
    """Current UTC time without tzinfo, the form stored in every timestamp column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")
