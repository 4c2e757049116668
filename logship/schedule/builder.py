"""Schedule normalization for produce, transport and apply jobs.

Unset fields receive defaults:
  frequency       — daily, every day
  sub-day         — every 15 minutes
  relative        — unused, recurrence factor 0
  active window   — today .. 99991231, 000000 .. 235959

Supplied fields are validated against the SQL Server Agent rules. Normalizing
an already-normalized spec returns it unchanged.
"""

from dataclasses import fields, replace
from datetime import date, datetime
from typing import Optional

from logship.models.errors import InvalidScheduleError
from logship.models.types import (
    FrequencyType, RelativeInterval, ScheduleSpec, SubdayType,
)

OPEN_END_DATE = "99991231"
MIDNIGHT = "000000"
END_OF_DAY = "235959"

SUBDAY_BOUNDS = {
    SubdayType.SECONDS: (1, 59),
    SubdayType.MINUTES: (1, 59),
    SubdayType.HOURS: (1, 23),
}

_CAMEL_KEYS = {
    "frequencyType": "frequency_type",
    "frequencyInterval": "frequency_interval",
    "subdayType": "subday_type",
    "subdayInterval": "subday_interval",
    "relativeInterval": "relative_interval",
    "recurrenceFactor": "recurrence_factor",
    "startDate": "start_date",
    "endDate": "end_date",
    "startTime": "start_time",
    "endTime": "end_time",
}

_FREQUENCY_NAMES = {m.name.lower(): m for m in FrequencyType}
_SUBDAY_NAMES = {m.name.lower(): m for m in SubdayType}
_SUBDAY_NAMES.update({"second": SubdayType.SECONDS, "minute": SubdayType.MINUTES,
                      "hour": SubdayType.HOURS, "time": SubdayType.AT_TIME})
_RELATIVE_NAMES = {m.name.lower(): m for m in RelativeInterval}


def from_mapping(data: Optional[dict]) -> ScheduleSpec:
    """Build a partial ScheduleSpec from a camelCase or snake_case mapping."""
    if not data:
        return ScheduleSpec()
    known = {f.name for f in fields(ScheduleSpec)}
    kwargs = {}
    for key, value in data.items():
        name = _CAMEL_KEYS.get(key, key)
        if name not in known:
            raise InvalidScheduleError(f"Unknown schedule field '{key}'")
        kwargs[name] = value
    return ScheduleSpec(**kwargs)


def normalize(partial=None, today: Optional[date] = None) -> ScheduleSpec:
    """Return a complete, validated ScheduleSpec.

    Raises:
        InvalidScheduleError: If a supplied value is out of range.
    """
    if partial is None or isinstance(partial, dict):
        partial = from_mapping(partial)
    today = today or date.today()

    frequency_type = _enum(partial.frequency_type, FrequencyType, _FREQUENCY_NAMES,
                           FrequencyType.DAILY, "frequency type")
    subday_type = _enum(partial.subday_type, SubdayType, _SUBDAY_NAMES,
                        SubdayType.MINUTES, "sub-day type")
    relative_interval = _enum(partial.relative_interval, RelativeInterval, _RELATIVE_NAMES,
                              RelativeInterval.UNUSED, "relative interval")

    frequency_interval = _int(partial.frequency_interval, 1, "frequency interval")
    if frequency_interval < 1 and frequency_type in (FrequencyType.DAILY, FrequencyType.WEEKLY,
                                                     FrequencyType.MONTHLY):
        raise InvalidScheduleError(
            f"Frequency interval must be at least 1 for {frequency_type.name.lower()} schedules "
            f"(got {frequency_interval})"
        )

    subday_interval = _int(partial.subday_interval, 15, "sub-day interval")
    if subday_type in SUBDAY_BOUNDS:
        low, high = SUBDAY_BOUNDS[subday_type]
        if not low <= subday_interval <= high:
            raise InvalidScheduleError(
                f"Sub-day interval {subday_interval} is out of range for "
                f"{subday_type.name.lower()}: must be between {low} and {high}"
            )

    recurrence_factor = _int(partial.recurrence_factor, 0, "recurrence factor")
    if recurrence_factor < 0:
        raise InvalidScheduleError(f"Recurrence factor must not be negative (got {recurrence_factor})")

    start_date = _date(partial.start_date, today.strftime("%Y%m%d"), "start date")
    end_date = _date(partial.end_date, OPEN_END_DATE, "end date")
    if start_date > end_date:
        raise InvalidScheduleError(f"Start date {start_date} is after end date {end_date}")

    start_time = _time(partial.start_time, MIDNIGHT, "start time")
    end_time = _time(partial.end_time, END_OF_DAY, "end time")
    if start_time > end_time:
        raise InvalidScheduleError(f"Start time {start_time} is after end time {end_time}")

    return ScheduleSpec(
        frequency_type=frequency_type,
        frequency_interval=frequency_interval,
        subday_type=subday_type,
        subday_interval=subday_interval,
        relative_interval=relative_interval,
        recurrence_factor=recurrence_factor,
        start_date=start_date,
        end_date=end_date,
        start_time=start_time,
        end_time=end_time,
        enabled=True if partial.enabled is None else bool(partial.enabled),
    )


def with_enabled(spec: ScheduleSpec, enabled: bool) -> ScheduleSpec:
    return replace(spec, enabled=enabled)


# ── Field parsers ────────────────────────────────────────────────────────────

def _enum(value, enum_cls, names: dict, default, label: str):
    if value is None:
        return default
    if isinstance(value, str) and not value.isdigit():
        member = names.get(value.strip().lower())
        if member is None:
            raise InvalidScheduleError(f"Unknown {label} '{value}'")
        return member
    try:
        return enum_cls(int(value))
    except ValueError:
        raise InvalidScheduleError(f"Unknown {label} code {value}") from None


def _int(value, default: int, label: str) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise InvalidScheduleError(f"{label.capitalize()} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidScheduleError(f"{label.capitalize()} must be an integer (got {value!r})") from None


def _date(value, default: str, label: str) -> str:
    if value is None:
        return default
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y%m%d")
    text = str(value).replace("-", "")
    if len(text) != 8 or not text.isdigit():
        raise InvalidScheduleError(f"Invalid {label} '{value}': expected YYYYMMDD")
    try:
        datetime.strptime(text, "%Y%m%d")
    except ValueError:
        raise InvalidScheduleError(f"Invalid {label} '{value}': not a calendar date") from None
    return text


def _time(value, default: str, label: str) -> str:
    if value is None:
        return default
    text = str(value).replace(":", "")
    if text.isdigit() and len(text) < 6:
        text = text.zfill(6)
    if len(text) != 6 or not text.isdigit():
        raise InvalidScheduleError(f"Invalid {label} '{value}': expected HHMMSS")
    hours, minutes, seconds = int(text[:2]), int(text[2:4]), int(text[4:])
    if hours > 23 or minutes > 59 or seconds > 59:
        raise InvalidScheduleError(f"Invalid {label} '{value}': must be between 000000 and 235959")
    return text
