"""
Day key and XMLTV timestamp utilities

This module is the single place where 8-digit day keys and packed XMLTV
timestamps are parsed. Feed filtering, bucket field names and cache paths
are all derived from DayKey so no other module slices date strings.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

logger = logging.getLogger(__name__)

_DAY_KEY_PATTERN = re.compile(r"^[0-9]{8}$")

DAY_ALIASES = {
    "today": 0,
    "tomorrow": 1,
    "after_tomorrow": 2,
}

BUCKET_FIELD_PREFIX = "programs_"


class DateFormatError(ValueError):
    """Raised when a day key or timestamp cannot be decoded"""
    pass


@dataclass(frozen=True, order=True, slots=True)
class DayKey:
    """Calendar day used for feed filtering and storage partitioning."""
    year: int
    month: int
    day: int

    def __post_init__(self) -> None:
        # Rejects impossible dates such as 20240231
        try:
            date(self.year, self.month, self.day)
        except ValueError as exc:
            raise DateFormatError(
                f"Invalid calendar day: {self.year:04d}{self.month:02d}{self.day:02d}"
            ) from exc

    @classmethod
    def parse(cls, value: str) -> DayKey:
        """
        Parse a strict YYYYMMDD string

        Raises:
            DateFormatError: If the value is not 8 digits or not a real date
        """
        if not isinstance(value, str) or not _DAY_KEY_PATTERN.match(value):
            raise DateFormatError(f"Invalid day key format: '{value}'. Expected YYYYMMDD")
        return cls(int(value[0:4]), int(value[4:6]), int(value[6:8]))

    @classmethod
    def from_date(cls, value: date) -> DayKey:
        return cls(value.year, value.month, value.day)

    @classmethod
    def today(cls, now: datetime | None = None) -> DayKey:
        current = now or datetime.now(timezone.utc)
        return cls.from_date(current.date())

    @classmethod
    def resolve(cls, value: str | None, now: datetime | None = None) -> DayKey:
        """
        Resolve a user supplied day into a DayKey

        Accepts 'today', 'tomorrow', 'after_tomorrow' or YYYYMMDD. Missing or
        unrecognised values fall back to the current day instead of failing.
        """
        base = cls.today(now)
        if not value:
            return base

        normalized = value.strip().lower()
        if normalized in DAY_ALIASES:
            return base.shift(DAY_ALIASES[normalized])

        try:
            return cls.parse(normalized)
        except DateFormatError:
            logger.debug("Unrecognised day '%s', falling back to %s", value, base)
            return base

    def to_date(self) -> date:
        return date(self.year, self.month, self.day)

    def shift(self, days: int) -> DayKey:
        return DayKey.from_date(self.to_date() + timedelta(days=days))

    @property
    def bucket_field(self) -> str:
        """Document field holding this day's programs for a channel"""
        return f"{BUCKET_FIELD_PREFIX}{self}"

    def blob_path(self, prefix: str, suffix: str = "_guide.xml") -> str:
        """Object store path for this day's cached artifact"""
        return f"{prefix.rstrip('/')}/{self}{suffix}"

    def __str__(self) -> str:
        return f"{self.year:04d}{self.month:02d}{self.day:02d}"


def day_key_of_timestamp(value: str) -> DayKey:
    """Day key of a packed XMLTV timestamp (its first 8 characters)."""
    return DayKey.parse((value or "").strip()[:8])


def day_key_from_bucket_field(field_name: str) -> DayKey | None:
    """Inverse of DayKey.bucket_field; None for any other field name"""
    if not field_name.startswith(BUCKET_FIELD_PREFIX):
        return None
    try:
        return DayKey.parse(field_name[len(BUCKET_FIELD_PREFIX):])
    except DateFormatError:
        return None


def parse_xmltv_timestamp(value: str) -> datetime:
    """
    Decode a packed XMLTV timestamp into a UTC instant

    Only the first 14 characters (YYYYMMDDHHMMSS) are significant; any
    timezone suffix is ignored and each field is taken as UTC wall clock.
    Missing time digits count as zero, so a truncated stamp such as
    '2024060100000' still decodes.

    Args:
        value: XMLTV time like '20240601003000 +0200'

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        DateFormatError: If the date part or any present field is not numeric
    """
    packed = (value or "").strip()[:14]
    day_key = day_key_of_timestamp(packed)

    fields = []
    for start in (8, 10, 12):
        chunk = packed[start:start + 2]
        if chunk and not chunk.isdigit():
            raise DateFormatError(f"Invalid XMLTV timestamp: '{value}'")
        fields.append(int(chunk) if chunk else 0)

    hour, minute, second = fields
    try:
        return datetime(
            day_key.year, day_key.month, day_key.day,
            hour, minute, second,
            tzinfo=timezone.utc,
        )
    except ValueError as exc:
        raise DateFormatError(f"Invalid XMLTV timestamp: '{value}'") from exc


def format_utc(value: datetime) -> str:
    """ISO8601 representation used in stored documents"""
    return value.astimezone(timezone.utc).isoformat()


def parse_iso8601_to_utc(value: str) -> datetime:
    """Parse a stored ISO8601 string back into an aware UTC datetime."""
    try:
        normalized = value.replace("Z", "+00:00") if value.endswith("Z") else value
        parsed = datetime.fromisoformat(normalized)
    except (ValueError, AttributeError) as exc:
        raise DateFormatError(f"Invalid ISO8601 datetime format: '{value}'") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
