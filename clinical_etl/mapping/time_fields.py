"""
Event time handling: labtime values and labtime/realtime normalization.

Every event is stored with exactly one temporal representation:

- labtime: an elapsed, lab-relative duration anchored to a year (hours may exceed 24)
- realtime: a calendar timestamp in the reference timezone

Source files encode labtime in three ways, detected from the attribute set:

    labtime_year + labtime_hour + labtime_min + labtime_sec   raw components
    labtime_year + labtime_decimal                             decimal hours
    labtime (+ optional labtime_year)                          string parsed by a labtime function
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any, Optional, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..exceptions import InputError, ConfigurationError
from ..utils import ValidationUtils


RAW_LABTIME_FIELDS = ('labtime_year', 'labtime_hour', 'labtime_min', 'labtime_sec')
DECIMAL_LABTIME_FIELDS = ('labtime_year', 'labtime_decimal')
LABTIME_SOURCE_FIELDS = ('labtime_year', 'labtime_hour', 'labtime_min', 'labtime_sec', 'labtime_decimal')

_LABTIME_STRING = re.compile(r'^\s*(-?\d+):(\d{1,2})(?::(\d{1,2}(?:\.\d+)?))?\s*$')


@dataclass(frozen=True)
class Labtime:
    """
    Lab-relative time: hours elapsed since the start of the labtime year.

    Attributes:
        year: Labtime year
        hour: Whole hours (may exceed 24)
        minute: Minutes within the hour
        second: Seconds within the minute (fractional allowed)
    """
    year: int
    hour: int
    minute: int
    second: float

    def __post_init__(self):
        if not 0 <= self.minute < 60:
            raise ValueError(f"Labtime minute out of range: {self.minute}")
        if not 0 <= self.second < 60:
            raise ValueError(f"Labtime second out of range: {self.second}")

    @classmethod
    def from_decimal(cls, decimal_hours: float, year: int) -> 'Labtime':
        """Build from decimal hours, e.g. 1.5 -> 1:30:00."""
        return cls.from_seconds(float(decimal_hours) * 3600.0, year)

    @classmethod
    def from_seconds(cls, total_seconds: float, year: int) -> 'Labtime':
        """Build from a number of seconds elapsed in the labtime year."""
        total_seconds = round(float(total_seconds), 6)
        hour = int(math.floor(total_seconds / 3600.0))
        remainder = total_seconds - hour * 3600
        minute = int(math.floor(remainder / 60.0))
        second = round(remainder - minute * 60, 6)
        if second >= 60:
            minute, second = minute + 1, 0.0
        if minute >= 60:
            hour, minute = hour + 1, 0
        return cls(year=int(year), hour=hour, minute=minute, second=second)

    @classmethod
    def from_s(cls, value: Any, year: int) -> 'Labtime':
        """
        Parse 'H:MM', 'H:MM:SS' or 'H:MM:SS.fff'; plain numbers are read as decimal hours.
        """
        if isinstance(value, (int, float)):
            return cls.from_decimal(value, year)

        match = _LABTIME_STRING.match(str(value))
        if not match:
            decimal_hours = ValidationUtils.safe_float_conversion(value)
            if decimal_hours is None:
                raise ValueError(f"Unrecognized labtime string: {value!r}")
            return cls.from_decimal(decimal_hours, year)

        hour, minute, second = match.groups()
        return cls(year=int(year), hour=int(hour), minute=int(minute), second=float(second or 0))

    def total_seconds(self) -> float:
        return self.hour * 3600 + self.minute * 60 + self.second

    def to_decimal(self) -> float:
        return self.total_seconds() / 3600.0

    def __str__(self) -> str:
        return f"{self.year} {self.hour}:{self.minute:02d}:{self.second:06.3f}"


# Labtime parse functions selectable through a column descriptor's labtime_fn
LABTIME_FUNCTIONS: Dict[str, Callable[[Any, int], Labtime]] = {
    'from_s': Labtime.from_s,
    'from_decimal': Labtime.from_decimal,
    'from_seconds': Labtime.from_seconds,
}

DEFAULT_LABTIME_FUNCTION = 'from_s'


def resolve_labtime_function(name: Optional[str]) -> str:
    """Validate a labtime function name, defaulting to 'from_s'."""
    name = name or DEFAULT_LABTIME_FUNCTION
    if name not in LABTIME_FUNCTIONS:
        raise ConfigurationError(
            f"Unknown labtime function '{name}'. Available: {', '.join(sorted(LABTIME_FUNCTIONS))}"
        )
    return name


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown reference timezone '{name}': {e}")


class TimeNormalizer:
    """
    Reduces the time-related fields of an event attribute set to exactly one of
    'labtime' or 'realtime'.
    """

    def __init__(self, reference_timezone: str = "America/New_York"):
        self.logger = logging.getLogger(__name__)
        self.reference_timezone = resolve_timezone(reference_timezone)

    def normalize(self, attributes: Dict[str, Any], labtime_fn: Optional[str] = None,
                  realtime_format: Optional[str] = None) -> Dict[str, Any]:
        """
        Normalize event time fields in place.

        Args:
            attributes: Event attribute set (modified and returned)
            labtime_fn: Name of the function parsing a 'labtime' string
            realtime_format: strptime format for a 'realtime' string

        Returns:
            The attribute set holding exactly one of 'labtime' / 'realtime'

        Raises:
            InputError: If time values are malformed or both/neither representation is present
        """
        try:
            labtime = self._build_labtime(attributes, labtime_fn)
            realtime = self._build_realtime(attributes.get('realtime'), realtime_format)
        except (ValueError, TypeError) as e:
            raise InputError(f"Invalid event time value: {e}", attributes=dict(attributes))

        for key in LABTIME_SOURCE_FIELDS:
            attributes.pop(key, None)
        attributes.pop('labtime', None)
        attributes.pop('realtime', None)

        if (labtime is None) == (realtime is None):
            raise InputError(
                f"Event params are missing a time field or have both realtime and labtime: {attributes} "
                f"(labtime={labtime}, realtime={realtime})",
                attributes=dict(attributes)
            )

        if labtime is not None:
            attributes['labtime'] = labtime
        else:
            attributes['realtime'] = realtime
        return attributes

    def _build_labtime(self, attributes: Dict[str, Any], labtime_fn: Optional[str]) -> Optional[Labtime]:
        if all(attributes.get(key) is not None for key in RAW_LABTIME_FIELDS):
            return Labtime(
                year=self._to_int(attributes['labtime_year'], 'labtime_year'),
                hour=self._to_int(attributes['labtime_hour'], 'labtime_hour'),
                minute=self._to_int(attributes['labtime_min'], 'labtime_min'),
                second=self._to_float(attributes['labtime_sec'], 'labtime_sec'),
            )

        if all(attributes.get(key) is not None for key in DECIMAL_LABTIME_FIELDS):
            return Labtime.from_decimal(
                self._to_float(attributes['labtime_decimal'], 'labtime_decimal'),
                self._to_int(attributes['labtime_year'], 'labtime_year'),
            )

        value = attributes.get('labtime')
        if value is None or isinstance(value, Labtime):
            return value

        year = attributes.get('labtime_year')
        if year is None:
            raise ValueError(f"labtime {value!r} given without labtime_year")
        parse = LABTIME_FUNCTIONS[resolve_labtime_function(labtime_fn)]
        return parse(value, self._to_int(year, 'labtime_year'))

    def _build_realtime(self, value: Any, realtime_format: Optional[str]) -> Any:
        if value is None:
            return None
        if realtime_format and isinstance(value, str):
            parsed = datetime.strptime(value.strip(), realtime_format)
            return parsed.replace(tzinfo=self.reference_timezone)
        # Native cell values (spreadsheet dates) are used as-is
        return value

    @staticmethod
    def _to_int(value: Any, name: str) -> int:
        converted = ValidationUtils.safe_float_conversion(value)
        if converted is None:
            raise ValueError(f"{name} is not numeric: {value!r}")
        return int(converted)

    @staticmethod
    def _to_float(value: Any, name: str) -> float:
        converted = ValidationUtils.safe_float_conversion(value)
        if converted is None:
            raise ValueError(f"{name} is not numeric: {value!r}")
        return converted
