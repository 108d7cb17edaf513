"""
Timestamp normalization for inspection documents.

Transactions reach us from several writers (the mobile form, the admin
importer, JSON exports of Firestore) and each stores its timestamp a little
differently. Everything downstream compares instants, so every shape is
funnelled through ``normalize_timestamp`` into an aware UTC datetime.
"""

import os
import logging
from datetime import datetime, date, timezone, tzinfo
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

_DATE_FORMATS = (
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d %H:%M',
    '%Y-%m-%d',
    '%d/%m/%Y %H:%M:%S',
    '%d/%m/%Y',
)

_CONVERSION_METHODS = ('to_datetime', 'ToDatetime', 'toDate')


def get_local_timezone() -> tzinfo:
    """Timezone used for calendar-day windows and naive timestamps."""
    tz_name = os.environ.get('KPI_TIMEZONE')
    if tz_name:
        if tz_name.upper() in ('UTC', 'Z'):
            return timezone.utc
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown KPI_TIMEZONE '{tz_name}', falling back to system local time")
    return datetime.now().astimezone().tzinfo


def isoformat_utc(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 instant with millisecond precision and a ``Z`` suffix."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def to_utc(value: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Aware UTC copy of ``value``; naive values are read in ``tz``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz or get_local_timezone())
    return value.astimezone(timezone.utc)


def _from_epoch_parts(seconds: Any, nanoseconds: Any) -> datetime:
    total = float(seconds) + float(nanoseconds or 0) / 1_000_000_000
    return datetime.fromtimestamp(total, tz=timezone.utc)


def _parse_string(value: str) -> Optional[datetime]:
    text = value.strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def normalize_timestamp(value: Any, tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """
    Convert a raw timestamp of unknown shape into an aware UTC datetime.

    Accepted shapes:
        - objects with a conversion method (Firestore/protobuf timestamps)
        - objects or mappings with ``_seconds``/``_nanoseconds`` or
          ``seconds``/``nanoseconds`` (serialized Firestore timestamps)
        - datetime / date instances, ISO-8601 and common date strings,
          numbers as epoch milliseconds

    Naive values are read in ``tz`` (default: the engine's local timezone).
    Returns None when the value cannot be parsed.
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, datetime):
            return to_utc(value, tz)

        if isinstance(value, date):
            return to_utc(datetime(value.year, value.month, value.day), tz)

        for method_name in _CONVERSION_METHODS:
            method = getattr(value, method_name, None)
            if callable(method):
                converted = method()
                if isinstance(converted, datetime):
                    return to_utc(converted, timezone.utc)

        if isinstance(value, dict):
            if value.get('_seconds') is not None:
                return _from_epoch_parts(value['_seconds'], value.get('_nanoseconds'))
            if value.get('seconds') is not None:
                return _from_epoch_parts(value['seconds'], value.get('nanoseconds'))
            return None

        for seconds_attr, nanos_attr in (('_seconds', '_nanoseconds'), ('seconds', 'nanoseconds')):
            seconds = getattr(value, seconds_attr, None)
            if seconds is not None:
                return _from_epoch_parts(seconds, getattr(value, nanos_attr, 0))

        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)

        if isinstance(value, str):
            parsed = _parse_string(value)
            return to_utc(parsed, tz) if parsed else None
    except (TypeError, ValueError, OverflowError, OSError) as e:
        logger.debug(f"Could not normalize timestamp {value!r}: {e}")
        return None

    return None
