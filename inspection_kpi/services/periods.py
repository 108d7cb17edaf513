"""
Reporting cadences: which equipment types belong to a cadence, and which
inspection timestamps fall inside its window.
"""

from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Dict, Optional, Tuple

from inspection_kpi.services.timestamps import get_local_timezone


class Cadence(Enum):
    DAILY = 'daily'
    MONTHLY = 'monthly'
    QUARTERLY = 'quarterly'
    ANNUAL = 'annual'

    @classmethod
    def parse(cls, value: Optional[str], default: Optional['Cadence'] = None) -> 'Cadence':
        """Resolve a cadence name; None falls back to ``default`` (daily)."""
        if value is None or value == '':
            return default or cls.DAILY
        return cls(value.strip().lower())


# Trailing window length in days for the rolling cadences.
ROLLING_WINDOW_DAYS = {
    Cadence.MONTHLY: 31,
    Cadence.QUARTERLY: 90,
    Cadence.ANNUAL: 365,
}


def is_type_in_scope(equipment_type: str, cadence: Cadence, period_map: Dict[str, str]) -> bool:
    """
    A type with a configured cadence only reports under that cadence.
    Types missing from the map report under every cadence.
    """
    configured = period_map.get(equipment_type.lower())
    if not configured:
        return True
    return configured.lower() == cadence.value


def window_bounds(
    cadence: Cadence,
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> Tuple[datetime, datetime]:
    """
    Return the (start, end) instants of the cadence window in UTC.

    ``daily`` is the local calendar day holding ``now`` and its end is
    exclusive. The other cadences are rolling windows ending at ``now``
    inclusive.
    """
    tz = tz or get_local_timezone()
    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)

    if cadence is Cadence.DAILY:
        local_now = now.astimezone(tz)
        today = local_now.date()
        tomorrow = today + timedelta(days=1)
        midnight = datetime(today.year, today.month, today.day, tzinfo=tz)
        next_midnight = datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=tz)
        return midnight.astimezone(timezone.utc), next_midnight.astimezone(timezone.utc)

    start = now - timedelta(days=ROLLING_WINDOW_DAYS[cadence])
    return start.astimezone(timezone.utc), now.astimezone(timezone.utc)


def in_window(
    timestamp: Optional[datetime],
    cadence: Cadence,
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> bool:
    if timestamp is None:
        return False
    start, end = window_bounds(cadence, now, tz)
    if cadence is Cadence.DAILY:
        return start <= timestamp < end
    return start <= timestamp <= end
