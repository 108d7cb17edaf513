"""
Mixer family handling.

Ready-mix trucks are inspected through several forms (daily check, weekly
check, trainer check, TSM check) and each form writes its own type tag.
For reporting they are one asset, so the family's histories are fetched
side by side and merged. Each subtype fetch is isolated: a failing form
collection only loses that form's records.
"""

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from inspection_kpi.database import RecordSource
from inspection_kpi.models import Equipment, InspectionRecord
from inspection_kpi.services.answers import has_defect
from inspection_kpi.services.periods import Cadence, in_window
from inspection_kpi.services.reducer import family_aliases, merge_histories
from inspection_kpi.services.timestamps import isoformat_utc

logger = logging.getLogger(__name__)


def submit_family_fetches(
    pool: Executor,
    source: RecordSource,
    business_unit: str,
    family_types: Sequence[str],
    equipment_id: Optional[str] = None,
    since: Optional[datetime] = None,
) -> Dict[str, Future]:
    return {
        subtype: pool.submit(
            source.fetch_transactions,
            business_unit,
            equipment_type=subtype,
            equipment_id=equipment_id,
            since=since,
        )
        for subtype in family_types
    }


def collect_family_records(futures: Dict[str, Future]) -> List[List[InspectionRecord]]:
    """Wait for every subtype fetch; failures contribute nothing."""
    histories = []
    for subtype, future in futures.items():
        try:
            histories.append(future.result())
        except Exception as e:
            logger.warning(f"Mixer subtype '{subtype}' fetch failed, excluding it from the merge: {e}")
    return histories


def fetch_mixer_history(
    source: RecordSource,
    business_unit: str,
    equipment_id: str,
    family_types: Sequence[str],
) -> List[InspectionRecord]:
    """All inspections of one mixer across the family's forms, newest first."""
    if not family_types:
        return []
    with ThreadPoolExecutor(max_workers=len(family_types)) as pool:
        futures = submit_family_fetches(pool, source, business_unit, family_types, equipment_id)
        histories = collect_family_records(futures)
    return merge_histories(histories)


def summarize_by_owner(
    equipment: Sequence[Equipment],
    records: Sequence[InspectionRecord],
    family_types: Sequence[str],
    now: datetime,
    tz=None,
) -> Dict[str, Any]:
    """
    Today's mixer inspections grouped by the truck owner.

    ``inspectedToday`` counts distinct trucks; ``inspectionDetails`` keeps
    every inspection of the day so repeated checks stay visible.
    """
    aliases = family_aliases(family_types)
    owner_of: Dict[str, str] = {}
    by_owner: Dict[str, Dict[str, Any]] = {}

    for item in equipment:
        if item.equipment_type not in aliases:
            continue
        owner = item.owner or "Unknown"
        owner_of.setdefault(item.equipment_id, owner)
        group = by_owner.setdefault(owner, {'total': 0, 'inspected': set(), 'details': []})
        group['total'] += 1

    for record in records:
        if record.equipment_type not in aliases:
            continue
        if not in_window(record.timestamp, Cadence.DAILY, now, tz):
            continue
        owner = owner_of.get(record.equipment_id)
        if owner is None:
            continue
        group = by_owner[owner]
        group['inspected'].add(record.equipment_id)
        group['details'].append({
            'id': record.equipment_id,
            'type': record.equipment_type,
            'timestamp': isoformat_utc(record.timestamp),
            'inspector': record.inspector or "Unknown",
            'hasDefect': has_defect(record.answers),
        })

    rows = [
        {
            'owner': owner,
            'total': group['total'],
            'inspectedToday': len(group['inspected']),
            'inspectionDetails': sorted(group['details'], key=lambda d: d['timestamp'], reverse=True),
        }
        for owner, group in by_owner.items()
    ]
    rows.sort(key=lambda row: row['total'], reverse=True)

    return {
        'total': sum(group['total'] for group in by_owner.values()),
        'byOwner': rows,
    }
