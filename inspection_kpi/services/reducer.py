"""
Latest-wins reduction and mixer family merging.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Sequence, Tuple

from inspection_kpi.models import InspectionRecord
from inspection_kpi.services.equipment_index import EquipmentIndex

logger = logging.getLogger(__name__)

AssetKey = Tuple[str, str, str]  # (site, equipment_type, equipment_id)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def family_aliases(mixer_types: Sequence[str]) -> Dict[str, str]:
    """Map every mixer family tag onto the family's first tag."""
    tags = [t.lower() for t in mixer_types if t]
    if not tags:
        return {}
    return {tag: tags[0] for tag in tags}


def reduce_latest(
    records: Iterable[InspectionRecord],
    index: EquipmentIndex,
) -> Dict[AssetKey, InspectionRecord]:
    """
    Keep the newest record per (site, type, id).

    The site comes from the equipment index, never from the record. A later
    record only replaces the holder when its timestamp is strictly greater,
    so on equal timestamps the first one seen stays.
    """
    latest: Dict[AssetKey, InspectionRecord] = {}
    skipped = 0

    for record in records:
        if record.timestamp is None:
            skipped += 1
            continue
        key = (
            index.site_for(record),
            index.canonical_type(record.equipment_type),
            record.equipment_id,
        )
        holder = latest.get(key)
        if holder is None or record.timestamp > holder.timestamp:
            latest[key] = record

    if skipped:
        logger.debug(f"Skipped {skipped} records without a usable timestamp")
    return latest


def merge_histories(histories: Iterable[Iterable[InspectionRecord]]) -> List[InspectionRecord]:
    """Union of several record lists, newest first; undated records go last."""
    merged = [record for history in histories for record in history]
    merged.sort(key=lambda r: r.timestamp or _OLDEST, reverse=True)
    return merged
