"""
Equipment join index.

Transactions written by the inspection forms do not reliably carry the
site of the machine, so the registry is the source of truth: each request
builds an index from ``bu|type|id`` to the registered site and uses it to
bucket transactions and to count registered assets.
"""

from collections import defaultdict
from typing import Dict, Iterable, Optional, Tuple

from inspection_kpi.models import Equipment, InspectionRecord, UNKNOWN_SITE


def asset_key(business_unit: str, equipment_type: str, equipment_id: str) -> str:
    return f"{business_unit}|{equipment_type.lower()}|{equipment_id}"


class EquipmentIndex:
    """Lookup from registered asset to site, plus per-bucket totals."""

    def __init__(self, equipment: Iterable[Equipment], type_aliases: Optional[Dict[str, str]] = None):
        self._type_aliases = type_aliases or {}
        self._sites: Dict[str, str] = {}
        self._equipment: Dict[str, Equipment] = {}

        for item in equipment:
            key = self.key_for(item.business_unit, item.equipment_type, item.equipment_id)
            # First registration wins; the registry guarantees uniqueness anyway.
            if key in self._sites:
                continue
            self._sites[key] = item.site or UNKNOWN_SITE
            self._equipment[key] = item

    def canonical_type(self, equipment_type: str) -> str:
        equipment_type = equipment_type.lower()
        return self._type_aliases.get(equipment_type, equipment_type)

    def key_for(self, business_unit: str, equipment_type: str, equipment_id: str) -> str:
        return asset_key(business_unit, self.canonical_type(equipment_type), equipment_id)

    def _record_key(self, record: InspectionRecord) -> str:
        return self.key_for(record.business_unit, record.equipment_type, record.equipment_id)

    def contains(self, record: InspectionRecord) -> bool:
        return self._record_key(record) in self._sites

    def site_for(self, record: InspectionRecord) -> str:
        """Registered site of the record's asset, or ``unknown``."""
        return self._sites.get(self._record_key(record), UNKNOWN_SITE)

    def equipment(self) -> Iterable[Equipment]:
        return self._equipment.values()

    def bucket_totals(self) -> Dict[Tuple[str, str], int]:
        """Registered asset count per (canonical type, site)."""
        totals: Dict[Tuple[str, str], int] = defaultdict(int)
        for item in self._equipment.values():
            totals[(self.canonical_type(item.equipment_type), item.site or UNKNOWN_SITE)] += 1
        return dict(totals)
