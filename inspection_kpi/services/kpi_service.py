"""
Inspection KPI Service

Turns the equipment registry and the raw inspection transactions of one
business unit into completion and defect statistics for a reporting
cadence:
- per equipment type, with a per-site breakdown
- per site, summed across types
- a grand total

Each request fetches its inputs concurrently, then runs a synchronous,
in-memory pipeline: window filter -> latest-wins reduction (site resolved
through the equipment index) -> defect detection -> aggregation.
Nothing here writes to the record stores.
"""

import os
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from inspection_kpi.config_manager import KpiConfig
from inspection_kpi.database import RecordSource, get_record_source
from inspection_kpi.models import (
    AssetStatus, Equipment, InspectionRecord, KPIData, LastInspection,
    StatisticsResponse, UNKNOWN_SITE,
)
from inspection_kpi.services.answers import failed_questions, has_defect
from inspection_kpi.services.equipment_index import EquipmentIndex
from inspection_kpi.services.history_service import serialize_record
from inspection_kpi.services.mixer_service import collect_family_records, submit_family_fetches
from inspection_kpi.services.periods import Cadence, in_window, is_type_in_scope, window_bounds
from inspection_kpi.services.reducer import family_aliases, reduce_latest
from inspection_kpi.services.timestamps import get_local_timezone, isoformat_utc, to_utc

logger = logging.getLogger(__name__)

FETCH_WORKERS = int(os.environ.get('KPI_FETCH_WORKERS', '8'))


def percent(numerator: int, denominator: int) -> int:
    """round(100 * numerator / denominator), halves rounded up; 0 for an empty denominator."""
    if denominator <= 0:
        return 0
    return (200 * numerator + denominator) // (2 * denominator)


@dataclass
class StatisticsEntry:
    """Counts for one bucket. ``defects`` is published as ``defected``."""
    inspected: int = 0
    total: int = 0
    defects: int = 0
    inspection_records: List[InspectionRecord] = field(default_factory=list)

    @property
    def percentage(self) -> int:
        return percent(self.inspected, self.total)

    @property
    def defect_percentage(self) -> int:
        return percent(self.defects, self.inspected)

    def add(self, other: 'StatisticsEntry') -> None:
        self.inspected += other.inspected
        self.total += other.total
        self.defects += other.defects

    def to_dict(self, include_records: bool = False) -> Dict[str, Any]:
        result = {
            'inspected': self.inspected,
            'defected': self.defects,
            'total': self.total,
            'percentage': self.percentage,
            'defectPercentage': self.defect_percentage,
        }
        if include_records:
            result['inspectionRecords'] = [serialize_record(r) for r in self.inspection_records]
        return result


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

def fetch_inputs(
    source: RecordSource,
    business_unit: str,
    site: Optional[str],
    config: KpiConfig,
    since: Optional[datetime] = None,
) -> Tuple[List[Equipment], List[InspectionRecord]]:
    """
    Fetch the registry, the primary transactions and each mixer subtype
    concurrently. ``since`` bounds the transaction queries to the window.

    Raises whatever the registry or primary transaction fetch raised; mixer
    subtype failures are logged and skipped.
    """
    mixer_types = list(config.mixer_types)
    started = time.time()

    with ThreadPoolExecutor(max_workers=max(1, min(FETCH_WORKERS, 2 + len(mixer_types)))) as pool:
        equipment_future = pool.submit(source.fetch_equipment, business_unit, site)
        transactions_future = pool.submit(
            source.fetch_transactions, business_unit, exclude_types=mixer_types or None, since=since
        )
        family_futures = submit_family_fetches(pool, source, business_unit, mixer_types, since=since)

        try:
            equipment = equipment_future.result()
            records = list(transactions_future.result())
        except Exception:
            for future in [equipment_future, transactions_future, *family_futures.values()]:
                future.cancel()
            raise

        for history in collect_family_records(family_futures):
            records.extend(history)

    logger.info(
        f"Fetched {len(equipment)} equipment and {len(records)} transactions for "
        f"bu={business_unit} site={site or '*'} in {(time.time() - started) * 1000:.0f}ms"
    )
    return equipment, records


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def build_buckets(
    equipment: Sequence[Equipment],
    records: Sequence[InspectionRecord],
    cadence: Cadence,
    now: datetime,
    config: KpiConfig,
    tz: Optional[tzinfo] = None,
) -> Tuple[EquipmentIndex, Dict[str, Dict[str, StatisticsEntry]]]:
    """
    Seed one entry per registered (type, site) bucket in scope for the
    cadence, then count each asset's latest in-window record into it.
    """
    index = EquipmentIndex(equipment, family_aliases(config.mixer_types))

    def in_scope(equipment_type: str) -> bool:
        return is_type_in_scope(equipment_type, cadence, config.period_map)

    buckets: Dict[str, Dict[str, StatisticsEntry]] = {}
    for (equipment_type, site), count in index.bucket_totals().items():
        if in_scope(equipment_type):
            buckets.setdefault(equipment_type, {})[site] = StatisticsEntry(total=count)

    filtered = [
        r for r in records
        if in_scope(index.canonical_type(r.equipment_type)) and in_window(r.timestamp, cadence, now, tz)
    ]
    latest = reduce_latest(filtered, index)

    unregistered = 0
    for (site, equipment_type, _), record in latest.items():
        if not index.contains(record):
            unregistered += 1
            continue
        entry = buckets[equipment_type][site]
        entry.inspected += 1
        if has_defect(record.answers):
            entry.defects += 1
        entry.inspection_records.append(record)

    if unregistered:
        logger.info(f"Ignored {unregistered} inspected assets missing from the equipment registry")
    return index, buckets


def aggregate_records(
    equipment: Sequence[Equipment],
    records: Sequence[InspectionRecord],
    cadence: Cadence,
    now: datetime,
    config: KpiConfig,
    tz: Optional[tzinfo] = None,
    site: Optional[str] = None,
    include_records: bool = False,
) -> Dict[str, Any]:
    """Pure aggregation over already fetched inputs; returns the ``data`` block."""
    _, buckets = build_buckets(equipment, records, cadence, now, config, tz)

    seeded_sites = [site] if site else config.sites
    site_rollup: Dict[str, StatisticsEntry] = {s: StatisticsEntry() for s in seeded_sites if s != UNKNOWN_SITE}
    grand_total = StatisticsEntry()
    by_type: Dict[str, Dict[str, Any]] = {}

    for equipment_type in sorted(buckets):
        type_entry = StatisticsEntry()
        by_site = {}
        for bucket_site in sorted(buckets[equipment_type]):
            entry = buckets[equipment_type][bucket_site]
            type_entry.add(entry)
            if bucket_site == UNKNOWN_SITE:
                continue
            by_site[bucket_site] = entry.to_dict(include_records)
            site_rollup.setdefault(bucket_site, StatisticsEntry()).add(entry)
        by_type[equipment_type] = {**type_entry.to_dict(), 'bySite': by_site}
        grand_total.add(type_entry)

    return {
        'byType': by_type,
        'bySite': {s: site_rollup[s].to_dict() for s in sorted(site_rollup)},
        'total': grand_total.to_dict(),
    }


def aggregate(
    business_unit: str,
    site: Optional[str] = None,
    cadence: Union[Cadence, str, None] = None,
    now: Optional[datetime] = None,
    source: Optional[RecordSource] = None,
    config: Optional[KpiConfig] = None,
    tz: Optional[tzinfo] = None,
    include_records: bool = False,
) -> Dict[str, Any]:
    """
    Compute the KPI statistics response for one business unit.

    On a registry or primary transaction failure the response carries
    ``success: false`` and an empty ``data`` block instead of partial counts.
    """
    cadence = cadence if isinstance(cadence, Cadence) else Cadence.parse(cadence)
    tz = tz or get_local_timezone()
    now = to_utc(now or datetime.now(timezone.utc), tz)
    source = source or get_record_source()
    config = config or KpiConfig.for_business_unit(business_unit)
    window_start, _ = window_bounds(cadence, now, tz)

    try:
        equipment, records = fetch_inputs(source, business_unit, site, config, since=window_start)
    except Exception as e:
        logger.exception(f"KPI aggregation failed for bu={business_unit}: source unavailable")
        response = StatisticsResponse(
            success=False,
            bu=business_unit,
            site=site,
            frequency=cadence.value,
            error=str(e),
            timestamp=isoformat_utc(now),
        )
        payload = response.model_dump(exclude_none=True)
        payload['data'] = {}
        return payload

    data = aggregate_records(equipment, records, cadence, now, config, tz, site, include_records)
    response = StatisticsResponse(
        success=True,
        bu=business_unit,
        site=site,
        frequency=cadence.value,
        data=KPIData(**data),
        timestamp=isoformat_utc(now),
    )
    return response.model_dump(exclude_none=True)


def list_bucket_assets(
    business_unit: str,
    equipment_type: str,
    site: Optional[str] = None,
    cadence: Union[Cadence, str, None] = None,
    now: Optional[datetime] = None,
    source: Optional[RecordSource] = None,
    config: Optional[KpiConfig] = None,
    tz: Optional[tzinfo] = None,
) -> Dict[str, Any]:
    """
    Drill-down for one dashboard cell: every registered asset of the type
    (and site) with its latest in-window inspection, if any.
    """
    cadence = cadence if isinstance(cadence, Cadence) else Cadence.parse(cadence)
    tz = tz or get_local_timezone()
    now = to_utc(now or datetime.now(timezone.utc), tz)
    source = source or get_record_source()
    config = config or KpiConfig.for_business_unit(business_unit)
    equipment_type = equipment_type.lower()
    window_start, _ = window_bounds(cadence, now, tz)

    equipment, records = fetch_inputs(source, business_unit, site, config, since=window_start)
    index, buckets = build_buckets(equipment, records, cadence, now, config, tz)
    canonical_type = index.canonical_type(equipment_type)

    latest_by_asset: Dict[str, InspectionRecord] = {}
    for entry in buckets.get(canonical_type, {}).values():
        for record in entry.inspection_records:
            latest_by_asset[index.key_for(record.business_unit, record.equipment_type, record.equipment_id)] = record

    assets = []
    for item in index.equipment():
        if index.canonical_type(item.equipment_type) != canonical_type:
            continue
        if site and item.site != site:
            continue
        record = latest_by_asset.get(index.key_for(item.business_unit, item.equipment_type, item.equipment_id))
        last = None
        if record is not None:
            last = LastInspection(
                timestamp=isoformat_utc(record.timestamp),
                inspector=record.inspector,
                images=record.images,
                remark=record.remark,
                docId=record.doc_id,
                failedItems=failed_questions(record.answers),
            )
        assets.append(AssetStatus(
            id=item.equipment_id,
            type=canonical_type,
            site=item.site,
            owner=item.owner,
            inspected=record is not None,
            defected=record is not None and has_defect(record.answers),
            lastInspection=last,
        ))

    assets.sort(key=lambda a: (not a.inspected, a.site, a.id))
    return {
        'success': True,
        'bu': business_unit,
        'site': site,
        'type': canonical_type,
        'frequency': cadence.value,
        'total': len(assets),
        'inspected': sum(1 for a in assets if a.inspected),
        'defected': sum(1 for a in assets if a.defected),
        'assets': [a.model_dump() for a in assets],
        'timestamp': isoformat_utc(now),
    }
