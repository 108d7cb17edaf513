import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from inspection_kpi.config_manager import KpiConfig
from inspection_kpi.database import RecordSource, get_record_source
from inspection_kpi.services.mixer_service import (
    collect_family_records, submit_family_fetches, summarize_by_owner,
)
from inspection_kpi.services.periods import Cadence, window_bounds
from inspection_kpi.services.timestamps import get_local_timezone, isoformat_utc, to_utc

logger = logging.getLogger(__name__)

WEEK = timedelta(days=7)


def get_transaction_summary(
    business_unit: str,
    now: Optional[datetime] = None,
    source: Optional[RecordSource] = None,
    tz=None,
) -> Dict[str, Any]:
    """
    Returns today's and the trailing week's inspection counts plus the most
    recent inspection instant for a business unit.

    A failing transaction query yields zero counts rather than an error, so
    the landing page tiles still render.
    """
    started = time.time()
    tz = tz or get_local_timezone()
    now = to_utc(now or datetime.now(timezone.utc), tz)
    source = source or get_record_source()

    today_start, _ = window_bounds(Cadence.DAILY, now, tz)
    week_start = now - WEEK

    total_today = 0
    total_week = 0
    last_inspection = None

    try:
        records = source.fetch_transactions(business_unit)
        for record in records:
            if record.timestamp is None:
                continue
            if last_inspection is None or record.timestamp > last_inspection:
                last_inspection = record.timestamp
            if record.timestamp >= week_start:
                total_week += 1
                if record.timestamp >= today_start:
                    total_today += 1
    except Exception as e:
        logger.error(f"Error fetching records for transaction summary bu={business_unit}: {e}")
        total_today = 0
        total_week = 0
        last_inspection = None

    processing_time = int((time.time() - started) * 1000)
    logger.info(f"Transaction summary for {business_unit} completed in {processing_time}ms")

    return {
        "totalToday": total_today,
        "totalWeek": total_week,
        "lastInspection": isoformat_utc(last_inspection),
        "totalRecords": total_week,
        "processingTime": processing_time,
    }


def get_mixer_owner_summary(
    business_unit: str,
    now: Optional[datetime] = None,
    source: Optional[RecordSource] = None,
    config: Optional[KpiConfig] = None,
    tz=None,
) -> Dict[str, Any]:
    """Today's mixer inspections per truck owner for one business unit."""
    tz = tz or get_local_timezone()
    now = to_utc(now or datetime.now(timezone.utc), tz)
    source = source or get_record_source()
    config = config or KpiConfig.for_business_unit(business_unit)
    today_start, _ = window_bounds(Cadence.DAILY, now, tz)

    with ThreadPoolExecutor(max_workers=1 + len(config.mixer_types)) as pool:
        equipment_future = pool.submit(source.fetch_equipment, business_unit)
        family_futures = submit_family_fetches(
            pool, source, business_unit, config.mixer_types, since=today_start
        )
        equipment = equipment_future.result()
        records = [r for history in collect_family_records(family_futures) for r in history]

    summary = summarize_by_owner(equipment, records, config.mixer_types, now, tz)
    summary["bu"] = business_unit
    summary["timestamp"] = isoformat_utc(now)
    return summary
