import logging
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

from inspection_kpi.config_manager import KpiConfig
from inspection_kpi.database import RecordSource, get_record_source
from inspection_kpi.models import InspectionRecord
from inspection_kpi.services.answers import failed_questions, has_defect
from inspection_kpi.services.mixer_service import fetch_mixer_history
from inspection_kpi.services.reducer import merge_histories
from inspection_kpi.services.timestamps import isoformat_utc

logger = logging.getLogger(__name__)


def serialize_record(record: InspectionRecord) -> Dict[str, Any]:
    """JSON view of a transaction as the detail pages expect it."""
    return {
        "docId": record.doc_id,
        "id": record.equipment_id,
        "bu": record.business_unit,
        "type": record.equipment_type,
        "inspector": record.inspector,
        "timestamp": isoformat_utc(record.timestamp),
        "remark": record.remark,
        "images": record.images,
        "hasDefect": has_defect(record.answers),
        "failedItems": failed_questions(record.answers),
        "answers": {name: answer.raw for name, answer in record.answers.items()},
    }


def get_asset_history(
    business_unit: str,
    equipment_type: str,
    equipment_id: str,
    source: Optional[RecordSource] = None,
    config: Optional[KpiConfig] = None,
) -> List[Dict[str, Any]]:
    """
    Fetches every inspection of one asset, latest first.

    Parameters come straight from URL segments and are decoded here. A type
    belonging to the mixer family returns the merged family history.
    """
    business_unit = unquote(business_unit)
    equipment_type = unquote(equipment_type).lower()
    equipment_id = unquote(equipment_id)
    source = source or get_record_source()
    config = config or KpiConfig.for_business_unit(business_unit)

    if equipment_type in config.mixer_types:
        records = fetch_mixer_history(source, business_unit, equipment_id, config.mixer_types)
    else:
        records = merge_histories([
            source.fetch_transactions(business_unit, equipment_type=equipment_type, equipment_id=equipment_id)
        ])

    logger.info(f"History for {business_unit}/{equipment_type}/{equipment_id}: {len(records)} records")
    return [serialize_record(r) for r in records]
