"""
Paginated transaction feed for one business unit, newest first, with a
pass/fail/na verdict per inspection for the feed's status badges.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from inspection_kpi.database import RecordSource, get_record_source
from inspection_kpi.models import Answer, AnswerKind
from inspection_kpi.services.history_service import serialize_record
from inspection_kpi.services.reducer import merge_histories

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def inspection_status(answers: Mapping[str, Answer]) -> str:
    """
    ``pass`` when no item failed, ``fail`` when items failed and none
    passed, ``na`` for a mix of both.
    """
    kinds = [answer.kind for answer in answers.values()]
    if AnswerKind.FAIL not in kinds:
        return 'pass'
    if AnswerKind.PASS not in kinds:
        return 'fail'
    return 'na'


def get_transactions(
    business_unit: str,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    source: Optional[RecordSource] = None,
) -> Dict[str, Any]:
    """
    One page of a business unit's inspections, latest first.

    Args:
        business_unit: Business unit code
        page: Page number (1-indexed)
        limit: Records per page (max 100)

    Returns:
        Dict with 'transactions', 'hasMore', 'total', 'page', 'limit'
    """
    limit = max(1, min(MAX_PAGE_SIZE, limit))
    page = max(1, page)
    source = source or get_record_source()

    records = merge_histories([source.fetch_transactions(business_unit)])
    offset = (page - 1) * limit
    end = offset + limit

    transactions = []
    for record in records[offset:end]:
        item = serialize_record(record)
        item['status'] = inspection_status(record.answers)
        transactions.append(item)

    logger.info(f"Transactions for {business_unit}: page {page} of {len(records)} records")
    return {
        'transactions': transactions,
        'hasMore': end < len(records),
        'total': len(records),
        'page': page,
        'limit': limit,
    }
