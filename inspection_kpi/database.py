"""
Record source layer supporting Firestore (production) and JSON fixtures
(local development and tests).

Usage:
    - Production: Firestore, selected when GOOGLE_CLOUD_PROJECT or
      GOOGLE_APPLICATION_CREDENTIALS is set
    - Local development: a JSON export with ``machine`` and ``machinetr``
      arrays (RECORD_SOURCE_PATH)
    - Override: set RECORD_SOURCE_TYPE to ``firestore`` or ``json``

Both backends expose the same two read-only queries through
``RecordSource`` and return typed ``Equipment`` / ``InspectionRecord``
objects. Raw documents never leave this module.
"""

import os
import json
import logging
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import unquote

from inspection_kpi.models import Equipment, InspectionRecord, UNKNOWN_SITE
from inspection_kpi.services.answers import extract_answers
from inspection_kpi.services.timestamps import normalize_timestamp

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

_default_fixture_path = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    'data', 'records.json'
)

RECORD_SOURCE_PATH = os.environ.get('RECORD_SOURCE_PATH', _default_fixture_path)
EQUIPMENT_COLLECTION = os.environ.get('EQUIPMENT_COLLECTION', 'machine')
TRANSACTION_COLLECTION = os.environ.get('TRANSACTION_COLLECTION', 'machinetr')
TRANSACTION_QUERY_LIMIT = int(os.environ.get('TRANSACTION_QUERY_LIMIT', '10000'))


def _detect_source_type() -> str:
    """Detect which record backend to use based on environment."""
    if os.environ.get('RECORD_SOURCE_TYPE'):
        return os.environ['RECORD_SOURCE_TYPE'].lower()

    if os.environ.get('GOOGLE_CLOUD_PROJECT') or os.environ.get('GOOGLE_APPLICATION_CREDENTIALS'):
        return 'firestore'

    return 'json'


RECORD_SOURCE_TYPE = _detect_source_type()


class RecordSourceError(Exception):
    """Raised when a backing store query cannot be completed."""


# ---------------------------------------------------------------------------
# Document mapping
# ---------------------------------------------------------------------------

def _decode(value: Any) -> str:
    # Ids typed into QR URLs arrive percent-encoded (Thai/Khmer ids in particular)
    if value is None:
        return ''
    return unquote(str(value))


def _as_list(value: Any) -> List[str]:
    if value is None or value == '':
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v]
    return [str(value)]


def _text(value: Any) -> Optional[str]:
    if value is None or value == '':
        return None
    return str(value)


def equipment_from_document(doc: Mapping[str, Any]) -> Equipment:
    return Equipment(
        business_unit=_decode(doc.get('bu')),
        equipment_type=_decode(doc.get('type')).lower(),
        equipment_id=_decode(doc.get('id')),
        site=_text(doc.get('site')) or UNKNOWN_SITE,
        owner=_text(doc.get('owner')),
    )


def record_from_document(doc: Mapping[str, Any], doc_id: Optional[str] = None) -> InspectionRecord:
    raw_timestamp = doc.get('timestamp') or doc.get('createdAt')
    return InspectionRecord(
        business_unit=_decode(doc.get('bu')),
        equipment_type=_decode(doc.get('type')).lower(),
        equipment_id=_decode(doc.get('id')),
        timestamp=normalize_timestamp(raw_timestamp),
        inspector=_text(doc.get('inspector')) or '',
        answers=extract_answers(doc),
        images=_as_list(doc.get('images')),
        remark=_text(doc.get('remark')),
        doc_id=doc_id or _text(doc.get('docId')),
        reported_site=_text(doc.get('site')),
    )


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class RecordSource:
    """Read-only access to the equipment registry and inspection transactions."""

    source_type = 'base'

    def fetch_equipment(self, business_unit: str, site: Optional[str] = None) -> List[Equipment]:
        raise NotImplementedError

    def fetch_transactions(
        self,
        business_unit: str,
        equipment_type: Optional[str] = None,
        equipment_id: Optional[str] = None,
        exclude_types: Optional[Sequence[str]] = None,
        since: Optional[datetime] = None,
    ) -> List[InspectionRecord]:
        raise NotImplementedError

    def ping(self) -> bool:
        """Connectivity check for the health endpoints."""
        return True


class JsonRecordSource(RecordSource):
    """
    Serves documents from memory. Loaded from a Firestore JSON export
    (``{"machine": [...], "machinetr": [...]}``) or passed in directly.
    """

    source_type = 'json'

    def __init__(
        self,
        equipment_docs: Optional[Iterable[Mapping[str, Any]]] = None,
        transaction_docs: Optional[Iterable[Mapping[str, Any]]] = None,
        path: Optional[str] = None,
    ):
        self.path = path
        if path is not None:
            equipment_docs, transaction_docs = self._load(path)
        self._equipment = [equipment_from_document(d) for d in (equipment_docs or [])]
        self._transactions = [
            record_from_document(d, doc_id=_text(d.get('docId')) or f"doc-{i}")
            for i, d in enumerate(transaction_docs or [])
        ]

    @staticmethod
    def _load(path: str):
        if not os.path.exists(path):
            logger.warning(f"Record fixture not found at {path}, serving empty collections")
            return [], []
        try:
            with open(path, 'r', encoding='utf-8') as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RecordSourceError(f"Cannot read record fixture {path}: {e}") from e
        return payload.get(EQUIPMENT_COLLECTION, []), payload.get(TRANSACTION_COLLECTION, [])

    def fetch_equipment(self, business_unit: str, site: Optional[str] = None) -> List[Equipment]:
        return [
            e for e in self._equipment
            if e.business_unit == business_unit and (site is None or e.site == site)
        ]

    def fetch_transactions(
        self,
        business_unit: str,
        equipment_type: Optional[str] = None,
        equipment_id: Optional[str] = None,
        exclude_types: Optional[Sequence[str]] = None,
        since: Optional[datetime] = None,
    ) -> List[InspectionRecord]:
        wanted_type = equipment_type.lower() if equipment_type else None
        excluded = {t.lower() for t in (exclude_types or [])}
        return [
            r for r in self._transactions
            if r.business_unit == business_unit
            and (wanted_type is None or r.equipment_type == wanted_type)
            and (equipment_id is None or r.equipment_id == equipment_id)
            and r.equipment_type not in excluded
            and (since is None or (r.timestamp is not None and r.timestamp >= since))
        ]


class FirestoreRecordSource(RecordSource):
    """Queries the ``machine`` and ``machinetr`` Firestore collections."""

    source_type = 'firestore'

    def __init__(self, client=None, project: Optional[str] = None):
        if client is None:
            from google.cloud import firestore
            client = firestore.Client(project=project or os.environ.get('GOOGLE_CLOUD_PROJECT'))
        self._client = client

    def _run(self, query, mapper, label: str) -> list:
        try:
            return [mapper(doc) for doc in query.stream()]
        except Exception as e:
            logger.error(f"Firestore query failed ({label}): {e}")
            raise RecordSourceError(f"{label} query failed: {e}") from e

    def fetch_equipment(self, business_unit: str, site: Optional[str] = None) -> List[Equipment]:
        from google.cloud.firestore_v1.base_query import FieldFilter

        query = self._client.collection(EQUIPMENT_COLLECTION).where(
            filter=FieldFilter('bu', '==', business_unit)
        )
        if site:
            query = query.where(filter=FieldFilter('site', '==', site))
        return self._run(query, lambda doc: equipment_from_document(doc.to_dict()), 'equipment')

    def fetch_transactions(
        self,
        business_unit: str,
        equipment_type: Optional[str] = None,
        equipment_id: Optional[str] = None,
        exclude_types: Optional[Sequence[str]] = None,
        since: Optional[datetime] = None,
    ) -> List[InspectionRecord]:
        from google.cloud.firestore_v1.base_query import BaseQuery, FieldFilter

        query = self._client.collection(TRANSACTION_COLLECTION).where(
            filter=FieldFilter('bu', '==', business_unit)
        )
        if equipment_type:
            query = query.where(filter=FieldFilter('type', '==', equipment_type.lower()))
        elif exclude_types:
            query = query.where(filter=FieldFilter('type', 'not-in', [t.lower() for t in exclude_types]))
        if equipment_id:
            query = query.where(filter=FieldFilter('id', '==', equipment_id))
        if since is not None:
            # Newest first, so a capped result only ever loses the oldest records
            query = query.where(filter=FieldFilter('timestamp', '>=', since))
            query = query.order_by('timestamp', direction=BaseQuery.DESCENDING)
        query = query.limit(TRANSACTION_QUERY_LIMIT)

        label = f"transactions bu={business_unit} type={equipment_type or '*'}"
        records = self._run(query, lambda doc: record_from_document(doc.to_dict(), doc_id=doc.id), label)
        if len(records) >= TRANSACTION_QUERY_LIMIT:
            if since is not None:
                logger.error(f"{label} since={since.isoformat()} hit the {TRANSACTION_QUERY_LIMIT} document cap")
                raise RecordSourceError(
                    f"{label} returned {TRANSACTION_QUERY_LIMIT} documents; the window cannot be counted completely"
                )
            logger.warning(f"{label} hit the {TRANSACTION_QUERY_LIMIT} document cap, older records were not read")
        return records

    def ping(self) -> bool:
        try:
            list(self._client.collection(EQUIPMENT_COLLECTION).limit(1).stream())
            return True
        except Exception as e:
            logger.warning(f"Firestore ping failed: {e}")
            return False


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

_record_source: Optional[RecordSource] = None
_source_lock = threading.Lock()


def _create_record_source() -> RecordSource:
    if RECORD_SOURCE_TYPE == 'firestore':
        logger.info("Using Firestore record source")
        return FirestoreRecordSource()
    logger.info(f"Using JSON record source: {RECORD_SOURCE_PATH}")
    return JsonRecordSource(path=RECORD_SOURCE_PATH)


def get_record_source() -> RecordSource:
    """
    Get the process-wide record source.

    Firestore clients are thread-safe, so one instance serves every request
    and every fan-out worker.
    """
    global _record_source
    if _record_source is None:
        with _source_lock:
            if _record_source is None:
                _record_source = _create_record_source()
    return _record_source


def set_record_source(source: Optional[RecordSource]) -> None:
    """Replace the record source (tests, CLI tools). None resets to auto-detection."""
    global _record_source
    with _source_lock:
        _record_source = source


def get_source_info() -> Dict[str, Any]:
    """Return information about the current record source configuration."""
    return {
        'type': RECORD_SOURCE_TYPE,
        'path': RECORD_SOURCE_PATH if RECORD_SOURCE_TYPE == 'json' else None,
        'project': os.environ.get('GOOGLE_CLOUD_PROJECT') if RECORD_SOURCE_TYPE == 'firestore' else None,
        'equipment_collection': EQUIPMENT_COLLECTION,
        'transaction_collection': TRANSACTION_COLLECTION,
    }
