from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

UNKNOWN_SITE = "unknown"


# --- Source Records (machine / machinetr collections) ---

class AnswerKind(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    NOT_APPLICABLE = "not_applicable"
    OTHER = "other"


class Answer(BaseModel):
    """One checklist answer, tagged at ingestion."""
    kind: AnswerKind
    raw: Any = None


class Equipment(BaseModel):
    business_unit: str
    equipment_type: str
    equipment_id: str
    site: str = UNKNOWN_SITE
    owner: Optional[str] = None


class InspectionRecord(BaseModel):
    business_unit: str
    equipment_type: str
    equipment_id: str
    timestamp: Optional[datetime] = None  # None when the stored value was unparsable
    inspector: str = ""
    answers: Dict[str, Answer] = Field(default_factory=dict)
    images: List[str] = []
    remark: Optional[str] = None
    doc_id: Optional[str] = None
    reported_site: Optional[str] = None  # as written by the form; not trusted for bucketing


# --- KPI Response Models ---

class SiteStats(BaseModel):
    inspected: int
    defected: int
    total: int
    percentage: int
    defectPercentage: int
    inspectionRecords: Optional[List[Dict[str, Any]]] = None


class TypeStats(BaseModel):
    inspected: int
    total: int
    percentage: int
    defected: int
    defectPercentage: int
    bySite: Optional[Dict[str, SiteStats]] = None


class KPIData(BaseModel):
    byType: Dict[str, TypeStats] = {}
    bySite: Dict[str, SiteStats] = {}
    total: SiteStats


class StatisticsResponse(BaseModel):
    """Payload consumed by the KPI dashboards."""
    success: bool
    bu: str
    site: Optional[str] = None
    frequency: str
    data: Optional[KPIData] = None
    error: Optional[str] = None
    timestamp: str


class LastInspection(BaseModel):
    timestamp: Optional[str]
    inspector: str
    images: List[str] = []
    remark: Optional[str] = None
    docId: Optional[str] = None
    failedItems: List[str] = []


class AssetStatus(BaseModel):
    id: str
    type: str
    site: str
    owner: Optional[str] = None
    inspected: bool
    defected: bool
    lastInspection: Optional[LastInspection] = None
