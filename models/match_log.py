"""
Matching audit log models.
"""

from datetime import datetime
from typing import Any, Optional
from enum import Enum
from pydantic import Field

from models.base import BaseSchema

ALGORITHM_VERSION = "1.0.0"


class MatchEntityType(str, Enum):
    CUSTOMER = "customer"
    SKU = "sku"
    INVOICE = "invoice"


class MatchLogCreate(BaseSchema):
    """One matching or validation execution."""

    entity_type: MatchEntityType
    atek_entity_id: str
    algorithm_version: str = ALGORITHM_VERSION
    total_candidates: int = 0
    best_match_id: Optional[str] = None
    best_match_score: Optional[float] = None
    all_candidates: list[dict[str, Any]] = Field(default_factory=list)
    matching_criteria_used: dict[str, Any] = Field(default_factory=dict)
    execution_time_ms: int = 0
    notes: Optional[str] = None


class MatchLogResponse(MatchLogCreate):
    log_id: int
    execution_date: Optional[datetime] = None
