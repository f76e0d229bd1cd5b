"""
Matching audit log.

Append-only: one row per customer match, SKU match or invoice
validation execution.
"""

from typing import Optional
import structlog

from config import MATCH_LOG_TABLE
from models.match_log import MatchEntityType, MatchLogCreate, MatchLogResponse
from services.mapping_store import MappingStore, get_mapping_store, utc_now

logger = structlog.get_logger(__name__)


class MatchLogService:
    """Writes and reads the matching_algorithm_log table."""

    def __init__(self, store: Optional[MappingStore] = None):
        self.store = store or get_mapping_store()
        self.table = MATCH_LOG_TABLE

    def record(self, entry: MatchLogCreate) -> None:
        """Append one audit row."""
        self.store.insert(self.table, {
            **entry.model_dump(mode="json"),
            "execution_date": utc_now(),
        })
        logger.debug(
            "match_logged",
            entity_type=entry.entity_type.value,
            entity_id=entry.atek_entity_id,
            best_match_id=entry.best_match_id
        )

    def list_for_entity(self, entity_type: MatchEntityType, entity_id: str) -> list[MatchLogResponse]:
        rows = self.store.find(
            self.table,
            filters={"entity_type": entity_type.value, "atek_entity_id": entity_id},
            order_by="execution_date",
            desc=True,
        )
        return [MatchLogResponse(**row) for row in rows]

    def clear(self, entity_type: MatchEntityType) -> int:
        deleted = self.store.delete(self.table, filters={"entity_type": entity_type.value})
        logger.info("match_log_cleared", entity_type=entity_type.value, deleted=deleted)
        return deleted


# Singleton instance
_match_log_service: Optional[MatchLogService] = None


def get_match_log_service() -> MatchLogService:
    """Get or create MatchLogService instance."""
    global _match_log_service
    if _match_log_service is None:
        _match_log_service = MatchLogService()
    return _match_log_service
