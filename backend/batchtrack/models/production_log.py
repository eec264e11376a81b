from __future__ import annotations
from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON, Index, event, inspect
from batchtrack.utils.clock import utcnow
import enum

from batchtrack.core.database import Base
from batchtrack.core.errors import AuditWriteError

class LogType(str, enum.Enum):
    STATUS_CHANGE = "status_change"
    STAGE_CHANGE = "stage_change"
    QUALITY_CHECK = "quality_check"
    MACHINE_START = "machine_start"
    MACHINE_STOP = "machine_stop"
    MATERIAL_INPUT = "material_input"
    MATERIAL_OUTPUT = "material_output"
    ERROR = "error"
    MAINTENANCE = "maintenance"

    @classmethod
    def values(cls):
        return [v.value for v in cls]

class ProductionStage(str, enum.Enum):
    GREY_FABRIC_INWARD = "grey_fabric_inward"
    PRE_PROCESSING = "pre_processing"
    DYEING = "dyeing"
    PRINTING = "printing"
    FINISHING = "finishing"
    CUTTING_PACKING = "cutting_packing"
    DISPATCH = "dispatch"

    @classmethod
    def values(cls):
        return [v.value for v in cls]

SEVERITIES = ("low", "medium", "high", "critical")
PRIORITIES = ("low", "medium", "high", "urgent")

class ProductionLog(Base):
    __tablename__ = "production_logs"

    id = Column(Integer, primary_key=True)
    company_id = Column(String(64), nullable=False, index=True)

    log_type = Column(String(32), nullable=False, index=True)
    production_stage = Column(String(32), nullable=False, index=True)
    action = Column(String(128), nullable=False, index=True)   # e.g. status_changed, batch_created

    entity_type = Column(String(64), nullable=False)            # e.g. PreProcessing
    entity_id = Column(String(64), nullable=False)
    entity_name = Column(String(128), nullable=True, index=True)

    # actor snapshot at time of action
    user_id = Column(String(64), nullable=False, index=True)
    user_name = Column(String(255), nullable=False)
    user_email = Column(String(255), nullable=True)
    user_role = Column(String(64), nullable=True)

    status_change = Column(JSON, nullable=True)     # {"from_status","to_status","change_reason","notes","duration"}
    changes = Column(JSON, nullable=True)           # [{"field","old_value","new_value","data_type"}]
    production_data = Column(JSON, default=dict)
    request_info = Column(JSON, default=dict)       # {"ip_address","user_agent","session_id","request_id","method","url"}
    log_metadata = Column(JSON, default=dict)

    severity = Column(String(16), default="medium", nullable=False)
    priority = Column(String(16), default="medium", nullable=False)

    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=True, index=True)

    is_read = Column(Boolean, default=False, nullable=False)
    is_archived = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_production_logs_entity", "entity_type", "entity_id", "timestamp"),
        Index("ix_production_logs_type_stage", "log_type", "production_stage", "timestamp"),
        Index("ix_production_logs_flags", "is_read", "is_archived", "timestamp"),
    )

# Only the read/archive flags may change after insert
MUTABLE_FIELDS = frozenset({"is_read", "is_archived"})

@event.listens_for(ProductionLog, "before_update")
def _reject_log_mutation(mapper, connection, target):
    state = inspect(target)
    for attr in state.attrs:
        if attr.key in MUTABLE_FIELDS:
            continue
        if attr.history.has_changes():
            raise AuditWriteError(f"production log {target.id} is append-only; '{attr.key}' cannot change")
