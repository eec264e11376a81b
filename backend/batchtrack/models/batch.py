from sqlalchemy import Column, Integer, Float, String, DateTime, Text, JSON, Index
from sqlalchemy.orm import validates
from batchtrack.utils.clock import utcnow
import enum

from batchtrack.core.database import Base

class BatchStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    CANCELLED = "cancelled"
    QUALITY_HOLD = "quality_hold"

    @classmethod
    def values(cls):
        return [s.value for s in cls]

class ProcessType(str, enum.Enum):
    DESIZING = "desizing"
    BLEACHING = "bleaching"
    SCOURING = "scouring"
    MERCERIZING = "mercerizing"
    COMBINED = "combined"

    @classmethod
    def values(cls):
        return [p.value for p in cls]

# entity_type recorded on production log entries for these rows
ENTITY_TYPE = "PreProcessing"

class Batch(Base):
    __tablename__ = "pre_processing_batches"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(String(64), nullable=False, index=True)
    batch_number = Column(String(64), unique=True, index=True, nullable=False)

    production_order_id = Column(String(64), nullable=True, index=True)
    production_order_number = Column(String(64), nullable=True)
    inward_id = Column(String(64), nullable=True)
    grn_number = Column(String(64), nullable=True)

    process_type = Column(String(32), nullable=False, index=True)
    process_name = Column(String(255), nullable=False)
    process_description = Column(Text, nullable=True)

    status = Column(String(32), default=BatchStatus.PENDING.value, nullable=False, index=True)
    progress = Column(Integer, default=0, nullable=False)

    # timing (durations in minutes)
    planned_start_time = Column(DateTime, nullable=True)
    actual_start_time = Column(DateTime, nullable=True)
    planned_end_time = Column(DateTime, nullable=True)
    actual_end_time = Column(DateTime, nullable=True)
    planned_duration = Column(Integer, nullable=True)
    actual_duration = Column(Integer, nullable=True)
    setup_time = Column(Integer, default=0, nullable=False)
    cleaning_time = Column(Integer, default=0, nullable=False)
    downtime = Column(Integer, default=0, nullable=False)
    reason_for_delay = Column(String(1000), nullable=True)
    hold_started_at = Column(DateTime, nullable=True)
    status_changed_at = Column(DateTime, nullable=True)

    input_materials = Column(JSON, default=list)      # [{"fabric_type":..., "quantity":..., "unit":...}]
    process_parameters = Column(JSON, default=dict)
    machine_assignment = Column(JSON, default=dict)   # {"machine_name":..., "efficiency": 0-100}
    quality_control = Column(JSON, default=dict)
    costs = Column(JSON, default=dict)
    # scalar copies of machine_assignment.efficiency / costs.total_cost for GROUP BY analytics
    efficiency = Column(Float, nullable=True)
    total_cost = Column(Float, nullable=True)

    # projection of production_logs for quick display; rebuildable from the store
    status_change_log = Column(JSON, default=list)

    notes = Column(Text, nullable=True)
    special_instructions = Column(Text, nullable=True)
    tags = Column(JSON, default=list)

    created_by = Column(String(64), nullable=True)
    created_by_name = Column(String(255), nullable=True)
    updated_by = Column(String(64), nullable=True)
    updated_by_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_pre_processing_batches_company_created", "company_id", "created_at"),
    )

    @validates("machine_assignment")
    def _sync_efficiency(self, key, value):
        eff = (value or {}).get("efficiency")
        self.efficiency = float(eff) if eff is not None else None
        return value

    @validates("costs")
    def _sync_total_cost(self, key, value):
        cost = (value or {}).get("total_cost")
        self.total_cost = float(cost) if cost is not None else None
        return value
