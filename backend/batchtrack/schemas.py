from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from batchtrack.models.batch import ProcessType


class CamelModel(BaseModel):
    # wire format is camelCase; snake_case accepted too
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------- who / where ----------

class Actor(BaseModel):
    user_id: str
    name: str
    email: Optional[str] = None
    role: Optional[str] = None

class RequestContext(BaseModel):
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    request_id: Optional[str] = None
    method: Optional[str] = None
    url: Optional[str] = None


# ---------- batch input ----------

class InputMaterial(CamelModel):
    fabric_type: str = Field(min_length=1)
    fabric_grade: Optional[str] = None
    gsm: Optional[float] = Field(default=None, ge=0)
    width: Optional[float] = Field(default=None, ge=0)
    color: Optional[str] = None
    quantity: float = Field(ge=0)
    unit: Literal["meters", "yards", "pieces"]
    weight: Optional[float] = Field(default=None, ge=0)
    inventory_item_id: Optional[str] = None

class MachineAssignment(CamelModel):
    machine_id: Optional[str] = None
    machine_name: Optional[str] = None
    machine_type: Optional[str] = None
    capacity: Optional[float] = Field(default=None, ge=0)
    efficiency: Optional[float] = Field(default=None, ge=0, le=100)

class Costs(CamelModel):
    chemical_cost: float = Field(default=0, ge=0)
    labor_cost: float = Field(default=0, ge=0)
    machine_cost: float = Field(default=0, ge=0)
    utility_cost: float = Field(default=0, ge=0)
    waste_disposal_cost: float = Field(default=0, ge=0)
    total_cost: Optional[float] = Field(default=None, ge=0)
    cost_per_unit: float = Field(default=0, ge=0)

class BatchCreate(CamelModel):
    batch_number: Optional[str] = Field(default=None, max_length=64)
    production_order_id: Optional[str] = None
    production_order_number: Optional[str] = None
    inward_id: Optional[str] = None
    grn_number: Optional[str] = None
    process_type: ProcessType
    process_name: str = Field(min_length=1, max_length=255)
    process_description: Optional[str] = None
    input_materials: List[InputMaterial] = []
    process_parameters: Dict[str, Any] = {}
    machine_assignment: Optional[MachineAssignment] = None
    quality_control: Dict[str, Any] = {}
    costs: Optional[Costs] = None
    planned_start_time: Optional[datetime] = None
    planned_end_time: Optional[datetime] = None
    planned_duration: Optional[int] = Field(default=None, ge=0)
    setup_time: int = Field(default=0, ge=0)
    cleaning_time: int = Field(default=0, ge=0)
    notes: Optional[str] = None
    special_instructions: Optional[str] = None
    tags: List[str] = []

class BatchUpdate(CamelModel):
    """Field-level edits; status moves only through the status endpoint."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    production_order_id: Optional[str] = None
    production_order_number: Optional[str] = None
    inward_id: Optional[str] = None
    grn_number: Optional[str] = None
    process_type: Optional[ProcessType] = None
    process_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    process_description: Optional[str] = None
    input_materials: Optional[List[InputMaterial]] = None
    process_parameters: Optional[Dict[str, Any]] = None
    machine_assignment: Optional[MachineAssignment] = None
    quality_control: Optional[Dict[str, Any]] = None
    costs: Optional[Costs] = None
    planned_start_time: Optional[datetime] = None
    planned_end_time: Optional[datetime] = None
    planned_duration: Optional[int] = Field(default=None, ge=0)
    setup_time: Optional[int] = Field(default=None, ge=0)
    cleaning_time: Optional[int] = Field(default=None, ge=0)
    reason_for_delay: Optional[str] = None
    special_instructions: Optional[str] = None
    tags: Optional[List[str]] = None

class StatusChangeIn(CamelModel):
    status: str
    notes: Optional[str] = None
    change_reason: Optional[str] = None
    expected_version: Optional[int] = None

class ProgressIn(CamelModel):
    progress: int

class LogIdsIn(CamelModel):
    ids: List[int] = Field(min_length=1)


# ---------- output ----------

class BatchOut(CamelModel):
    id: int
    company_id: str
    batch_number: str
    production_order_id: Optional[str] = None
    production_order_number: Optional[str] = None
    inward_id: Optional[str] = None
    grn_number: Optional[str] = None
    process_type: str
    process_name: str
    process_description: Optional[str] = None
    status: str
    progress: int
    planned_start_time: Optional[datetime] = None
    actual_start_time: Optional[datetime] = None
    planned_end_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    planned_duration: Optional[int] = None
    actual_duration: Optional[int] = None
    setup_time: int = 0
    cleaning_time: int = 0
    downtime: int = 0
    reason_for_delay: Optional[str] = None
    hold_started_at: Optional[datetime] = None
    input_materials: List[Dict[str, Any]] = []
    process_parameters: Dict[str, Any] = {}
    machine_assignment: Dict[str, Any] = {}
    quality_control: Dict[str, Any] = {}
    costs: Dict[str, Any] = {}
    status_change_log: List[Dict[str, Any]] = []
    notes: Optional[str] = None
    special_instructions: Optional[str] = None
    tags: List[str] = []
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    updated_by: Optional[str] = None
    updated_by_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    version: int

class LogOut(CamelModel):
    id: int
    log_type: str
    production_stage: str
    action: str
    entity_type: str
    entity_id: str
    entity_name: Optional[str] = None
    user_id: str
    user_name: str
    user_email: Optional[str] = None
    user_role: Optional[str] = None
    status_change: Optional[Dict[str, Any]] = None
    changes: Optional[List[Dict[str, Any]]] = None
    production_data: Optional[Dict[str, Any]] = None
    request_info: Optional[Dict[str, Any]] = None
    log_metadata: Optional[Dict[str, Any]] = None
    severity: str
    priority: str
    timestamp: datetime
    expires_at: Optional[datetime] = None
    is_read: bool
    is_archived: bool


def dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")
