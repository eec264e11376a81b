from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from batchtrack.core.errors import (
    ConflictError, NotFoundError, PersistenceError, ValidationError,
)
from batchtrack.crud.batch import batch_crud
from batchtrack.metrics import status_transitions_total, transition_failures_total
from batchtrack.models.batch import Batch, BatchStatus, ENTITY_TYPE
from batchtrack.models.production_log import ProductionStage
from batchtrack.schemas import Actor, RequestContext
from batchtrack.services.audit import AuditLogStore, audit_store, status_summary
from batchtrack.utils.clock import utcnow, iso, minutes_between

logger = logging.getLogger(__name__)

PENDING = BatchStatus.PENDING.value
IN_PROGRESS = BatchStatus.IN_PROGRESS.value
COMPLETED = BatchStatus.COMPLETED.value
ON_HOLD = BatchStatus.ON_HOLD.value


def timing_effects(batch: Batch, from_status: str, to_status: str, now: datetime) -> Dict[str, Any]:
    """Field updates implied by moving a batch from one status to another."""
    updates: Dict[str, Any] = {}

    if from_status == PENDING and to_status == IN_PROGRESS:
        updates["actual_start_time"] = now

    if to_status == COMPLETED:
        start = batch.actual_start_time
        if start is None:
            start = updates["actual_start_time"] = now
        updates["actual_end_time"] = now
        updates["actual_duration"] = minutes_between(start, now)
        updates["progress"] = 100
    elif from_status == COMPLETED:
        # end time exists only while completed
        updates["actual_end_time"] = None
        updates["actual_duration"] = None

    if to_status == ON_HOLD:
        updates["hold_started_at"] = now
    elif from_status == ON_HOLD:
        held = minutes_between(batch.hold_started_at, now) or 0
        updates["downtime"] = (batch.downtime or 0) + held
        updates["hold_started_at"] = None

    return updates


def production_data(batch: Batch) -> Dict[str, Any]:
    material = (batch.input_materials or [{}])[0] or {}
    machine = batch.machine_assignment or {}
    temperature = ((batch.process_parameters or {}).get("temperature") or {})
    return {
        "batch_number": batch.batch_number,
        "production_order_number": batch.production_order_number,
        "fabric_type": material.get("fabric_type"),
        "fabric_color": material.get("color"),
        "quantity": material.get("quantity"),
        "unit": material.get("unit"),
        "machine_name": machine.get("machine_name"),
        "temperature": temperature.get("actual") if isinstance(temperature, dict) else None,
        "efficiency": machine.get("efficiency"),
    }


class StatusTransitionEngine:
    """
    Validates a requested status change, applies its timing side effects and
    writes the batch together with exactly one status_change log entry.
    """

    def __init__(self, store: AuditLogStore = audit_store):
        self.store = store

    def transition(
        self,
        db: Session,
        company_id: str,
        batch_id: int,
        requested_status: str,
        reason: Optional[str],
        actor: Optional[Actor],
        notes: Optional[str] = None,
        request_context: Optional[RequestContext] = None,
        expected_version: Optional[int] = None,
        source: str = "api",
    ) -> Batch:
        try:
            return self._transition(db, company_id, batch_id, requested_status, reason, actor,
                                    notes, request_context, expected_version, source)
        except ValidationError:
            transition_failures_total.labels(reason="validation").inc()
            raise
        except NotFoundError:
            transition_failures_total.labels(reason="not_found").inc()
            raise
        except ConflictError:
            transition_failures_total.labels(reason="conflict").inc()
            raise
        except PersistenceError:
            transition_failures_total.labels(reason="persistence").inc()
            raise

    def _transition(self, db, company_id, batch_id, requested_status, reason, actor,
                    notes, request_context, expected_version, source) -> Batch:
        if requested_status not in BatchStatus.values():
            raise ValidationError.for_field(
                "status",
                f"Invalid status '{requested_status}'. Must be one of {BatchStatus.values()}.",
            )
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError.for_field("changeReason", "A reason is required to change status")
        if actor is None or not actor.user_id:
            raise ValidationError.for_field("actor", "An authenticated actor is required to change status")
        notes = (notes or "").strip() or None

        batch = batch_crud.get_batch(db, company_id, batch_id)
        if expected_version is not None and expected_version != batch.version:
            raise ConflictError(
                f"Batch {batch.batch_number} is at version {batch.version}, not {expected_version}"
            )

        from_status = batch.status
        if requested_status == from_status:
            raise ValidationError.for_field("status", f"Batch is already '{from_status}'")

        now = utcnow()
        duration = minutes_between(batch.status_changed_at or batch.created_at, now)
        for key, value in timing_effects(batch, from_status, requested_status, now).items():
            setattr(batch, key, value)
        batch.status = requested_status
        batch.status_changed_at = now
        batch.updated_by = actor.user_id
        batch.updated_by_name = actor.name
        batch.updated_at = now
        if notes:
            stamped = f"[{iso(now)}] {notes}"
            batch.notes = f"{batch.notes}\n{stamped}" if batch.notes else stamped

        try:
            entry = self.store.record_status_change(
                db, company_id,
                entity_type=ENTITY_TYPE,
                entity_id=batch.id,
                entity_name=batch.batch_number,
                actor=actor,
                from_status=from_status,
                to_status=requested_status,
                change_reason=reason,
                notes=notes,
                duration=duration,
                production_stage=ProductionStage.PRE_PROCESSING.value,
                production_data=production_data(batch),
                request_context=request_context,
                metadata={"source": source, "action": "transition"},
                commit=False,
            )
            batch.status_change_log = [*(batch.status_change_log or []), status_summary(entry)]
            db.commit()
        except StaleDataError:
            db.rollback()
            raise ConflictError(f"Batch {batch_id} was changed by another request; reload and retry")
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception(
                "status transition failed batch=%s company=%s actor=%s %s->%s",
                batch_id, company_id, actor.user_id, from_status, requested_status,
            )
            raise PersistenceError("Failed to update pre-processing batch status") from e

        db.refresh(batch)
        self.store.published(entry)
        status_transitions_total.labels(from_status=from_status, to_status=requested_status).inc()
        logger.info(
            "batch %s (id=%s) status %s -> %s by %s request=%s",
            batch.batch_number, batch.id, from_status, requested_status, actor.user_id,
            request_context.request_id if request_context else None,
        )
        return batch


transition_engine = StatusTransitionEngine()
