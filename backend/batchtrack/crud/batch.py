from __future__ import annotations
import enum
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from batchtrack.core.config import setting
from batchtrack.core.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from batchtrack.metrics import batches_created_total
from batchtrack.models.batch import Batch, BatchStatus, ENTITY_TYPE
from batchtrack.models.production_log import LogType
from batchtrack.schemas import Actor, RequestContext
from batchtrack.services.audit import audit_store
from batchtrack.utils.clock import utcnow

logger = logging.getLogger(__name__)

# JSON columns that must never hold NULL
_LIST_FIELDS = ("input_materials", "tags")
_DICT_FIELDS = ("process_parameters", "machine_assignment", "quality_control", "costs")


def _data_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, (datetime, date)):
        return "date"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "string"


def _jsonable(value: Any) -> Any:
    return value.isoformat() if isinstance(value, (datetime, date)) else value


def _plain(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v.value if isinstance(v, enum.Enum) else v) for k, v in data.items()}


def _with_costs_total(costs: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    costs = dict(costs or {})
    if costs and costs.get("total_cost") is None:
        costs["total_cost"] = sum(
            float(costs.get(k) or 0)
            for k in ("chemical_cost", "labor_cost", "machine_cost", "utility_cost", "waste_disposal_cost")
        )
    return costs


class BatchCRUD:
    def generate_batch_number(self, db: Session, today: Optional[date] = None) -> str:
        """<PREFIX>-<YYYYMMDD>-<seq>, seq counting up per day from 001."""
        today = today or utcnow().date()
        prefix = f"{setting('BATCH_NUMBER_PREFIX')}-{today.strftime('%Y%m%d')}-"
        numbers = [
            n for (n,) in db.query(Batch.batch_number).filter(Batch.batch_number.like(f"{prefix}%")).all()
        ]
        seq = 0
        for n in numbers:
            tail = n[len(prefix):]
            if tail.isdigit():
                seq = max(seq, int(tail))
        return f"{prefix}{seq + 1:03d}"

    def get_batch(self, db: Session, company_id: str, batch_id: int) -> Batch:
        batch = (
            db.query(Batch)
            .filter(Batch.id == batch_id, Batch.company_id == company_id)
            .first()
        )
        if not batch:
            raise NotFoundError("Pre-processing batch not found")
        return batch

    def create_batch(self, db: Session, company_id: str, data: Dict[str, Any], actor: Actor,
                     request_context: Optional[RequestContext] = None) -> Batch:
        data = _plain(data)
        data.pop("status", None)
        data.pop("progress", None)
        supplied = data.pop("batch_number", None)
        for key in _LIST_FIELDS:
            data[key] = data.get(key) or []
        for key in _DICT_FIELDS:
            data[key] = data.get(key) or {}
        data["costs"] = _with_costs_total(data["costs"])

        # a generated number can race another create for the same day; regenerate once
        attempts = 1 if supplied else 2
        for attempt in range(1, attempts + 1):
            batch_number = supplied or self.generate_batch_number(db)
            try:
                batch, entry = self._insert(db, company_id, data, batch_number, actor, request_context)
                break
            except IntegrityError:
                db.rollback()
                if attempt == attempts:
                    raise ValidationError.for_field("batchNumber", f"Batch number '{batch_number}' already exists")
                logger.warning("generated batch number %s already taken, regenerating", batch_number)
            except SQLAlchemyError as e:
                db.rollback()
                logger.exception("failed to create batch for company=%s actor=%s", company_id, actor.user_id)
                raise PersistenceError("Failed to create pre-processing batch") from e
        db.refresh(batch)
        audit_store.published(entry)
        batches_created_total.inc()
        logger.info("created batch %s (id=%s company=%s)", batch.batch_number, batch.id, company_id)
        return batch

    def _insert(self, db: Session, company_id: str, data: Dict[str, Any], batch_number: str, actor: Actor,
                request_context: Optional[RequestContext]):
        now = utcnow()
        batch = Batch(
            **data,
            company_id=company_id,
            batch_number=batch_number,
            status=BatchStatus.PENDING.value,
            progress=0,
            status_change_log=[],
            status_changed_at=now,
            created_by=actor.user_id,
            created_by_name=actor.name,
            updated_by=actor.user_id,
            updated_by_name=actor.name,
            created_at=now,
            updated_at=now,
        )
        db.add(batch)
        db.flush()
        entry = audit_store.record_event(
            db, company_id,
            log_type=LogType.STAGE_CHANGE.value,
            action="batch_created",
            entity_type=ENTITY_TYPE,
            entity_id=batch.id,
            entity_name=batch.batch_number,
            actor=actor,
            production_data={"batch_number": batch.batch_number, "process_type": batch.process_type},
            request_context=request_context,
            commit=False,
        )
        db.commit()
        return batch, entry

    def update_batch(self, db: Session, company_id: str, batch_id: int, data: Dict[str, Any], actor: Actor,
                     request_context: Optional[RequestContext] = None) -> Batch:
        if "status" in data:
            raise ValidationError.for_field("status", "Status can only change through the status endpoint")
        if "progress" in data:
            raise ValidationError.for_field("progress", "Progress has its own endpoint")
        data = _plain(data)
        batch = self.get_batch(db, company_id, batch_id)

        if "costs" in data:
            data = {**data, "costs": _with_costs_total(data["costs"])}
        changes: List[Dict[str, Any]] = []
        for key, value in data.items():
            if not hasattr(Batch, key) or key in ("id", "company_id", "batch_number", "version"):
                raise ValidationError.for_field(key, f"Field '{key}' cannot be updated")
            if value is None and (key in _LIST_FIELDS or key in _DICT_FIELDS):
                value = [] if key in _LIST_FIELDS else {}
            old = getattr(batch, key)
            if old == value:
                continue
            changes.append({
                "field": key,
                "old_value": _jsonable(old),
                "new_value": _jsonable(value),
                "data_type": _data_type(value),
            })
            setattr(batch, key, value)

        if not changes:
            return batch

        batch.updated_by = actor.user_id
        batch.updated_by_name = actor.name
        batch.updated_at = utcnow()
        try:
            entry = audit_store.record_event(
                db, company_id,
                log_type=LogType.STAGE_CHANGE.value,
                action="batch_updated",
                entity_type=ENTITY_TYPE,
                entity_id=batch.id,
                entity_name=batch.batch_number,
                actor=actor,
                changes=changes,
                request_context=request_context,
                commit=False,
            )
            db.commit()
        except StaleDataError:
            db.rollback()
            raise ConflictError()
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception("failed to update batch id=%s company=%s", batch_id, company_id)
            raise PersistenceError("Failed to update pre-processing batch") from e
        db.refresh(batch)
        audit_store.published(entry)
        logger.info("updated batch %s fields=%s", batch.batch_number, [c["field"] for c in changes])
        return batch

    def update_progress(self, db: Session, company_id: str, batch_id: int, progress: int, actor: Actor) -> Batch:
        batch = self.get_batch(db, company_id, batch_id)
        progress = min(100, max(0, int(progress)))
        if batch.status == BatchStatus.COMPLETED.value and progress != 100:
            raise ValidationError.for_field("progress", "A completed batch stays at 100% progress")
        batch.progress = progress
        batch.updated_by = actor.user_id
        batch.updated_by_name = actor.name
        batch.updated_at = utcnow()
        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            raise ConflictError()
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception("failed to update progress for batch id=%s", batch_id)
            raise PersistenceError("Failed to update pre-processing batch progress") from e
        db.refresh(batch)
        logger.info("batch %s progress=%s by %s", batch.batch_number, progress, actor.user_id)
        return batch

    def delete_batch(self, db: Session, company_id: str, batch_id: int, actor: Actor,
                     request_context: Optional[RequestContext] = None) -> None:
        batch = self.get_batch(db, company_id, batch_id)
        batch_number = batch.batch_number
        try:
            entry = audit_store.record_event(
                db, company_id,
                log_type=LogType.STAGE_CHANGE.value,
                action="batch_deleted",
                entity_type=ENTITY_TYPE,
                entity_id=batch.id,
                entity_name=batch_number,
                actor=actor,
                production_data={"batch_number": batch_number, "status": batch.status},
                request_context=request_context,
                severity="high",
                commit=False,
            )
            db.delete(batch)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception("failed to delete batch id=%s company=%s", batch_id, company_id)
            raise PersistenceError("Failed to delete pre-processing batch") from e
        audit_store.published(entry)
        logger.info("deleted batch %s (id=%s) by %s", batch_number, batch_id, actor.user_id)


# Create instance
batch_crud = BatchCRUD()
