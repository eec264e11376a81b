from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from batchtrack.core.config import setting
from batchtrack.core.errors import ValidationError
from batchtrack.metrics import production_log_entries_total
from batchtrack.models.batch import Batch, ENTITY_TYPE
from batchtrack.models.production_log import (
    ProductionLog, LogType, ProductionStage, SEVERITIES, PRIORITIES,
)
from batchtrack.schemas import Actor, RequestContext
from batchtrack.utils.audit_sink import write_event
from batchtrack.utils.clock import utcnow, iso, to_naive_utc

logger = logging.getLogger(__name__)


def serialize_log(row: ProductionLog) -> Dict[str, Any]:
    return {
        "id": row.id,
        "company_id": row.company_id,
        "log_type": row.log_type,
        "production_stage": row.production_stage,
        "action": row.action,
        "entity_type": row.entity_type,
        "entity_id": row.entity_id,
        "entity_name": row.entity_name,
        "user_id": row.user_id,
        "user_name": row.user_name,
        "user_email": row.user_email,
        "user_role": row.user_role,
        "status_change": row.status_change,
        "changes": row.changes,
        "request_info": row.request_info or {},
        "severity": row.severity,
        "timestamp": iso(row.timestamp),
    }


def status_summary(row: ProductionLog) -> Dict[str, Any]:
    """The embedded batch.status_change_log item derived from a store entry."""
    sc = row.status_change or {}
    req = row.request_info or {}
    return {
        "log_id": row.id,
        "from_status": sc.get("from_status"),
        "to_status": sc.get("to_status"),
        "changed_by": row.user_id,
        "changed_by_name": row.user_name,
        "changed_by_email": row.user_email,
        "change_date": iso(row.timestamp),
        "change_reason": sc.get("change_reason"),
        "notes": sc.get("notes"),
        "ip_address": req.get("ip_address"),
        "user_agent": req.get("user_agent"),
        "session_id": req.get("session_id"),
    }


class AuditLogStore:
    """Append-only production log. Entries are written once and only ever flagged read/archived."""

    # ---------------- writes ----------------

    def append(
        self,
        db: Session,
        company_id: str,
        *,
        log_type: str,
        production_stage: str,
        action: str,
        entity_type: str,
        entity_id: Any,
        actor: Actor,
        entity_name: Optional[str] = None,
        status_change: Optional[Dict[str, Any]] = None,
        changes: Optional[List[Dict[str, Any]]] = None,
        production_data: Optional[Dict[str, Any]] = None,
        request_context: Optional[RequestContext] = None,
        metadata: Optional[Dict[str, Any]] = None,
        severity: str = "medium",
        priority: str = "medium",
        commit: bool = True,
    ) -> ProductionLog:
        """
        Add one entry. With commit=False the row is only flushed so the caller
        can commit it together with its own writes, then call published().
        """
        if log_type not in LogType.values():
            raise ValidationError.for_field("log_type", f"Invalid log type '{log_type}'")
        if production_stage not in ProductionStage.values():
            raise ValidationError.for_field("production_stage", f"Invalid production stage '{production_stage}'")
        if severity not in SEVERITIES:
            raise ValidationError.for_field("severity", f"Invalid severity '{severity}'")
        if priority not in PRIORITIES:
            raise ValidationError.for_field("priority", f"Invalid priority '{priority}'")
        if log_type == LogType.STATUS_CHANGE.value and not status_change:
            raise ValidationError.for_field("status_change", "status_change entries need from/to details")

        now = utcnow()
        row = ProductionLog(
            company_id=company_id,
            log_type=log_type,
            production_stage=production_stage,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            entity_name=entity_name,
            user_id=actor.user_id,
            user_name=actor.name,
            user_email=actor.email,
            user_role=actor.role,
            status_change=status_change if log_type == LogType.STATUS_CHANGE.value else None,
            changes=changes,
            production_data=production_data or {},
            request_info=(request_context or RequestContext()).model_dump(),
            log_metadata=metadata or {},
            severity=severity,
            priority=priority,
            timestamp=now,
            expires_at=now + timedelta(days=setting("AUDIT_RETENTION_DAYS")),
        )
        db.add(row)
        if commit:
            db.commit()
            db.refresh(row)
            self.published(row)
        else:
            db.flush()
        return row

    def published(self, row: ProductionLog) -> None:
        """Post-commit bookkeeping: file mirror and counters."""
        production_log_entries_total.labels(log_type=row.log_type).inc()
        write_event(serialize_log(row))

    def record_status_change(
        self,
        db: Session,
        company_id: str,
        *,
        entity_type: str,
        entity_id: Any,
        entity_name: Optional[str],
        actor: Actor,
        from_status: str,
        to_status: str,
        change_reason: str,
        notes: Optional[str] = None,
        duration: Optional[int] = None,
        production_stage: str = ProductionStage.PRE_PROCESSING.value,
        production_data: Optional[Dict[str, Any]] = None,
        request_context: Optional[RequestContext] = None,
        metadata: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> ProductionLog:
        return self.append(
            db,
            company_id,
            log_type=LogType.STATUS_CHANGE.value,
            production_stage=production_stage,
            action="status_changed",
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            actor=actor,
            status_change={
                "from_status": from_status,
                "to_status": to_status,
                "change_reason": change_reason,
                "notes": notes,
                "duration": duration,
            },
            production_data=production_data,
            request_context=request_context,
            metadata=metadata,
            commit=commit,
        )

    def record_event(self, db: Session, company_id: str, *, log_type: str, action: str,
                     entity_type: str, entity_id: Any, actor: Actor, **kwargs: Any) -> ProductionLog:
        kwargs.setdefault("production_stage", ProductionStage.PRE_PROCESSING.value)
        return self.append(db, company_id, log_type=log_type, action=action,
                           entity_type=entity_type, entity_id=entity_id, actor=actor, **kwargs)

    # ---------------- reads ----------------

    def _base(self, db: Session, company_id: str, include_archived: bool = False) -> Query:
        q = db.query(ProductionLog).filter(ProductionLog.company_id == company_id)
        if not include_archived:
            q = q.filter(ProductionLog.is_archived.is_(False))
        return q

    @staticmethod
    def _window(q: Query, start: Optional[datetime], end: Optional[datetime]) -> Query:
        start, end = to_naive_utc(start), to_naive_utc(end)
        if start:
            q = q.filter(ProductionLog.timestamp >= start)
        if end:
            q = q.filter(ProductionLog.timestamp <= end)
        return q

    @staticmethod
    def _newest_first(q: Query) -> Query:
        return q.order_by(ProductionLog.timestamp.desc(), ProductionLog.id.desc())

    def get(self, db: Session, company_id: str, log_id: int) -> Optional[ProductionLog]:
        return self._base(db, company_id, include_archived=True).filter(ProductionLog.id == log_id).first()

    def query_by_entity(self, db: Session, company_id: str, entity_type: str, entity_id: Any,
                        log_type: Optional[str] = None, include_archived: bool = False,
                        limit: int = 100, skip: int = 0) -> List[ProductionLog]:
        q = self._base(db, company_id, include_archived).filter(
            ProductionLog.entity_type == entity_type,
            ProductionLog.entity_id == str(entity_id),
        )
        if log_type:
            q = q.filter(ProductionLog.log_type == log_type)
        return self._newest_first(q).offset(skip).limit(limit).all()

    def query_by_batch(self, db: Session, company_id: str, batch_number: str,
                       log_type: Optional[str] = None, stage: Optional[str] = None,
                       start: Optional[datetime] = None, end: Optional[datetime] = None,
                       limit: int = 100, skip: int = 0) -> List[ProductionLog]:
        q = self._base(db, company_id).filter(ProductionLog.entity_name == batch_number)
        if log_type:
            q = q.filter(ProductionLog.log_type == log_type)
        if stage:
            q = q.filter(ProductionLog.production_stage == stage)
        q = self._window(q, start, end)
        return self._newest_first(q).offset(skip).limit(limit).all()

    def query_by_stage(self, db: Session, company_id: str, stage: str,
                       log_type: Optional[str] = None, batch_number: Optional[str] = None,
                       start: Optional[datetime] = None, end: Optional[datetime] = None,
                       limit: int = 50, skip: int = 0) -> List[ProductionLog]:
        if stage not in ProductionStage.values():
            raise ValidationError.for_field("stage", f"Invalid production stage '{stage}'")
        q = self._base(db, company_id).filter(ProductionLog.production_stage == stage)
        if log_type:
            q = q.filter(ProductionLog.log_type == log_type)
        if batch_number:
            q = q.filter(ProductionLog.entity_name == batch_number)
        q = self._window(q, start, end)
        return self._newest_first(q).offset(skip).limit(limit).all()

    def query_recent(self, db: Session, company_id: str, hours: Optional[int] = 24,
                     log_type: Optional[str] = None, stage: Optional[str] = None,
                     severity: Optional[str] = None, limit: int = 100) -> List[ProductionLog]:
        q = self._base(db, company_id)
        if log_type:
            q = q.filter(ProductionLog.log_type == log_type)
        if stage:
            q = q.filter(ProductionLog.production_stage == stage)
        if severity:
            q = q.filter(ProductionLog.severity == severity)
        if hours:
            q = q.filter(ProductionLog.timestamp >= utcnow() - timedelta(hours=hours))
        return self._newest_first(q).limit(limit).all()

    def statistics(self, db: Session, company_id: str, start: Optional[datetime] = None,
                   end: Optional[datetime] = None, stage: Optional[str] = None,
                   user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        q = db.query(
            ProductionLog.log_type,
            ProductionLog.production_stage,
            ProductionLog.action,
            func.count(ProductionLog.id),
            func.count(func.distinct(ProductionLog.user_id)),
            func.count(func.distinct(ProductionLog.entity_name)),
            func.max(ProductionLog.timestamp),
        ).filter(ProductionLog.company_id == company_id, ProductionLog.is_archived.is_(False))
        q = self._window(q, start, end)
        if stage:
            q = q.filter(ProductionLog.production_stage == stage)
        if user_id:
            q = q.filter(ProductionLog.user_id == user_id)
        rows = q.group_by(ProductionLog.log_type, ProductionLog.production_stage, ProductionLog.action).all()

        by_type: Dict[str, Dict[str, Any]] = {}
        for log_type, stg, action, count, users, batches, last in rows:
            bucket = by_type.setdefault(log_type, {"log_type": log_type, "total_count": 0, "stages": []})
            bucket["total_count"] += int(count)
            bucket["stages"].append({
                "stage": stg,
                "action": action,
                "count": int(count),
                "unique_users": int(users),
                "unique_batches": int(batches),
                "last_activity": iso(last),
            })
        return sorted(by_type.values(), key=lambda b: b["log_type"])

    # ---------------- flags & retention ----------------

    def _flag(self, db: Session, company_id: str, ids: Sequence[int], **values: bool) -> int:
        if not ids:
            return 0
        n = (
            db.query(ProductionLog)
            .filter(ProductionLog.company_id == company_id, ProductionLog.id.in_(list(ids)))
            .update(values, synchronize_session=False)
        )
        db.commit()
        return n

    def mark_read(self, db: Session, company_id: str, ids: Sequence[int]) -> int:
        n = self._flag(db, company_id, ids, is_read=True)
        logger.info("marked %s production logs read (company=%s)", n, company_id)
        return n

    def archive(self, db: Session, company_id: str, ids: Sequence[int]) -> int:
        n = self._flag(db, company_id, ids, is_archived=True)
        logger.info("archived %s production logs (company=%s)", n, company_id)
        return n

    def archive_older_than(self, db: Session, company_id: str, days: Optional[int] = None) -> int:
        days = days if days is not None else setting("AUDIT_ARCHIVE_DAYS")
        cutoff = utcnow() - timedelta(days=days)
        n = (
            db.query(ProductionLog)
            .filter(
                ProductionLog.company_id == company_id,
                ProductionLog.timestamp < cutoff,
                ProductionLog.is_archived.is_(False),
            )
            .update({"is_archived": True}, synchronize_session=False)
        )
        db.commit()
        logger.info("archived %s production logs older than %s days (company=%s)", n, days, company_id)
        return n

    def purge_expired(self, db: Session, now: Optional[datetime] = None) -> int:
        """Retention cleanup across all tenants; deletes rows past expires_at."""
        now = now or utcnow()
        n = (
            db.query(ProductionLog)
            .filter(ProductionLog.expires_at.isnot(None), ProductionLog.expires_at < now)
            .delete(synchronize_session=False)
        )
        db.commit()
        logger.info("purged %s expired production logs", n)
        return n

    # ---------------- projection ----------------

    def rebuild_status_change_log(self, db: Session, batch: Batch, commit: bool = True) -> List[Dict[str, Any]]:
        rows = (
            self._base(db, batch.company_id, include_archived=True)
            .filter(
                ProductionLog.entity_type == ENTITY_TYPE,
                ProductionLog.entity_id == str(batch.id),
                ProductionLog.log_type == LogType.STATUS_CHANGE.value,
            )
            .order_by(ProductionLog.timestamp.asc(), ProductionLog.id.asc())
            .all()
        )
        batch.status_change_log = [status_summary(r) for r in rows]
        if commit:
            db.commit()
            db.refresh(batch)
        return batch.status_change_log


audit_store = AuditLogStore()
