from __future__ import annotations
import math
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from batchtrack.core.config import setting
from batchtrack.core.errors import ValidationError
from batchtrack.models.batch import Batch, BatchStatus, ProcessType
from batchtrack.utils.clock import to_naive_utc


def _round(value: Optional[float]) -> Optional[float]:
    return round(float(value), 2) if value is not None else None


class BatchQueryService:
    def _filtered(self, db: Session, company_id: str, status: Optional[str] = None,
                  process_type: Optional[str] = None, start_date: Optional[datetime] = None,
                  end_date: Optional[datetime] = None) -> Query:
        start_date, end_date = to_naive_utc(start_date), to_naive_utc(end_date)
        if status and status not in BatchStatus.values():
            raise ValidationError.for_field("status", f"Invalid status '{status}'")
        if process_type and process_type not in ProcessType.values():
            raise ValidationError.for_field("processType", f"Invalid process type '{process_type}'")
        if start_date and end_date and start_date > end_date:
            raise ValidationError.for_field("startDate", "startDate must not be after endDate")

        q = db.query(Batch).filter(Batch.company_id == company_id)
        if status:
            q = q.filter(Batch.status == status)
        if process_type:
            q = q.filter(Batch.process_type == process_type)
        if start_date:
            q = q.filter(Batch.created_at >= start_date)
        if end_date:
            q = q.filter(Batch.created_at <= end_date)
        return q

    def list(self, db: Session, company_id: str, status: Optional[str] = None,
             process_type: Optional[str] = None, start_date: Optional[datetime] = None,
             end_date: Optional[datetime] = None, page: int = 1, limit: Optional[int] = None) -> Dict[str, Any]:
        if limit is None:
            limit = setting("DEFAULT_PAGE_LIMIT")
        if page < 1:
            raise ValidationError.for_field("page", "page must be >= 1")
        if not 1 <= limit <= setting("MAX_PAGE_LIMIT"):
            raise ValidationError.for_field("limit", f"limit must be between 1 and {setting('MAX_PAGE_LIMIT')}")

        q = self._filtered(db, company_id, status, process_type, start_date, end_date)
        total = q.count()
        items = (
            q.order_by(Batch.created_at.desc(), Batch.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "items": items,
            "total_count": total,
            "page_count": math.ceil(total / limit) if total else 0,
            "page": page,
            "limit": limit,
        }

    def analytics(self, db: Session, company_id: str, start_date: Optional[datetime] = None,
                  end_date: Optional[datetime] = None) -> Dict[str, Any]:
        base = self._filtered(db, company_id, start_date=start_date, end_date=end_date)
        rows = (
            base.with_entities(
                Batch.status,
                func.count(Batch.id),
                func.avg(Batch.efficiency),
                func.avg(Batch.progress),
                func.avg(Batch.total_cost),
            )
            .group_by(Batch.status)
            .order_by(Batch.status)
            .all()
        )
        breakdown = [
            {
                "status": status,
                "count": int(count),
                "avg_efficiency": _round(eff),
                "avg_progress": _round(progress),
                "avg_cost": _round(cost),
            }
            for status, count, eff, progress, cost in rows
        ]
        counts = {b["status"]: b["count"] for b in breakdown}
        total = sum(counts.values())
        completed = counts.get(BatchStatus.COMPLETED.value, 0)
        return {
            "total_batches": total,
            "completed_batches": completed,
            "in_progress_batches": counts.get(BatchStatus.IN_PROGRESS.value, 0),
            "completion_rate": (completed / total) * 100 if total > 0 else 0,
            "status_breakdown": breakdown,
        }


batch_queries = BatchQueryService()
