from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from batchtrack.api.common import MANAGE_ROLES, READ_ROLES, WRITE_ROLES, ok
from batchtrack.core.database import get_db
from batchtrack.crud.batch import batch_crud
from batchtrack.deps.auth import CurrentUser, get_company_id, get_request_context, require_role
from batchtrack.models.batch import ENTITY_TYPE
from batchtrack.models.production_log import LogType
from batchtrack.schemas import (
    BatchCreate, BatchOut, BatchUpdate, LogOut, ProgressIn, RequestContext, StatusChangeIn, dump,
)
from batchtrack.services.audit import audit_store
from batchtrack.services.queries import batch_queries
from batchtrack.services.transitions import transition_engine

router = APIRouter(prefix="/pre-processing", tags=["pre-processing"])


@router.get("")
def list_batches(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    process_type: Optional[str] = Query(None, alias="processType"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*READ_ROLES)),
):
    result = batch_queries.list(db, company_id, status=status, process_type=process_type,
                                start_date=start_date, end_date=end_date, page=page, limit=limit)
    return ok(
        [dump(BatchOut.model_validate(b)) for b in result["items"]],
        pagination={"current": page, "pages": result["page_count"], "total": result["total_count"]},
    )


@router.get("/analytics")
def batch_analytics(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*READ_ROLES)),
):
    return ok(batch_queries.analytics(db, company_id, start_date=start_date, end_date=end_date))


@router.get("/{batch_id}")
def get_batch(
    batch_id: int,
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*READ_ROLES)),
):
    return ok(dump(BatchOut.model_validate(batch_crud.get_batch(db, company_id, batch_id))))


@router.post("", status_code=201)
def create_batch(
    body: BatchCreate,
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*WRITE_ROLES)),
    ctx: RequestContext = Depends(get_request_context),
):
    batch = batch_crud.create_batch(db, company_id, body.model_dump(), user.as_actor(), ctx)
    return ok(dump(BatchOut.model_validate(batch)), "Pre-processing batch created successfully")


@router.put("/{batch_id}")
def update_batch(
    batch_id: int,
    body: BatchUpdate,
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*WRITE_ROLES)),
    ctx: RequestContext = Depends(get_request_context),
):
    batch = batch_crud.update_batch(db, company_id, batch_id, body.model_dump(exclude_unset=True),
                                    user.as_actor(), ctx)
    return ok(dump(BatchOut.model_validate(batch)), "Pre-processing batch updated successfully")


@router.patch("/{batch_id}/status")
def update_batch_status(
    batch_id: int,
    body: StatusChangeIn,
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*WRITE_ROLES)),
    ctx: RequestContext = Depends(get_request_context),
):
    batch = transition_engine.transition(
        db, company_id, batch_id, body.status, body.change_reason, user.as_actor(),
        notes=body.notes, request_context=ctx, expected_version=body.expected_version,
    )
    before = batch.status_change_log[-1]["from_status"]
    return ok(
        dump(BatchOut.model_validate(batch)),
        f"Status updated from {before} to {batch.status} successfully",
    )


@router.patch("/{batch_id}/progress")
def update_batch_progress(
    batch_id: int,
    body: ProgressIn,
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*WRITE_ROLES)),
):
    batch = batch_crud.update_progress(db, company_id, batch_id, body.progress, user.as_actor())
    return ok(dump(BatchOut.model_validate(batch)), "Pre-processing batch progress updated successfully")


@router.delete("/{batch_id}")
def delete_batch(
    batch_id: int,
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role("admin")),
    ctx: RequestContext = Depends(get_request_context),
):
    batch_crud.delete_batch(db, company_id, batch_id, user.as_actor(), ctx)
    return ok(message="Pre-processing batch deleted successfully")


@router.get("/{batch_id}/logs")
def batch_status_history(
    batch_id: int,
    include_archived: bool = Query(False, alias="includeArchived"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*READ_ROLES)),
):
    batch = batch_crud.get_batch(db, company_id, batch_id)
    rows = audit_store.query_by_entity(
        db, company_id, ENTITY_TYPE, batch.id, log_type=LogType.STATUS_CHANGE.value,
        include_archived=include_archived, limit=limit,
    )
    return ok([dump(LogOut.model_validate(r)) for r in rows])


@router.post("/{batch_id}/logs/rebuild")
def rebuild_status_history(
    batch_id: int,
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*MANAGE_ROLES)),
):
    batch = batch_crud.get_batch(db, company_id, batch_id)
    entries = audit_store.rebuild_status_change_log(db, batch)
    return ok({"entries": len(entries)}, "Status change log rebuilt from production logs")
