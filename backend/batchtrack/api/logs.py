from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from batchtrack.api.common import MANAGE_ROLES, READ_ROLES, ok
from batchtrack.core.database import get_db
from batchtrack.deps.auth import CurrentUser, get_company_id, require_role
from batchtrack.schemas import LogIdsIn, LogOut, dump
from batchtrack.services.audit import audit_store

router = APIRouter(prefix="/production-logs", tags=["production-logs"])


@router.get("/recent")
def recent_activity(
    hours: int = Query(24, ge=1, le=24 * 365),
    log_type: Optional[str] = Query(None, alias="logType"),
    stage: Optional[str] = None,
    severity: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*READ_ROLES)),
):
    rows = audit_store.query_recent(db, company_id, hours=hours, log_type=log_type, stage=stage,
                                    severity=severity, limit=limit)
    return ok([dump(LogOut.model_validate(r)) for r in rows])


@router.get("/stage/{stage}")
def logs_by_stage(
    stage: str,
    log_type: Optional[str] = Query(None, alias="logType"),
    batch_number: Optional[str] = Query(None, alias="batchNumber"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    limit: int = Query(50, ge=1, le=500),
    skip: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*READ_ROLES)),
):
    rows = audit_store.query_by_stage(db, company_id, stage, log_type=log_type, batch_number=batch_number,
                                      start=start_date, end=end_date, limit=limit, skip=skip)
    return ok([dump(LogOut.model_validate(r)) for r in rows])


@router.get("/batch/{batch_number}")
def logs_by_batch(
    batch_number: str,
    log_type: Optional[str] = Query(None, alias="logType"),
    stage: Optional[str] = None,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    limit: int = Query(100, ge=1, le=500),
    skip: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*READ_ROLES)),
):
    rows = audit_store.query_by_batch(db, company_id, batch_number, log_type=log_type, stage=stage,
                                      start=start_date, end=end_date, limit=limit, skip=skip)
    return ok([dump(LogOut.model_validate(r)) for r in rows])


@router.get("/statistics")
def log_statistics(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    stage: Optional[str] = None,
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*MANAGE_ROLES)),
):
    return ok(audit_store.statistics(db, company_id, start=start_date, end=end_date,
                                     stage=stage, user_id=user_id))


@router.post("/read")
def mark_logs_read(
    body: LogIdsIn,
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*READ_ROLES)),
):
    n = audit_store.mark_read(db, company_id, body.ids)
    return ok({"updated": n}, "Production logs marked as read")


@router.post("/archive")
def archive_logs(
    body: LogIdsIn,
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role(*MANAGE_ROLES)),
):
    n = audit_store.archive(db, company_id, body.ids)
    return ok({"archived": n}, "Production logs archived")


@router.post("/archive-old")
def archive_old_logs(
    days: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    company_id: str = Depends(get_company_id),
    user: CurrentUser = Depends(require_role("admin")),
):
    n = audit_store.archive_older_than(db, company_id, days)
    return ok({"archived": n}, "Old production logs archived")


@router.post("/purge")
def purge_expired_logs(
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(require_role("super_admin")),
):
    n = audit_store.purge_expired(db)
    return ok({"deleted": n}, "Expired production logs purged")
