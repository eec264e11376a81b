import json
from datetime import datetime, timedelta, timezone

import pytest

from batchtrack.core.errors import AuditWriteError, ValidationError
from batchtrack.models.production_log import ProductionLog
from batchtrack.services.audit import audit_store
from batchtrack.services.transitions import transition_engine
from batchtrack.utils.clock import utcnow

from conftest import COMPANY, OTHER_COMPANY


def _event(db, actor, company_id=COMPANY, **kwargs):
    kwargs.setdefault("log_type", "machine_start")
    kwargs.setdefault("action", "machine_started")
    return audit_store.record_event(db, company_id, entity_type="PreProcessing", entity_id=1,
                                    entity_name="PRE-20261019-001", actor=actor, **kwargs)


def test_append_sets_retention_and_actor_snapshot(db, actor):
    row = _event(db, actor)
    assert row.id is not None
    assert row.user_name == actor.name
    assert row.user_role == "operator"
    assert (row.expires_at - row.timestamp).days == 365
    assert row.is_read is False and row.is_archived is False


def test_append_rejects_unknown_enums(db, actor):
    with pytest.raises(ValidationError):
        _event(db, actor, log_type="coffee_break")
    with pytest.raises(ValidationError):
        _event(db, actor, production_stage="weaving")
    with pytest.raises(ValidationError):
        _event(db, actor, severity="meh")


def test_status_change_entries_need_details(db, actor):
    with pytest.raises(ValidationError):
        _event(db, actor, log_type="status_change")


def test_entries_are_append_only(db, actor):
    row = _event(db, actor)
    row.action = "tampered"
    with pytest.raises(AuditWriteError):
        db.commit()
    db.rollback()
    assert audit_store.get(db, COMPANY, row.id).action == "machine_started"


def test_read_and_archive_flags_may_change(db, actor):
    first = _event(db, actor)
    second = _event(db, actor)
    assert audit_store.mark_read(db, COMPANY, [first.id]) == 1
    assert audit_store.archive(db, COMPANY, [second.id]) == 1
    db.expire_all()
    assert audit_store.get(db, COMPANY, first.id).is_read is True
    assert [r.id for r in audit_store.query_recent(db, COMPANY)] == [first.id]


def test_flags_do_not_cross_tenants(db, actor):
    row = _event(db, actor, company_id=OTHER_COMPANY)
    assert audit_store.archive(db, COMPANY, [row.id]) == 0
    assert audit_store.get(db, COMPANY, row.id) is None


def test_queries_are_newest_first_and_filtered(db, actor):
    a = _event(db, actor)
    b = _event(db, actor, log_type="quality_check", action="qc_passed")
    c = _event(db, actor, production_stage="dyeing")
    _event(db, actor, company_id=OTHER_COMPANY)

    assert [r.id for r in audit_store.query_by_entity(db, COMPANY, "PreProcessing", 1)] == [c.id, b.id, a.id]
    assert [r.id for r in audit_store.query_by_batch(db, COMPANY, "PRE-20261019-001",
                                                     log_type="quality_check")] == [b.id]
    assert [r.id for r in audit_store.query_by_stage(db, COMPANY, "dyeing")] == [c.id]
    with pytest.raises(ValidationError):
        audit_store.query_by_stage(db, COMPANY, "weaving")


def test_recent_window_excludes_old_entries(db, actor):
    old = _event(db, actor)
    db.query(ProductionLog).filter(ProductionLog.id == old.id).update(
        {"timestamp": utcnow() - timedelta(hours=30)}, synchronize_session=False)
    db.commit()
    fresh = _event(db, actor)
    assert [r.id for r in audit_store.query_recent(db, COMPANY, hours=24)] == [fresh.id]
    assert len(audit_store.query_recent(db, COMPANY, hours=48)) == 2


def test_statistics_group_by_type_and_stage(db, actor):
    _event(db, actor)
    _event(db, actor)
    _event(db, actor, log_type="error", action="pump_fault", severity="high")

    stats = {b["log_type"]: b for b in audit_store.statistics(db, COMPANY)}
    assert stats["machine_start"]["total_count"] == 2
    assert stats["machine_start"]["stages"][0]["unique_users"] == 1
    assert stats["error"]["stages"][0]["action"] == "pump_fault"


def test_archive_older_than_and_purge_expired(db, actor):
    old = _event(db, actor)
    db.query(ProductionLog).filter(ProductionLog.id == old.id).update(
        {"timestamp": utcnow() - timedelta(days=120)}, synchronize_session=False)
    db.commit()
    _event(db, actor)

    assert audit_store.archive_older_than(db, COMPANY) == 1
    assert audit_store.purge_expired(db) == 0
    assert audit_store.purge_expired(db, now=utcnow() + timedelta(days=400)) == 2
    assert db.query(ProductionLog).count() == 0


def test_rebuild_status_change_log_from_store(db, make_batch, actor):
    batch = make_batch()
    transition_engine.transition(db, COMPANY, batch.id, "in_progress", "start", actor)
    transition_engine.transition(db, COMPANY, batch.id, "on_hold", "dye shortage", actor)

    batch.status_change_log = []
    db.commit()
    entries = audit_store.rebuild_status_change_log(db, batch)

    assert [(e["from_status"], e["to_status"]) for e in entries] == [
        ("pending", "in_progress"), ("in_progress", "on_hold"),
    ]
    assert batch.status_change_log[1]["change_reason"] == "dye shortage"


def test_committed_entries_are_mirrored_to_jsonl(db, actor, audit_dir):
    row = _event(db, actor)
    files = list(audit_dir.glob("*.jsonl"))
    assert len(files) == 1
    lines = [json.loads(l) for l in files[0].read_text(encoding="utf-8").splitlines()]
    assert lines[-1]["id"] == row.id
    assert lines[-1]["log_type"] == "machine_start"


def test_window_accepts_offset_dates(db, actor):
    row = _event(db, actor)
    ist = timezone(timedelta(hours=5, minutes=30))
    hour_ago = (datetime.now(timezone.utc) - timedelta(hours=1)).astimezone(ist)
    assert [r.id for r in audit_store.query_by_batch(db, COMPANY, "PRE-20261019-001", start=hour_ago)] == [row.id]
    assert audit_store.query_by_stage(db, COMPANY, "pre_processing", start=hour_ago,
                                      end=datetime(2030, 1, 1)) == [row]
    assert audit_store.query_by_batch(db, COMPANY, "PRE-20261019-001", end=hour_ago) == []
