from datetime import date

import pytest

from batchtrack.core.errors import NotFoundError, ValidationError
from batchtrack.crud.batch import batch_crud
from batchtrack.models.production_log import ProductionLog
from batchtrack.services.transitions import transition_engine
from batchtrack.utils.clock import utcnow

from conftest import COMPANY, OTHER_COMPANY


def test_batch_numbers_count_up_per_day(db, make_batch):
    prefix = f"PRE-{utcnow():%Y%m%d}-"
    first = make_batch()
    second = make_batch(company_id=OTHER_COMPANY)
    assert first.batch_number == f"{prefix}001"
    assert second.batch_number == f"{prefix}002"
    assert batch_crud.generate_batch_number(db, today=date(2020, 1, 2)) == "PRE-20200102-001"


def test_create_defaults_and_audit_entry(db, make_batch):
    batch = make_batch()
    assert batch.status == "pending"
    assert batch.progress == 0
    assert batch.version == 1
    assert batch.costs["total_cost"] == 150
    assert batch.total_cost == 150
    assert batch.efficiency == 80
    assert batch.status_change_log == []
    created = db.query(ProductionLog).filter(ProductionLog.action == "batch_created").one()
    assert created.log_type == "stage_change"
    assert created.entity_id == str(batch.id)


def test_duplicate_batch_number_is_rejected(db, make_batch):
    make_batch(batch_number="PRE-MANUAL-1")
    with pytest.raises(ValidationError):
        make_batch(batch_number="PRE-MANUAL-1")


def test_get_is_tenant_scoped(db, make_batch):
    batch = make_batch()
    assert batch_crud.get_batch(db, COMPANY, batch.id).id == batch.id
    with pytest.raises(NotFoundError):
        batch_crud.get_batch(db, OTHER_COMPANY, batch.id)


def test_update_records_changes(db, make_batch, actor):
    batch = make_batch()
    batch = batch_crud.update_batch(db, COMPANY, batch.id,
                                    {"process_name": "Hot bleach", "setup_time": 15}, actor)
    assert batch.process_name == "Hot bleach"
    assert batch.version == 2
    entry = db.query(ProductionLog).filter(ProductionLog.action == "batch_updated").one()
    fields = {c["field"]: c for c in entry.changes}
    assert fields["process_name"]["old_value"] == "Peroxide bleach"
    assert fields["setup_time"]["data_type"] == "number"


def test_update_without_changes_writes_nothing(db, make_batch, actor):
    batch = make_batch()
    batch_crud.update_batch(db, COMPANY, batch.id, {"process_name": "Peroxide bleach"}, actor)
    assert db.query(ProductionLog).filter(ProductionLog.action == "batch_updated").count() == 0


@pytest.mark.parametrize("field", ["status", "progress"])
def test_update_rejects_status_and_progress(db, make_batch, actor, field):
    batch = make_batch()
    with pytest.raises(ValidationError):
        batch_crud.update_batch(db, COMPANY, batch.id, {field: "completed"}, actor)


def test_update_refreshes_cost_total(db, make_batch, actor):
    batch = make_batch()
    batch = batch_crud.update_batch(db, COMPANY, batch.id, {"costs": {"chemical_cost": 10, "utility_cost": 5}}, actor)
    assert batch.total_cost == 15


def test_progress_is_clamped(db, make_batch, actor):
    batch = make_batch()
    assert batch_crud.update_progress(db, COMPANY, batch.id, 140, actor).progress == 100
    assert batch_crud.update_progress(db, COMPANY, batch.id, -5, actor).progress == 0


def test_completed_batch_stays_at_full_progress(db, make_batch, actor):
    batch = make_batch()
    transition_engine.transition(db, COMPANY, batch.id, "completed", "done", actor)
    with pytest.raises(ValidationError):
        batch_crud.update_progress(db, COMPANY, batch.id, 60, actor)


def test_delete_removes_row_but_keeps_history(db, make_batch, actor):
    batch = make_batch()
    batch_id = batch.id
    batch_crud.delete_batch(db, COMPANY, batch_id, actor)
    with pytest.raises(NotFoundError):
        batch_crud.get_batch(db, COMPANY, batch_id)
    actions = {r.action for r in db.query(ProductionLog).filter(ProductionLog.entity_id == str(batch_id))}
    assert actions == {"batch_created", "batch_deleted"}


def test_generated_number_collision_regenerates(db, make_batch, monkeypatch):
    taken = make_batch().batch_number
    numbers = iter([taken, "PRE-20261019-777"])
    monkeypatch.setattr(batch_crud, "generate_batch_number", lambda db, today=None: next(numbers))

    batch = make_batch()
    assert batch.batch_number == "PRE-20261019-777"
    assert db.query(ProductionLog).filter(ProductionLog.action == "batch_created").count() == 2


def test_supplied_number_collision_is_not_retried(db, make_batch, monkeypatch):
    make_batch(batch_number="PRE-MANUAL-9")
    monkeypatch.setattr(batch_crud, "generate_batch_number",
                        lambda db, today=None: pytest.fail("supplied numbers are never regenerated"))
    with pytest.raises(ValidationError):
        make_batch(batch_number="PRE-MANUAL-9")
