import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from batchtrack.core.database import Database
from batchtrack.core.security import create_access_token
from batchtrack.crud.batch import batch_crud
from batchtrack.main import create_app
from batchtrack.schemas import Actor
from batchtrack.utils import audit_sink

COMPANY = "acme-textiles"
OTHER_COMPANY = "rival-mills"


def _memory_db() -> Database:
    return Database("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)


@pytest.fixture(autouse=True)
def audit_dir(tmp_path, monkeypatch):
    # keep the JSONL mirror out of the source tree
    monkeypatch.setattr(audit_sink, "AUDIT_DIR", tmp_path / "audit")
    return tmp_path / "audit"


@pytest.fixture
def database():
    database = _memory_db().open()
    yield database
    database.close()


@pytest.fixture
def db(database):
    with database.session() as session:
        yield session


@pytest.fixture
def actor():
    return Actor(user_id="u-17", name="Ravi Operator", email="ravi@acme.test", role="operator")


@pytest.fixture
def make_batch(db, actor):
    def _make(company_id=COMPANY, **overrides):
        data = {
            "process_type": "bleaching",
            "process_name": "Peroxide bleach",
            "input_materials": [{"fabric_type": "cotton", "color": "grey", "quantity": 500, "unit": "meters"}],
            "machine_assignment": {"machine_name": "J-Box 2", "efficiency": 80},
            "costs": {"chemical_cost": 100, "labor_cost": 50},
        }
        data.update(overrides)
        return batch_crud.create_batch(db, company_id, data, actor)
    return _make


@pytest.fixture
def client():
    app = create_app(database=_memory_db())
    with TestClient(app) as c:
        yield c


def auth_headers(role="operator", company_id=COMPANY, user_id="u-17", **extra):
    token = create_access_token(user_id, role, name="Test User", email="test@acme.test", company_id=company_id)
    headers = {"Authorization": f"Bearer {token}"}
    headers.update(extra)
    return headers
