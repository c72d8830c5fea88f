from __future__ import annotations

import os
import tempfile

# settings are read at import time: point them at a throwaway database first
_DB_DIR = tempfile.mkdtemp(prefix="fisioflow-tests-")
os.environ["FISIOFLOW_DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.sqlite')}"
os.environ["REDIS_URL"] = ""
os.environ["EVOLUTION_API_URL"] = ""
os.environ["EVOLUTION_API_KEY"] = ""
os.environ["ADMIN_PASSWORD"] = ""
os.environ["JWT_SECRET"] = "test-secret"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from fisioflow.db import Base, engine, init_db  # noqa: E402
from fisioflow.models import StaffRole  # noqa: E402
from fisioflow.patients import create_patient  # noqa: E402
from fisioflow.scheduling import create_staff  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def patient_id() -> str:
    return create_patient("Maria Silva", email="maria@example.com", phone="+55 11 99999-0000", cpf="123.456.789-00")


@pytest.fixture
def therapist_id() -> str:
    return create_staff("Ana Souza", "ana@example.com", role=StaffRole.PHYSIOTHERAPIST, specialty="Orthopedics")


@pytest.fixture
def client():
    from fisioflow.api_main import app

    with TestClient(app) as c:
        yield c


def auth_header(client: TestClient, username: str, password: str) -> dict[str, str]:
    r = client.post("/api/auth/login", data={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def admin_headers(client) -> dict[str, str]:
    r = client.post("/api/auth/register", json={"username": "admin", "password": "admin-pass"})
    assert r.status_code == 201, r.text
    return auth_header(client, "admin", "admin-pass")
