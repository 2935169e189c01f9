import os
os.environ["TESTING"] = "1"
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
import pytest
from fastapi.testclient import TestClient

import uuid

from microvault.main import create_app
from microvault.database import Store

STRONG_PASSWORD = "Culture!Stock42"


@pytest.fixture
def store(tmp_path):
    s = Store(f"sqlite:///{tmp_path / 'registry.db'}")
    s.create_schema()
    yield s
    s.close()


@pytest.fixture
def client(store):
    with TestClient(create_app(store)) as c:
        yield c


@pytest.fixture
def db(store):
    session = store.session()
    try:
        yield session
    finally:
        session.close()


def bootstrap_admin(client, *, email: str = "admin@example.com", password: str = STRONG_PASSWORD):
    """
    microvault: purpose: create the one bootstrap administrator for a fresh store
    microvault: outputs: tuple(headers dict, user dict)
    """

    resp = client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "full_name": "Lab Admin"},
    )
    assert resp.status_code == 201, resp.text
    data = resp.json()
    return {"Authorization": f"Bearer {data['access_token']}"}, data["user"]


def login_headers(client, email: str, password: str = STRONG_PASSWORD):
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def provision_user(
    client,
    admin_headers,
    *,
    role: str = "researcher",
    clearance: int | None = 2,
    email: str | None = None,
):
    """
    microvault: purpose: create an account through the admin endpoint and log it in
    microvault: depends_on: bootstrap_admin
    microvault: outputs: tuple(headers dict, user dict)
    """

    email = email or f"{role}-{uuid.uuid4().hex[:8]}@example.com"
    payload = {
        "email": email,
        "password": STRONG_PASSWORD,
        "full_name": f"Test {role.title()}",
        "role": role,
    }
    if clearance is not None:
        payload["biosafety_clearance"] = clearance
    resp = client.post("/api/auth/admin/create-user", json=payload, headers=admin_headers)
    assert resp.status_code == 201, resp.text
    return login_headers(client, email), resp.json()


def strain_payload(**overrides):
    payload = {
        "strain_code": f"MV-{uuid.uuid4().hex[:6].upper()}",
        "microorganism_type": "BAKTERI",
        "genus_species": "Bacillus subtilis",
        "genus": "Bacillus",
        "species": "subtilis",
        "sample_type": "Tanah",
        "origin_location": "Bogor rice field",
        "biosafety_level": 1,
    }
    payload.update(overrides)
    return payload


def create_strain(client, headers, **overrides):
    resp = client.post("/api/strains", json=strain_payload(**overrides), headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()
