# tests/test_health.py
from fastapi.testclient import TestClient

from raidplan.config import get_settings
from raidplan.locks import KeyedLockRegistry
from raidplan.main import app, create_app

client = TestClient(app)


def test_health_reports_database():
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["database"] == "ok"
    assert data["app"] == get_settings().APP_NAME
    assert data["env"] == get_settings().ENV


def test_each_app_gets_its_own_lock_registry():
    other = create_app()
    assert isinstance(app.state.locks, KeyedLockRegistry)
    assert isinstance(other.state.locks, KeyedLockRegistry)
    assert other.state.locks is not app.state.locks
