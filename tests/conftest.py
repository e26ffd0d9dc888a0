from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="catalog-hub-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["STORAGE_PROVIDER"] = "local"
os.environ["STORAGE_DIR"] = str(_TMP / "storage")
os.environ["PUBLIC_BASE_URL"] = "http://testserver"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["UPLOAD_RETRY_DELAY_S"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "scripts"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from catalog_hub.auth.security import create_access_token, get_password_hash  # noqa: E402
from catalog_hub.db import Base, SessionLocal, engine  # noqa: E402
from catalog_hub.main import app  # noqa: E402
from catalog_hub.models.models import User  # noqa: E402
from catalog_hub.storage.local_provider import LocalStorageProvider  # noqa: E402
from create_admin import create_admin  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(tmp_path) -> LocalStorageProvider:
    return LocalStorageProvider(base_dir=str(tmp_path / "store"), base_url="http://testserver")


@pytest.fixture
def admin(db) -> User:
    return create_admin(db, "admin", "admin@example.com", "admin-password", "Admin")


@pytest.fixture
def staff(db) -> User:
    user = User(username="staff", email="staff@example.com", password_hash=get_password_hash("staff-password"))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_headers(admin) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(admin.id), roles=['admin'])}"}


@pytest.fixture
def staff_headers(staff) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(staff.id))}"}


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
