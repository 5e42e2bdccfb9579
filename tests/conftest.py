import os

os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

import base64
import io

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from datadrive.app import create_app
from datadrive.db import Base, get_db, init_db, make_engine
from datadrive.deps import get_media_store
from datadrive.models import User
from datadrive.security import create_access_token
from datadrive.services.media import LocalObjectStore

BUCKET = "test-photos"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


@pytest.fixture()
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(tmp_path):
    return LocalObjectStore(tmp_path / "media")


@pytest.fixture()
def admin(db):
    user = User(email="admin@example.com", first_name="Ada", last_name="Admin", role="admin")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def member(db):
    user = User(email="jane@example.com", first_name="Jane", last_name="Doe", role="user")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def other_member(db):
    user = User(email="sam@example.com", first_name="Sam", last_name="Roe", role="User")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": user.id, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def client(db, store):
    app = create_app()

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_media_store] = lambda: store
    with TestClient(app) as c:
        yield c


def b64(data: bytes = PNG_BYTES) -> str:
    return base64.b64encode(data).decode()


def csv_bytes(text: str) -> bytes:
    return text.encode("utf-8")


def xlsx_bytes(rows, fills=None) -> bytes:
    """
    ``rows`` is a list of lists (first one is the header); ``fills`` maps
    (row_idx, col_idx) -> "RRGGBB" using 1-based sheet coordinates.
    """
    from openpyxl.styles import PatternFill

    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    for (r, c), rgb in (fills or {}).items():
        ws.cell(row=r, column=c).fill = PatternFill(fill_type="solid", start_color=rgb, end_color=rgb)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


class FailingCopyStore(LocalObjectStore):
    """Raises on the n-th copy; every other call behaves normally."""

    def __init__(self, root, fail_on):
        super().__init__(root)
        self.fail_on = fail_on
        self.copies = 0

    def copy(self, bucket, src, dst):
        self.copies += 1
        if self.copies == self.fail_on:
            raise OSError("simulated copy failure")
        super().copy(bucket, src, dst)


class FailingWriteStore(LocalObjectStore):
    def __init__(self, root, fail_on):
        super().__init__(root)
        self.fail_on = fail_on
        self.writes = 0

    def write(self, bucket, name, data):
        self.writes += 1
        if self.writes == self.fail_on:
            raise OSError("disk full")
        return super().write(bucket, name, data)
