"""
Pytest configuration and shared fixtures for the procurement test suite.
"""
import os
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

# Isolated database and upload directory; must be set before the app modules import
_TMP_ROOT = Path(tempfile.mkdtemp(prefix="procurement_test_"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_ROOT / 'test.db'}"
os.environ["UPLOAD_DIR"] = str(_TMP_ROOT / "uploads")
os.environ["SECRET_KEY"] = "test-secret"
os.environ["INVOICE_TAX_RATE"] = "0"
os.environ["INVOICE_DISCOUNT"] = "0"

from database import Base, SessionLocal, engine, init_db  # noqa: E402
from models.project import Project  # noqa: E402
from models.users import User  # noqa: E402
from utils.tokenJWT import create_access_token  # noqa: E402


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(_TMP_ROOT, ignore_errors=True)


@pytest.fixture
def db() -> Generator:
    """Provide a session on a freshly created schema."""
    init_db()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def session_factory(db):
    """Open extra independent sessions, e.g. to play a second client in a race."""
    opened = []

    def _open():
        s = SessionLocal()
        opened.append(s)
        return s

    yield _open
    for s in opened:
        s.close()


def _user(db, email, role, **extra) -> User:
    user = User(email=email, role=role, **extra)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin(db) -> User:
    return _user(db, "owner@example.com", "owner", first_name="Olivia")


@pytest.fixture
def vendor(db) -> User:
    return _user(db, "vendor@example.com", "vendor", company_name="Buildmart Supplies")


@pytest.fixture
def other_vendor(db) -> User:
    return _user(db, "other-vendor@example.com", "vendor", company_name="Stone & Co")


@pytest.fixture
def client_user(db) -> User:
    return _user(db, "client@example.com", "client")


@pytest.fixture
def project(db, vendor, client_user) -> Project:
    p = Project(title="Riverside Villa", client_id=client_user.id)
    p.vendors.append(vendor)
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def order_items():
    return [
        {"name": "Cement (OPC 53)", "quantity": 200, "unit": "bag", "estimated_unit_price": 190.0},
        {"name": "TMT bar 12mm", "quantity": 2, "unit": "tonne", "estimated_unit_price": 16000.0},
    ]


@pytest.fixture
def draft_order(db, admin, vendor, project, order_items):
    from services.ledger import OrderLedger
    return OrderLedger(db).create_order(
        admin, title="Foundation materials", project_id=project.id, vendor_id=vendor.id, items=order_items,
    )


@pytest.fixture
def sent_order(db, admin, draft_order):
    from services.ledger import OrderLedger
    return OrderLedger(db).send_order(admin, draft_order.id)


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}


@pytest.fixture
def headers():
    """Build bearer headers for a user."""
    return auth


@pytest.fixture
def api(db):
    """FastAPI TestClient; HTTP calls and websockets share one event loop inside the context."""
    from fastapi.testclient import TestClient
    from main import app

    with TestClient(app) as c:
        yield c
