# tests/conftest.py
import os
import sys
import pytest

# so that `from app import create_app` works when pytest runs from the repo root
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from app import create_app
from extensions import db
from gateway import MemoryGateway
from modules.cases.lifecycle import CaseLifecycleController
from modules.spare_parts.catalog import PartCatalog
from modules.technicians.roster import TechnicianRoster
from utils import KeyedLocks


@pytest.fixture()
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "LOGIN_DISABLED": True,       # login is switched off in tests
        "SECRET_KEY": "test-secret",  # Flask-Login needs a session key
        "STORAGE_BACKEND": "sql",
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def root_user():
    class U:
        id = 1
        username = "root"
        role = "root"
    return U()


# ---------- in-memory building blocks for unit tests ----------
@pytest.fixture()
def gateway():
    return MemoryGateway()


@pytest.fixture()
def locks():
    return KeyedLocks()


@pytest.fixture()
def catalog(gateway, locks):
    return PartCatalog(gateway, locks)


@pytest.fixture()
def roster(gateway):
    return TechnicianRoster(gateway)


@pytest.fixture()
def controller(gateway, catalog, locks, roster):
    return CaseLifecycleController(gateway, catalog, locks, roster)
