import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SEED_DEFAULTS"] = "0"
os.environ["STORE_BACKEND"] = "sql"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from app import app as flask_app, store as app_store
from auth import Principal, create_account
from models import db
from store import MemoryRecordStore


@pytest.fixture
def app():
    flask_app.config["TESTING"] = True
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sql_store(app):
    return app_store


@pytest.fixture
def memory_store():
    return MemoryRecordStore()


def make_principal(store, email, role="coach", name="Test"):
    user = create_account(store, email, "secret", name, "User", role)
    return Principal(user.id, user.role)


def make_patient(store, coach, name="Emma", surname="Wilson", **extra):
    fields = dict(
        name=name, surname=surname, age=34, weight=62.0, height=168.0,
        fitness_level="intermediate", limitations=[], coach_id=coach.id,
    )
    fields.update(extra)
    return store.insert_patient(**fields)


def make_exercise(store, coach=None, name="Knee Stabilization", **extra):
    fields = dict(
        name=name, description="Strengthen the muscles around the knee.",
        category="rehabilitation", difficulty="medium",
        parameters={"sets": 3, "repetitions": 12, "duration": 20, "intensity": "medium"},
        coach_id=coach.id if coach else None,
    )
    fields.update(extra)
    return store.insert_exercise(**fields)
