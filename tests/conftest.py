"""Pytest fixtures shared across the test suite."""

import pytest

from codes.store import CodeStore
from db import utils as db_utils
from db.schema import create_schema
from tests.app_helpers import build_settings, login
from web.app_factory import create_app


@pytest.fixture
def db(tmp_path):
    """On-disk SQLite database with the full schema."""

    engine_wrapper = db_utils.build_engine_from_dsn(f"sqlite:///{tmp_path / 'codes.db'}")
    create_schema(engine_wrapper.engine)
    yield engine_wrapper
    engine_wrapper.dispose()


@pytest.fixture
def clock():
    """Deterministic, strictly increasing timestamps for the code store."""

    ticks = {"value": 0}

    def _now() -> str:
        ticks["value"] += 1
        return f"2025-01-01T00:00:{ticks['value']:02d}+00:00"

    return _now


@pytest.fixture
def store(db, clock):
    return CodeStore(db, now=clock)


@pytest.fixture
def app(tmp_path):
    flask_app = create_app(build_settings(tmp_path))
    yield flask_app
    flask_app.extensions["codes_admin"]["engine"].dispose()


@pytest.fixture
def app_db(app):
    return app.extensions["codes_admin"]["engine"]


@pytest.fixture
def client(app):
    test_client = app.test_client()
    login(test_client)
    return test_client
