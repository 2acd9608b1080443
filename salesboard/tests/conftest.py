# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures for the salesboard test suite.

Provides a SQLite store in a temporary directory and a Flask test client wired
to it, with the default admin and client users seeded.
"""
import pytest
from cryptography.fernet import Fernet

import salesboard.controller as controller
from salesboard.auth import seed_users
from salesboard.config import Settings
from salesboard.store import SqliteStore

TEST_PASSWORD = "password123"


@pytest.fixture
def sqlite_store(tmp_path):
    """A connected SQLite store with the schema created, closed after the test."""
    store = SqliteStore({"path": str(tmp_path / "salesboard.db")})
    store.connect()
    store.initialize_schema()
    yield store
    store.disconnect()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_backend="sqlite",
        db_config={"path": str(tmp_path / "app.db")},
        secret_key=Fernet.generate_key().decode("utf-8"),
        client_name="Test Shop",
        storage_option=None,
        storage_bucket=None,
    )


@pytest.fixture
def app_client(settings):
    """A Flask test client on a fresh database, with the default users seeded."""
    controller.app.config["SETTINGS"] = settings
    controller.app.config["SCHEMA_READY"] = False
    controller.app.config["TESTING"] = True
    controller.import_manager.snapshot = None

    with controller.open_store() as store:
        store.initialize_schema()
        seed_users(store, TEST_PASSWORD)

    with controller.app.test_client() as client:
        yield client

    controller.app.config.pop("SETTINGS", None)
    controller.import_manager.snapshot = None


def _login(client, username):
    response = client.post("/api/auth/login", json={"username": username, "password": TEST_PASSWORD})
    assert response.status_code == 200, response.get_data(as_text=True)
    return {"Authorization": f"Bearer {response.get_json()['token']}"}


@pytest.fixture
def admin_headers(app_client):
    return _login(app_client, "admin")


@pytest.fixture
def client_headers(app_client):
    return _login(app_client, "client")
