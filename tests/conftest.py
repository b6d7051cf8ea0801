"""Shared fixtures. Dosi settings are read at import time, so the
environment is pointed at throwaway directories before anything imports it."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

os.environ["DOSI_DATA_DIR"] = tempfile.mkdtemp()
os.environ["DOSI_ADMIN_USERNAME"] = "operator"
os.environ["DOSI_ADMIN_PASSWORD"] = "test-password"
os.environ["DOSI_JWT_SECRET"] = "test-secret-for-session-tokens-0123456789"

import pytest
from sqlmodel import Session

from dosi.database import init_db, make_engine
from dosi.models.store_entry import StoreEntry
from dosi.services.context import RequestContext
from dosi.services.registry import DeviceRegistry
from dosi.store import FileSystemStore
from dosi.store.sql import SqlStore


@pytest.fixture(params=["filesystem", "sqlite"])
def store(request, tmp_path):
    if request.param == "filesystem":
        yield FileSystemStore(tmp_path / "registry")
        return
    engine = make_engine(tmp_path / "registry.db")
    init_db(engine)
    yield SqlStore(engine)
    engine.dispose()


@pytest.fixture
def registry(store):
    return DeviceRegistry(store)


@pytest.fixture
def operator():
    return RequestContext(client_ip="127.0.0.1", username="operator", authenticated=True)


@pytest.fixture
def device():
    return RequestContext(client_ip="10.0.0.5")


@pytest.fixture
def backdate(store):
    """Push a key's modification time an hour into the past."""

    def _backdate(key: str) -> None:
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        if isinstance(store, FileSystemStore):
            os.utime(store.root.joinpath(*key.split("/")), (past.timestamp(), past.timestamp()))
            return
        with Session(store.engine) as session:
            entry = session.get(StoreEntry, key)
            entry.modified_at = past
            session.add(entry)
            session.commit()

    return _backdate
