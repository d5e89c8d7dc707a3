from datetime import datetime

import pytest
import pytz
from flask import Flask

from config import TestConfig
from clinic_desk.app_factory import create_app
from clinic_desk.services.record_store import RecordStore
from clinic_desk.services.storage import MemoryBackend


NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=pytz.UTC)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def store(backend) -> RecordStore:
    s = RecordStore(backend, clock=lambda: NOW)
    s.load()
    return s


@pytest.fixture
def app() -> Flask:
    app = create_app(TestConfig)
    app.extensions["record_store"].clock = lambda: NOW
    yield app


@pytest.fixture
def client(app: Flask):
    return app.test_client()
