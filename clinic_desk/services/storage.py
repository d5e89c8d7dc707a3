"""
Pluggable key -> JSON document persistence.

A backend only moves strings; encoding and decoding of the documents is the
record store's job. Every backend writes one key at a time, so a failure in
the middle of a multi-key save leaves the earlier keys written.
"""

import logging
from typing import Dict, Optional

import redis

from extensions import db
from clinic_desk.models.stored_record import StoredRecord
from clinic_desk.services.db_context import db_context


logger = logging.getLogger("clinic_desk.storage")


class StorageBackend:
    name = "base"

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError


class MemoryBackend(StorageBackend):
    """Process-local dict; used by tests and throwaway sessions."""
    name = "memory"

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


class SQLBackend(StorageBackend):
    """Key/value rows in the `stored_records` table (SQLite on the device)."""
    name = "sql"

    def __init__(self, app):
        self.app = app

    def get(self, key: str) -> Optional[str]:
        with db_context(self.app):
            row = db.session.get(StoredRecord, key)
            return row.value if row else None

    def set(self, key: str, value: str) -> None:
        with db_context(self.app):
            row = db.session.get(StoredRecord, key)
            if row is None:
                row = StoredRecord(key=key, value=value)
            else:
                row.value = value
            db.session.add(row)
            try:
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise


class RedisBackend(StorageBackend):
    """Plain string keys in Redis, no TTL."""
    name = "redis"

    def __init__(self, client: "redis.Redis"):
        self.r = client

    @classmethod
    def from_config(cls, config) -> "RedisBackend":
        client = redis.Redis(
            host=config.get("REDIS_HOST", "localhost"),
            port=int(config.get("REDIS_PORT", 6379)),
            db=int(config.get("REDIS_DB", 0)),
            decode_responses=True,
        )
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        return self.r.get(key)

    def set(self, key: str, value: str) -> None:
        self.r.set(key, value)


def backend_from_config(app) -> StorageBackend:
    """Pick the backend named by STORAGE_BACKEND."""
    kind = (app.config.get("STORAGE_BACKEND") or "sql").lower()

    if kind == "memory":
        backend = MemoryBackend()
    elif kind == "redis":
        backend = RedisBackend.from_config(app.config)
    elif kind == "sql":
        backend = SQLBackend(app)
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {kind!r}")

    logger.info(f"[backend_from_config] Using {backend.name} storage backend")
    return backend
