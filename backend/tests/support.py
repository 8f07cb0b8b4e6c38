"""Shared SQLite fixtures for service tests."""

from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import create_engine, delete, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from foodgraph.models.base import Base
from foodgraph.models.boost_event import BoostEvent
from foodgraph.models.category_aggregate import CategoryAggregate
from foodgraph.models.connection import Connection
from foodgraph.models.entity import Entity
from foodgraph.models.source_ledger_record import SourceLedgerRecord
from foodgraph.schemas.mentions import MentionBatch, SourceMetadata

T0 = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
NOW = T0 + timedelta(days=3)


def create_test_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN, which breaks SAVEPOINT; let SQLAlchemy emit it.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, _connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(connection) -> None:
        connection.exec_driver_sql("BEGIN")

    return engine


class DatabaseTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_test_engine()
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        self.db: Session = self.SessionLocal()
        self._reset_tables()

    def tearDown(self) -> None:
        self.db.close()

    def _reset_tables(self) -> None:
        self.db.execute(delete(SourceLedgerRecord))
        self.db.execute(delete(BoostEvent))
        self.db.execute(delete(CategoryAggregate))
        self.db.execute(delete(Connection))
        self.db.execute(delete(Entity))
        self.db.commit()


def mention(restaurant: str = "Franklin Barbecue", **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "restaurant": restaurant,
        "source_type": "comment",
        "source_ups": 10,
        "source_created_at": T0.isoformat(),
    }
    payload.update(overrides)
    return payload


def batch(
    mentions: list[dict[str, Any]],
    *,
    batch_id: str = "batch-001",
    collection_type: str = "chronological",
) -> MentionBatch:
    return MentionBatch(
        mentions=mentions,
        source_metadata=SourceMetadata(batch_id=batch_id, collection_type=collection_type, subreddit="austinfood"),
    )
