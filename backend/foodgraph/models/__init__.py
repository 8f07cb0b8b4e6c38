"""ORM models package exports."""

from foodgraph.models.boost_event import BoostEvent
from foodgraph.models.category_aggregate import CategoryAggregate
from foodgraph.models.connection import Connection
from foodgraph.models.entity import Entity
from foodgraph.models.source_ledger_record import SourceLedgerRecord

__all__ = [
    "BoostEvent",
    "CategoryAggregate",
    "Connection",
    "Entity",
    "SourceLedgerRecord",
]
