"""SQLAlchemy metadata registry import for Alembic."""

from foodgraph.models import BoostEvent, CategoryAggregate, Connection, Entity, SourceLedgerRecord
from foodgraph.models.base import Base

__all__ = ["Base", "Entity", "Connection", "CategoryAggregate", "BoostEvent", "SourceLedgerRecord"]
