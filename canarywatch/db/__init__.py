"""Database package: engine, ORM models and history facade."""

from canarywatch.db.engine import create_db_engine, create_session_factory
from canarywatch.db.facade import Database, PercentagePointDict
from canarywatch.db.orm import Base, ConfigChangeRow, DecisionRow, EventRow, MetricsWindowRow

__all__ = [
    "Base",
    "ConfigChangeRow",
    "Database",
    "DecisionRow",
    "EventRow",
    "MetricsWindowRow",
    "PercentagePointDict",
    "create_db_engine",
    "create_session_factory",
]
