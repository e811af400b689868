"""Dialect-specific INSERT ... ON CONFLICT support.

The reconciliation engine closes its read-modify-write races in the database
with native upserts. SQLite (3.24+) and PostgreSQL share the same
``on_conflict_do_update`` / ``on_conflict_do_nothing`` API in SQLAlchemy.
"""

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert_insert(db: Session, model):
    """Return a dialect ``insert()`` for ``model`` supporting ON CONFLICT."""
    dialect = db.get_bind().dialect.name
    try:
        insert_fn = _INSERT_BY_DIALECT[dialect]
    except KeyError:
        raise NotImplementedError(
            f"Database dialect '{dialect}' has no atomic upsert support; use SQLite or PostgreSQL"
        ) from None
    return insert_fn(model)


def greatest(db: Session, *values):
    """Scalar maximum of ``values``; SQLite spells ``GREATEST()`` as multi-argument ``max()``."""
    if db.get_bind().dialect.name == "sqlite":
        return func.max(*values)
    return func.greatest(*values)
