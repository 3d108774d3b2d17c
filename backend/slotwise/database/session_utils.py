"""
Dialect helpers for code that has to branch between PostgreSQL and SQLite.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import DBAPIError, UnboundExecutionError
from sqlalchemy.orm import Session


def get_dialect_name(session: Session, default: str = "sqlite") -> str:
    """Dialect of the engine bound to ``session``, or ``default`` when unbound."""
    try:
        bind = session.get_bind()
    except UnboundExecutionError:
        return default
    dialect = getattr(bind, "dialect", None)
    return getattr(dialect, "name", None) or default


def violated_constraint_name(error: DBAPIError, known: Optional[str] = None) -> str:
    """
    Name of the constraint behind a driver error.

    psycopg2 exposes it on ``orig.diag``; SQLite only has the message text,
    so ``known`` is matched against it (triggers raise with the constraint name).
    """
    orig = getattr(error, "orig", None)
    diag = getattr(orig, "diag", None)
    name = getattr(diag, "constraint_name", None) if diag is not None else None
    if name:
        return str(name)
    if known and orig is not None and known in str(orig):
        return known
    return ""
