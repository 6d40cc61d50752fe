"""Tests for engine construction."""

from sqlalchemy import text

from advisor.core.database import make_engine


def test_sqlite_enforces_foreign_keys():
    engine = make_engine("sqlite://")

    with engine.connect() as conn:
        assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
