"""Tests for run ledger storage."""

import pytest
from sqlalchemy import select, text

from nvim_crossbuild.db import (
    create_all_tables,
    get_engine,
    get_session,
    get_session_factory,
    sqlite_path,
)
from nvim_crossbuild.pipeline.models import RunRecord


class TestSqlitePath:
    """Tests for sqlite_path."""

    def test_file_url(self, tmp_path):
        """File URLs map to their path."""
        path = tmp_path / "runs.db"
        assert sqlite_path(f"sqlite:///{path}") == path

    @pytest.mark.parametrize(
        "url", ["sqlite://", "sqlite:///:memory:", "postgresql://db/ledger"]
    )
    def test_no_file(self, url):
        """In-memory and non-SQLite URLs have no file."""
        assert sqlite_path(url) is None


class TestGetEngine:
    """Tests for get_engine."""

    def test_creates_parent_and_uses_wal(self, tmp_path):
        """File databases get their directory and WAL journaling."""
        db = tmp_path / "state" / "runs.db"
        engine = get_engine(f"sqlite:///{db}")

        with engine.connect() as conn:
            mode = conn.execute(text("PRAGMA journal_mode")).scalar()

        assert db.parent.is_dir()
        assert mode == "wal"

    def test_memory(self):
        """In-memory databases work without a file."""
        engine = get_engine("sqlite://")
        with engine.connect() as conn:
            assert conn.execute(text("SELECT 1")).scalar() == 1


class TestGetSession:
    """Tests for the session scope."""

    def test_commit_and_rollback(self, tmp_path):
        """Work is committed on success and discarded on error."""
        engine = get_engine(f"sqlite:///{tmp_path / 'runs.db'}")
        create_all_tables(engine)
        factory = get_session_factory(engine)

        with get_session(factory) as session:
            session.add(RunRecord(run_uuid="kept", selector="native"))

        with pytest.raises(RuntimeError):
            with get_session(factory) as session:
                session.add(RunRecord(run_uuid="dropped", selector="cross"))
                session.flush()
                raise RuntimeError("boom")

        with get_session(factory) as session:
            uuids = list(session.execute(select(RunRecord.run_uuid)).scalars())

        assert uuids == ["kept"]
