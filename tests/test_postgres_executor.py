"""Tests for the SQLAlchemy-backed PostgreSQL executor."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch
from uuid import UUID

import pytest

from upsert_orm.adapters.postgres import (
    PostgresExecutor,
    PostgresTransaction,
    bind_params,
    create_engine_pooled,
    normalize_url,
)

ROW_ID = UUID("12345678-1234-5678-1234-567812345678")
CREATED = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


# ============================================================================
# Test: Engine Creation
# ============================================================================


class TestCreateEnginePooled:
    """Verify pool defaults and connect_timeout handling."""

    def test_pool_defaults(self) -> None:
        """The engine is created with the default pool settings."""
        with patch("upsert_orm.adapters.postgres.create_engine") as mock_create:
            create_engine_pooled("postgresql+psycopg://u@h/db")

        mock_create.assert_called_once_with(
            "postgresql+psycopg://u@h/db?connect_timeout=5",
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_recycle=300,
            echo=False,
            connect_args={"options": "-c timezone=UTC"},
        )

    def test_connect_timeout_appends_to_query(self) -> None:
        """An existing query string gets connect_timeout with '&'."""
        with patch("upsert_orm.adapters.postgres.create_engine") as mock_create:
            create_engine_pooled("postgresql+psycopg://u@h/db?sslmode=require")

        assert mock_create.call_args[0][0] == (
            "postgresql+psycopg://u@h/db?sslmode=require&connect_timeout=5"
        )

    def test_existing_connect_timeout_is_kept(self) -> None:
        """A URL that already sets connect_timeout is not changed."""
        with patch("upsert_orm.adapters.postgres.create_engine") as mock_create:
            create_engine_pooled("postgresql+psycopg://u@h/db?connect_timeout=30")

        assert mock_create.call_args[0][0] == "postgresql+psycopg://u@h/db?connect_timeout=30"

    def test_kwargs_override_defaults(self) -> None:
        """Caller kwargs win over pool defaults."""
        with patch("upsert_orm.adapters.postgres.create_engine") as mock_create:
            create_engine_pooled("postgresql+psycopg://u@h/db", pool_size=20)

        assert mock_create.call_args.kwargs["pool_size"] == 20
        assert mock_create.call_args.kwargs["max_overflow"] == 10

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("postgres://u@h/db", "postgresql+psycopg://u@h/db"),
            ("postgresql://u@h/db", "postgresql+psycopg://u@h/db"),
            ("postgresql+psycopg://u@h/db", "postgresql+psycopg://u@h/db"),
        ],
    )
    def test_normalize_url(self, url: str, expected: str) -> None:
        """Every Postgres scheme is routed to the psycopg driver."""
        assert normalize_url(url) == expected


# ============================================================================
# Test: Placeholder Binding
# ============================================================================


class TestBindParams:
    """Verify $N placeholders become SQLAlchemy bound parameters."""

    def test_positional_to_named(self) -> None:
        """Each $N maps to :pN with its argument."""
        sql, params = bind_params("SELECT * FROM t WHERE a = $1 AND b = $2", ["x", 2])
        assert sql == "SELECT * FROM t WHERE a = :p1 AND b = :p2"
        assert params == {"p1": "x", "p2": 2}

    def test_two_digit_placeholders(self) -> None:
        """$10 is not read as $1 followed by 0."""
        args = list(range(1, 11))
        sql, params = bind_params("VALUES ($1, $10)", args)
        assert sql == "VALUES (:p1, :p10)"
        assert params == {"p1": 1, "p10": 10}

    def test_casts_are_untouched(self) -> None:
        """PostgreSQL casts survive rewriting."""
        sql, _ = bind_params("WHERE fk::varchar = ANY($1)", [["a"]])
        assert sql == "WHERE fk::varchar = ANY(:p1)"

    def test_missing_argument(self) -> None:
        """A placeholder without an argument is an error."""
        with pytest.raises(ValueError, match=r"placeholder \$2 has no argument"):
            bind_params("WHERE a = $1 AND b = $2", ["x"])


# ============================================================================
# Test: Transactions
# ============================================================================


class TestPostgresTransaction:
    """Verify statements run on the transaction's connection."""

    def test_query_serializes_rows(self) -> None:
        """UUIDs and datetimes come back as strings."""
        connection = MagicMock()
        result = connection.execute.return_value
        result.keys.return_value = ["id", "created_at", "name"]
        result.fetchall.return_value = [(ROW_ID, CREATED, "a")]
        tx = PostgresTransaction(connection, MagicMock())

        rows = tx.query("SELECT id, created_at, name FROM t WHERE name = $1", ["a"])

        assert rows == [{"id": str(ROW_ID), "created_at": CREATED.isoformat(), "name": "a"}]
        statement, params = connection.execute.call_args[0]
        assert str(statement) == "SELECT id, created_at, name FROM t WHERE name = :p1"
        assert params == {"p1": "a"}

    def test_execute_returns_rowcount(self) -> None:
        """execute() reports affected rows."""
        connection = MagicMock()
        connection.execute.return_value.rowcount = 4
        tx = PostgresTransaction(connection, MagicMock())

        assert tx.execute("DELETE FROM t WHERE id = $1", ["x"]) == 4

    def test_commit_releases_connection(self) -> None:
        """Committing closes the connection."""
        connection, transaction = MagicMock(), MagicMock()
        PostgresTransaction(connection, transaction).commit()

        transaction.commit.assert_called_once()
        connection.close.assert_called_once()

    def test_failed_rollback_still_releases_connection(self) -> None:
        """The connection goes back to the pool even when rollback fails."""
        connection, transaction = MagicMock(), MagicMock()
        transaction.rollback.side_effect = RuntimeError("connection lost")

        with pytest.raises(RuntimeError):
            PostgresTransaction(connection, transaction).rollback()
        connection.close.assert_called_once()


class TestPostgresExecutor:
    """Verify PostgresExecutor wiring."""

    def test_begin_opens_transaction(self) -> None:
        """begin() checks out a connection and starts a transaction."""
        with patch("upsert_orm.adapters.postgres.create_engine") as mock_create:
            executor = PostgresExecutor("postgres://u@h/db")

        assert mock_create.call_args[0][0].startswith("postgresql+psycopg://u@h/db")
        engine = mock_create.return_value
        tx = executor.begin()

        assert isinstance(tx, PostgresTransaction)
        engine.connect.return_value.begin.assert_called_once()

    def test_close_disposes_engine(self) -> None:
        """close() disposes the pool."""
        with patch("upsert_orm.adapters.postgres.create_engine") as mock_create:
            executor = PostgresExecutor("postgresql://u@h/db")

        executor.close()
        mock_create.return_value.dispose.assert_called_once()

    def test_connection_check(self) -> None:
        """test_connection() runs SELECT 1."""
        with patch("upsert_orm.adapters.postgres.create_engine") as mock_create:
            executor = PostgresExecutor("postgresql://u@h/db")
        conn = mock_create.return_value.connect.return_value.__enter__.return_value
        conn.execute.return_value.scalar.return_value = 1

        assert executor.test_connection() is True
