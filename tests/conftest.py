"""Shared fixtures: an in-test fake store that records every statement."""

import itertools
import re
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import pytest

from upsert_orm import UpsertORM
from upsert_orm.codec.crypto import AesGcmCipher

TENANT = "org-1"
ACTOR = "user-1"
FIXED_NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
KEY = bytes(range(32))

_INSERT_RETURNING = re.compile(r"^INSERT INTO (\w+) .* RETURNING (\w+)$", re.S)


class ScriptedStore:
    """Answers statements from registered handlers.

    Handlers are ``(regex, result)`` pairs checked in registration order;
    ``result`` is a row list / row count, or a callable taking
    ``(sql, args)``.  Unmatched statements get defaults: INSERT ... RETURNING
    yields one generated ``<table>-<n>`` key per row, SELECT yields no rows
    and everything else reports one affected row.
    """

    def __init__(self) -> None:
        self.handlers: list[tuple[re.Pattern[str], Any]] = []
        self._ids = itertools.count(1)

    def on(self, pattern: str, result: Any) -> "ScriptedStore":
        self.handlers.append((re.compile(pattern, re.S), result))
        return self

    def __call__(self, sql: str, args: list[Any]) -> Any:
        for pattern, result in self.handlers:
            if pattern.search(sql):
                return result(sql, args) if callable(result) else result
        return self._default(sql)

    def _default(self, sql: str) -> Any:
        match = _INSERT_RETURNING.match(sql)
        if match:
            table, pk = match.groups()
            rows = sql.split(" VALUES ", 1)[1].count("), (") + 1
            return [{pk: f"{table}-{next(self._ids)}"} for _ in range(rows)]
        if sql.startswith("SELECT"):
            return []
        return 1


class FakeTransaction:
    """Records ``(sql, args)`` for every statement and answers from a responder."""

    def __init__(self, responder: Callable[[str, list[Any]], Any]) -> None:
        self.responder = responder
        self.statements: list[tuple[str, list[Any]]] = []
        self.committed = False
        self.rolled_back = False

    def query(self, sql: str, args: list[Any]) -> list[dict[str, Any]]:
        self.statements.append((sql, list(args)))
        return self.responder(sql, list(args))

    def execute(self, sql: str, args: list[Any]) -> int:
        self.statements.append((sql, list(args)))
        result = self.responder(sql, list(args))
        return result if isinstance(result, int) else 1

    def commit(self) -> None:
        self.committed = True

    def rollback(self) -> None:
        self.rolled_back = True


class FakeExecutor:
    """``DatabaseExecutor`` handing out ``FakeTransaction``s over one store."""

    def __init__(self, store: ScriptedStore) -> None:
        self.store = store
        self.transactions: list[FakeTransaction] = []
        self.closed = False

    def begin(self) -> FakeTransaction:
        tx = FakeTransaction(self.store)
        self.transactions.append(tx)
        return tx

    def close(self) -> None:
        self.closed = True

    @property
    def statements(self) -> list[tuple[str, list[Any]]]:
        return [statement for tx in self.transactions for statement in tx.statements]

    def sql(self, prefix: str = "") -> list[str]:
        """SQL of every recorded statement starting with *prefix*."""
        return [sql for sql, _ in self.statements if sql.startswith(prefix)]


@pytest.fixture
def store() -> ScriptedStore:
    return ScriptedStore()


@pytest.fixture
def executor(store: ScriptedStore) -> FakeExecutor:
    return FakeExecutor(store)


@pytest.fixture
def cipher() -> AesGcmCipher:
    return AesGcmCipher(KEY)


@pytest.fixture
def orm(executor: FakeExecutor, cipher: AesGcmCipher) -> UpsertORM:
    return UpsertORM(executor, TENANT, ACTOR, cipher=cipher, clock=lambda: FIXED_NOW)
