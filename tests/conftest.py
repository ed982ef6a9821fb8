"""Shared fixtures: a fake D1 HTTP API backed by in-memory SQLite."""

import asyncio
import json
import sqlite3

import httpx
import pytest

from bot_blocker.database import D1Database
from bot_blocker.events import EventStore
from bot_blocker.settings import SettingsStore


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class FakeD1:
    """Answers D1 /query calls by running the SQL against SQLite.

    D1 speaks the SQLite dialect, so the real statements run unchanged.
    """

    def __init__(self):
        self.conn = sqlite3.connect(":memory:", check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.statements: list[str] = []
        self.offline = False
        self.fail_on: str | None = None  # substring of SQL to reject

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("D1 offline", request=request)

        body = json.loads(request.content)
        sql, params = body["sql"], body.get("params", [])
        self.statements.append(sql)

        if self.fail_on and self.fail_on in sql:
            return httpx.Response(200, json={"success": False, "errors": [{"message": "rejected"}]})

        try:
            cursor = self.conn.execute(sql, params)
            rows = [dict(row) for row in cursor.fetchall()] if cursor.description else []
            self.conn.commit()
        except sqlite3.Error as e:
            return httpx.Response(200, json={"success": False, "errors": [{"message": str(e)}]})

        return httpx.Response(200, json={
            "success": True,
            "errors": [],
            "result": [{"results": rows, "success": True}],
        })

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, table: str) -> int:
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


@pytest.fixture
def fake_d1():
    d1 = FakeD1()
    yield d1
    d1.conn.close()


@pytest.fixture
def db(fake_d1):
    return D1Database(
        d1_database_id="test-db",
        cf_account_id="test-account",
        cf_api_token="test-token",
        transport=fake_d1.transport,
    )


@pytest.fixture
def settings_store(db):
    return SettingsStore(db, plugin_slug="bot-blocker")


@pytest.fixture
def event_store(db):
    return EventStore(db)
