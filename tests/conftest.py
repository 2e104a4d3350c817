"""
Shared fixtures: an in-memory backend standing in for the hosted database.
"""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Ensure src modules are importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from backend_client import BackendError
from models import Settings


def _parse_predicate(predicate: str):
    op, _, raw = predicate.partition(".")
    if op == "in":
        inner = raw[1:-1]
        values = [v.strip().strip('"') for v in inner.split(",")] if inner else []
        return lambda value: value in values
    if op == "eq":
        return lambda value: str(value) == raw
    raise ValueError(f"Unsupported predicate {predicate}")


class FakeBackend:
    """
    In-memory stand-in for BackendClient.

    Rows come back in insertion order; select honors in./eq. filters and
    offset/limit, and never returns more than row_cap rows per call. Tables
    listed in fail_tables raise BackendError.
    """

    def __init__(
        self,
        tables: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        row_cap: Optional[int] = None,
    ):
        self.tables: Dict[str, List[Dict[str, Any]]] = tables or {}
        self.row_cap = row_cap
        self.fail_tables = set()
        self.fail_update = None
        self.users: Dict[str, Dict[str, Any]] = {}
        self.access_token = None
        self.select_calls: List[Dict[str, Any]] = []
        self.updates: List[Dict[str, Any]] = []
        self.rpc_calls: List[Dict[str, Any]] = []
        self.rpc_response: Any = None
        self.closed = False

    def add(self, table: str, *rows: Dict[str, Any]) -> None:
        self.tables.setdefault(table, []).extend(rows)

    def select(self, table, columns, filters=None, order=None, offset=None, limit=None):
        self.select_calls.append(
            {"table": table, "filters": dict(filters or {}), "offset": offset, "limit": limit}
        )
        if table in self.fail_tables:
            raise BackendError(f"{table} unavailable", status_code=500)

        rows = self.tables.get(table, [])
        for column, predicate in (filters or {}).items():
            matches = _parse_predicate(predicate)
            rows = [row for row in rows if matches(row.get(column))]

        start = offset or 0
        if self.row_cap is not None:
            limit = self.row_cap if limit is None else min(limit, self.row_cap)
        end = start + limit if limit is not None else None
        return [dict(row) for row in rows[start:end]]

    def get_user(self, access_token=None):
        token = access_token or self.access_token
        return self.users.get(token) if token else None

    def update(self, table, filters, values, access_token=None):
        if self.fail_update:
            raise BackendError(self.fail_update, status_code=400)
        self.updates.append(
            {"table": table, "filters": filters, "values": values, "access_token": access_token}
        )
        matches = _parse_predicate(filters["id"])
        changed = []
        for row in self.tables.get(table, []):
            if matches(row.get("id")):
                row.update(values)
                changed.append(dict(row))
        return changed

    def rpc(self, function, params):
        self.rpc_calls.append({"function": function, "params": params})
        return self.rpc_response

    def close(self):
        self.closed = True


def transaction_row(txn_id, ticket_id="T1", user_id="buyer-1", quantity=1,
                    status="PAID WITH QR", **extra):
    row = {
        "id": txn_id,
        "ticket_id": ticket_id,
        "user_id": user_id,
        "order_id": f"ORDER-{txn_id}",
        "quantity": quantity,
        "status": status,
        "total": 100.0 * (quantity or 1),
        "created_at": "2025-09-30T10:00:00+00:00",
    }
    row.update(extra)
    return row


def qr_row(qr_id, transaction_id, user_id="buyer-1", scan=False, scanner_id=None, **extra):
    row = {
        "id": qr_id,
        "transaction_id": transaction_id,
        "user_id": user_id,
        "created_at": "2025-09-30T10:05:00+00:00",
        "scan": scan,
        "scanner_id": scanner_id,
        "updated_at": None,
        "apple": False,
        "google": False,
    }
    row.update(extra)
    return row


@pytest.fixture
def backend():
    fake = FakeBackend()
    fake.add("tickets", {"id": "T1", "name": "General", "price": 100.0, "event_id": "E"})
    return fake


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        SUPABASE_URL="https://backend.test",
        SUPABASE_KEY="anon-key",
        TRANSACTION_PAGE_SIZE=1000,
        QR_BATCH_SIZE=100,
        PROFILE_BATCH_SIZE=100,
    )
