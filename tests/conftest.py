"""
Shared test fixtures.

FakeSupabaseClient keeps real table state in memory so services can be
exercised end to end: filters, exact counts, upsert on conflict,
conditional updates and injected failures.
"""

import os
import sys
from pathlib import Path

# Settings are read at import time
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("SHOPIFY_STORE_DOMAIN", "vendor-test.myshopify.com")
os.environ.setdefault("SHOPIFY_ADMIN_TOKEN", "shpat_test")
os.environ.setdefault("SHOPIFY_LOCATION_ID", "1001")
os.environ.setdefault("PERSISTENCE_BACKOFF_SECONDS", "0")
os.environ.setdefault("UPSTREAM_BACKOFF_SECONDS", "0")
os.environ.setdefault("ENVIRONMENT", "development")

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import copy
import re
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import pytest
from unittest.mock import patch


# ===================
# FAKE SUPABASE CLIENT
# ===================

UNIQUE_KEYS: dict[str, tuple[str, ...]] = {
    "vendor_inventory_levels": ("inventory_item_id", "location_id"),
    "vendor_products": ("shopify_product_id",),
    "vendor_variants": ("shopify_variant_id",),
    "vendor_import_decisions": ("shopify_product_id",),
    "product_variants": ("sku",),
    "product_overrides": ("sku", "field_name", "staged_value"),
    "inventory_sync_log": ("id",),
}

COLUMN_DEFAULTS: dict[str, dict[str, Any]] = {
    "vendor_products": {"is_active": True},
    "vendor_import_decisions": {
        "decision": "pending",
        "decided_by": None,
        "decided_at": None,
        "reconciled_at": None,
    },
    "product_variants": {"stock_quantity": 0, "low_stock_threshold": 5},
}

# Tables whose rows get a generated uuid id
GENERATED_ID_TABLES = {"product_overrides", "inventory_sync_log"}

INBOX_VIEW = "v_vendor_inbox"


class FakeAPIError(Exception):
    """Stands in for postgrest.exceptions.APIError."""


class FakeResponse:
    def __init__(self, data: Optional[list] = None, count: Optional[int] = None):
        self.data = data if data is not None else []
        self.count = count


def _unquote(value: str) -> str:
    """PostgREST double-quoted operand: backslash escapes the next character."""
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return re.sub(r"\\(.)", r"\1", value[1:-1])
    return value


def _ilike(pattern: str) -> re.Pattern:
    """ILIKE with PostgREST's * wildcard; _ matches one character unless escaped."""
    out = []
    chars = iter(pattern)
    for ch in chars:
        if ch == "\\":
            out.append(re.escape(next(chars, "\\")))
        elif ch in "*%":
            out.append(".*")
        elif ch == "_":
            out.append(".")
        else:
            out.append(re.escape(ch))
    return re.compile("^" + "".join(out) + "$", re.IGNORECASE | re.DOTALL)


class FakeQuery:
    """Chainable query builder over FakeSupabaseClient state."""

    def __init__(self, client: "FakeSupabaseClient", table: str, operation: str, payload: Any = None, **options):
        self.client = client
        self.table = table
        self.operation = operation
        self.payload = payload
        self.options = options
        self.filters: list[Callable[[dict], bool]] = []
        self.orders: list[tuple[str, bool]] = []
        self.offset = 0
        self.max_rows: Optional[int] = None
        self.columns = "*"
        self.count_mode: Optional[str] = None
        self.head = False

    # Filters

    def eq(self, column: str, value: Any):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column: str, value: Any):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column: str, values):
        allowed = list(values)
        self.filters.append(lambda row: row.get(column) in allowed)
        return self

    def is_(self, column: str, value: Any):
        if value in ("null", None):
            self.filters.append(lambda row: row.get(column) is None)
        else:
            self.filters.append(lambda row: row.get(column) == value)
        return self

    def ilike(self, column: str, pattern: str):
        regex = _ilike(pattern)
        self.filters.append(lambda row: row.get(column) is not None and bool(regex.match(str(row.get(column)))))
        return self

    def or_(self, expression: str):
        clauses = []
        for part in expression.split(","):
            column, op, pattern = part.split(".", 2)
            assert op == "ilike", f"unsupported or_ operator {op}"
            clauses.append((column, _ilike(_unquote(pattern))))

        def matches(row: dict) -> bool:
            return any(
                row.get(column) is not None and regex.match(str(row.get(column)))
                for column, regex in clauses
            )

        self.filters.append(matches)
        return self

    # Shaping

    def order(self, column: str, desc: bool = False, **kwargs):
        self.orders.append((column, desc))
        return self

    def range(self, start: int, end: int):
        self.offset = start
        self.max_rows = end - start + 1
        return self

    def limit(self, count: int):
        self.max_rows = count
        return self

    def execute(self) -> FakeResponse:
        return self.client._execute(self)


class FakeTable:
    def __init__(self, client: "FakeSupabaseClient", name: str):
        self.client = client
        self.name = name

    def select(self, columns: str = "*", count: Optional[str] = None, head: bool = False):
        query = FakeQuery(self.client, self.name, "select")
        query.columns = columns
        query.count_mode = count
        query.head = head
        return query

    def insert(self, rows):
        return FakeQuery(self.client, self.name, "insert", rows)

    def upsert(self, rows, on_conflict: str = "", ignore_duplicates: bool = False):
        return FakeQuery(
            self.client, self.name, "upsert", rows,
            on_conflict=on_conflict, ignore_duplicates=ignore_duplicates
        )

    def update(self, values: dict):
        return FakeQuery(self.client, self.name, "update", values)

    def delete(self):
        return FakeQuery(self.client, self.name, "delete")


class FakeSupabaseClient:
    """
    In-memory Supabase client.

    Usage:
        fake = FakeSupabaseClient()
        fake.seed("product_variants", [{"sku": "A-1", "stock_quantity": 3}])
        fake.fail("vendor_inventory_levels", "upsert", times=4)
    """

    def __init__(self):
        self._lock = threading.RLock()
        self.tables: dict[str, list[dict]] = {}
        self.writes: list[tuple[str, str]] = []
        self._failures: dict[tuple[str, str], int] = {}

    def table(self, name: str) -> FakeTable:
        return FakeTable(self, name)

    # Test helpers

    def seed(self, table: str, rows: list[dict]) -> None:
        with self._lock:
            for row in rows:
                self._insert_row(table, copy.deepcopy(row))

    def rows(self, table: str) -> list[dict]:
        with self._lock:
            return copy.deepcopy(self.tables.get(table, []))

    def fail(self, table: str, operation: str, times: int = 1) -> None:
        """Make the next `times` calls of operation on table raise."""
        with self._lock:
            self._failures[(table, operation)] = times

    def writes_to(self, table: str) -> list[str]:
        return [op for t, op in self.writes if t == table]

    # Execution

    def _execute(self, query: FakeQuery) -> FakeResponse:
        with self._lock:
            key = (query.table, query.operation)
            if self._failures.get(key, 0) > 0:
                self._failures[key] -= 1
                raise FakeAPIError(f"injected {query.operation} failure on {query.table}")

            if query.operation != "select":
                self.writes.append(key)

            handler = getattr(self, f"_do_{query.operation}")
            return handler(query)

    def _source_rows(self, table: str) -> list[dict]:
        if table == INBOX_VIEW:
            return self._inbox_view()
        return self.tables.setdefault(table, [])

    def _matching(self, query: FakeQuery) -> list[dict]:
        return [row for row in self._source_rows(query.table) if all(f(row) for f in query.filters)]

    def _do_select(self, query: FakeQuery) -> FakeResponse:
        rows = [copy.deepcopy(row) for row in self._matching(query)]

        for column, desc in reversed(query.orders):
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=desc)
            rows = present + missing

        total = len(rows)
        if query.max_rows is not None:
            rows = rows[query.offset:query.offset + query.max_rows]
        elif query.offset:
            rows = rows[query.offset:]

        if query.columns and query.columns.strip() != "*":
            wanted = [c.strip() for c in query.columns.split(",")]
            rows = [{c: r.get(c) for c in wanted} for r in rows]

        count = total if query.count_mode == "exact" else None
        return FakeResponse(data=[] if query.head else rows, count=count)

    def _key_of(self, row: dict, columns: tuple[str, ...]) -> tuple:
        return tuple(row.get(c) for c in columns)

    def _find(self, table: str, row: dict, columns: tuple[str, ...]) -> Optional[dict]:
        key = self._key_of(row, columns)
        for existing in self.tables.setdefault(table, []):
            if self._key_of(existing, columns) == key:
                return existing
        return None

    def _insert_row(self, table: str, row: dict) -> dict:
        unique = UNIQUE_KEYS.get(table)
        if table in GENERATED_ID_TABLES:
            row.setdefault("id", str(uuid.uuid4()))
        if unique and self._find(table, row, unique) is not None:
            raise FakeAPIError(f"duplicate key value violates unique constraint on {table}")

        stored = {**COLUMN_DEFAULTS.get(table, {}), **row}
        stored.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self.tables.setdefault(table, []).append(stored)
        return stored

    def _do_insert(self, query: FakeQuery) -> FakeResponse:
        rows = query.payload if isinstance(query.payload, list) else [query.payload]
        inserted = [self._insert_row(query.table, copy.deepcopy(r)) for r in rows]
        return FakeResponse(data=copy.deepcopy(inserted))

    def _do_upsert(self, query: FakeQuery) -> FakeResponse:
        rows = query.payload if isinstance(query.payload, list) else [query.payload]
        conflict = query.options.get("on_conflict")
        columns = tuple(c.strip() for c in conflict.split(",")) if conflict else UNIQUE_KEYS[query.table]
        ignore = query.options.get("ignore_duplicates", False)

        written = []
        for row in rows:
            existing = self._find(query.table, row, columns)
            if existing is None:
                written.append(self._insert_row(query.table, copy.deepcopy(row)))
            elif not ignore:
                existing.update(copy.deepcopy(row))
                written.append(existing)
        return FakeResponse(data=copy.deepcopy(written))

    def _do_update(self, query: FakeQuery) -> FakeResponse:
        updated = []
        for row in self._matching(query):
            row.update(copy.deepcopy(query.payload))
            updated.append(row)
        return FakeResponse(data=copy.deepcopy(updated))

    def _do_delete(self, query: FakeQuery) -> FakeResponse:
        doomed = self._matching(query)
        self.tables[query.table] = [r for r in self.tables.get(query.table, []) if r not in doomed]
        return FakeResponse(data=copy.deepcopy(doomed))

    def _inbox_view(self) -> list[dict]:
        decisions = {
            d["shopify_product_id"]: d for d in self.tables.get("vendor_import_decisions", [])
        }
        variants: dict[int, list[dict]] = {}
        for v in self.tables.get("vendor_variants", []):
            variants.setdefault(v["shopify_product_id"], []).append(v)

        view = []
        for product in self.tables.get("vendor_products", []):
            pid = product["shopify_product_id"]
            product_variants = sorted(variants.get(pid, []), key=lambda v: v.get("position") or 0)
            decision = decisions.get(pid, {})
            view.append({
                "shopify_product_id": pid,
                "title": product.get("title"),
                "vendor": product.get("vendor"),
                "product_type": product.get("product_type"),
                "status": product.get("status"),
                "is_active": product.get("is_active", True),
                "updated_at": product.get("updated_at"),
                "decision": decision.get("decision", "pending"),
                "decided_by": decision.get("decided_by"),
                "decided_at": decision.get("decided_at"),
                "skus": " ".join(v["sku"] for v in product_variants if v.get("sku")),
                "variant_count": len(product_variants),
            })
        return view


# ===================
# FIXTURES
# ===================

@pytest.fixture
def fake_supabase() -> FakeSupabaseClient:
    """
    Fresh in-memory database.

    Usage:
        def test_something(fake_supabase):
            fake_supabase.seed("product_variants", [...])
            service = StockStatusService(db=fake_supabase)
    """
    return FakeSupabaseClient()


@pytest.fixture
def merge_service(fake_supabase):
    from services.staging_merge_service import StagingMergeService
    return StagingMergeService(db=fake_supabase)


@pytest.fixture
def inbox_service(fake_supabase):
    from services.inbox_service import InboxService
    return InboxService(db=fake_supabase)


@pytest.fixture
def reconciliation_service(fake_supabase):
    from services.reconciliation_service import ReconciliationService
    return ReconciliationService(db=fake_supabase, default_threshold=5, location_id="")


@pytest.fixture
def decision_service(fake_supabase, reconciliation_service):
    from services.decision_service import DecisionService
    return DecisionService(db=fake_supabase, reconciliation_service=reconciliation_service)


@pytest.fixture
def stock_status_service(fake_supabase):
    from services.stock_status_service import StockStatusService
    return StockStatusService(db=fake_supabase)


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client_with_fake_db(
    fake_supabase,
    inbox_service,
    decision_service,
    stock_status_service
):
    """
    FastAPI test client whose services all share fake_supabase.

    The vendor sync service is not wired here; tests that need it patch
    routes.vendor_sync.get_vendor_sync_service themselves.
    """
    from fastapi.testclient import TestClient
    from main import app

    with patch("routes.vendor_inbox.get_inbox_service", return_value=inbox_service), \
            patch("routes.vendor_inbox.get_decision_service", return_value=decision_service), \
            patch("routes.stock_status.get_stock_status_service", return_value=stock_status_service):
        yield TestClient(app)
