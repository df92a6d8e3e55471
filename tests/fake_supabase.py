"""
In-memory stand-in for the supabase-py client used by the API.

Supports the query-builder subset the service calls: select / insert /
upsert / update / delete with eq, neq, gt, lt, is_, in_, or_, not_, order
and limit, plus rpc(), storage uploads and the auth admin calls. Unique
constraints raise the same `postgrest.exceptions.APIError` (code 23505)
PostgREST would.
"""
import copy
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Tuple

from postgrest.exceptions import APIError

PUBLIC_STORAGE_URL = "https://test-project.supabase.co/storage/v1/object/public"

UNIQUE_KEYS: Dict[str, List[Tuple[str, ...]]] = {
    "webhook_events": [("event_id",)],
    "company_users": [("user_id", "company_id")],
    "referrals": [("creator_code_id", "visitor_id")],
    "creator_codes": [("code",)],
    "job_templates": [("company_id", "name")],
    "invite_links": [("token",)],
}


def _matches_or(row: Dict[str, Any], clause: str) -> bool:
    for part in clause.split(","):
        col, op, value = part.split(".", 2)
        if op == "eq" and str(row.get(col)) == value:
            return True
    return False


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.payload: Any = None
        self.filters: List[Callable[[Dict[str, Any]], bool]] = []
        self._negate = False
        self._order: Optional[Tuple[str, bool]] = None
        self._limit: Optional[int] = None

    # -- operations --------------------------------------------------------
    def select(self, columns: str = "*", **_kwargs):
        self.columns = columns
        return self

    def insert(self, payload, **_kwargs):
        self.op, self.payload = "insert", payload
        return self

    def update(self, payload, **_kwargs):
        self.op, self.payload = "update", payload
        return self

    def upsert(self, payload, **_kwargs):
        self.op, self.payload = "upsert", payload
        return self

    def delete(self, **_kwargs):
        self.op = "delete"
        return self

    # -- filters -----------------------------------------------------------
    def _add(self, predicate):
        if self._negate:
            self._negate = False
            self.filters.append(lambda row: not predicate(row))
        else:
            self.filters.append(predicate)
        return self

    @property
    def not_(self):
        self._negate = True
        return self

    def eq(self, col, value):
        return self._add(lambda row: row.get(col) == value)

    def neq(self, col, value):
        return self._add(lambda row: row.get(col) != value)

    def gt(self, col, value):
        return self._add(lambda row: row.get(col) is not None and row.get(col) > value)

    def lt(self, col, value):
        return self._add(lambda row: row.get(col) is not None and row.get(col) < value)

    def is_(self, col, value):
        if value in ("null", None):
            return self._add(lambda row: row.get(col) is None)
        return self._add(lambda row: row.get(col) is value)

    def in_(self, col, values):
        values = list(values)
        return self._add(lambda row: row.get(col) in values)

    def or_(self, clause):
        return self._add(lambda row: _matches_or(row, clause))

    def order(self, col, desc=False, **_kwargs):
        self._order = (col, desc)
        return self

    def limit(self, n, **_kwargs):
        self._limit = n
        return self

    # -- execution ---------------------------------------------------------
    def _project(self, row):
        if self.columns in ("*", None):
            return copy.deepcopy(row)
        cols = [c.strip() for c in self.columns.split(",")]
        return {c: copy.deepcopy(row.get(c)) for c in cols}

    def _selected(self):
        rows = [r for r in self.db.tables.setdefault(self.table, []) if all(f(r) for f in self.filters)]
        if self._order:
            col, desc = self._order
            present = [r for r in rows if r.get(col) is not None]
            missing = [r for r in rows if r.get(col) is None]
            rows = sorted(present, key=lambda r: r[col], reverse=desc) + missing
        if self._limit is not None:
            rows = rows[: self._limit]
        return rows

    def execute(self):
        self.db.check_failure(self.table, self.op)
        self.db.calls.append((self.table, self.op))

        if self.op == "select":
            return SimpleNamespace(data=[self._project(r) for r in self._selected()])

        if self.op == "insert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = [self.db.insert_row(self.table, row) for row in payload]
            return SimpleNamespace(data=copy.deepcopy(inserted))

        if self.op == "upsert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            return SimpleNamespace(data=copy.deepcopy([self.db.upsert_row(self.table, row) for row in payload]))

        if self.op == "update":
            rows = self._selected()
            for row in rows:
                row.update(copy.deepcopy(self.payload))
            return SimpleNamespace(data=copy.deepcopy(rows))

        rows = self._selected()
        table = self.db.tables.setdefault(self.table, [])
        for row in rows:
            table.remove(row)
        return SimpleNamespace(data=copy.deepcopy(rows))


class _RpcCall:
    def __init__(self, db: "FakeSupabase", name: str, params: Dict[str, Any]):
        self.db, self.name, self.params = db, name, params

    def execute(self):
        self.db.rpc_calls.append((self.name, self.params))
        handler = self.db.rpc_handlers.get(self.name)
        return SimpleNamespace(data=handler(self.params) if handler else None)


class _Bucket:
    def __init__(self, db: "FakeSupabase", name: str):
        self.db, self.name = db, name

    def remove(self, paths):
        self.db.removed_files.extend((self.name, p) for p in paths)
        return []

    def upload(self, path, file, file_options=None):
        self.db.uploaded_files.append((self.name, path, file_options or {}))
        return SimpleNamespace(path=path)

    def get_public_url(self, path):
        return f"{PUBLIC_STORAGE_URL}/{self.name}/{path}"


class _AuthAdmin:
    def __init__(self, db: "FakeSupabase"):
        self.db = db

    def get_user_by_id(self, uid):
        user = self.db.auth_users.get(uid)
        return SimpleNamespace(user=SimpleNamespace(**user) if user else None)

    def delete_user(self, uid):
        self.db.auth_users.pop(uid, None)
        self.db.deleted_users.append(uid)


class FakeSupabase:
    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.rpc_calls: List[Tuple[str, Dict[str, Any]]] = []
        self.rpc_handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {}
        self.removed_files: List[Tuple[str, str]] = []
        self.uploaded_files: List[Tuple[str, str, Dict[str, Any]]] = []
        self.auth_users: Dict[str, Dict[str, Any]] = {}
        self.deleted_users: List[str] = []
        self._failures: Dict[Tuple[str, str], List[Exception]] = {}
        self.storage = SimpleNamespace(from_=lambda bucket: _Bucket(self, bucket))
        self.auth = SimpleNamespace(admin=_AuthAdmin(self))

    # -- client surface ----------------------------------------------------
    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: Optional[Dict[str, Any]] = None) -> _RpcCall:
        return _RpcCall(self, name, params or {})

    # -- helpers for tests -------------------------------------------------
    def seed(self, table: str, *rows: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [self.insert_row(table, dict(row)) for row in rows]

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])

    def get(self, table: str, **filters) -> Optional[Dict[str, Any]]:
        for row in self.rows(table):
            if all(row.get(k) == v for k, v in filters.items()):
                return row
        return None

    def fail_next(self, table: str, op: str, exc: Exception) -> None:
        self._failures.setdefault((table, op), []).append(exc)

    def check_failure(self, table: str, op: str) -> None:
        pending = self._failures.get((table, op))
        if pending:
            raise pending.pop(0)

    def insert_row(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = self.tables.setdefault(table, [])
        for key in UNIQUE_KEYS.get(table, []):
            if any(all(r.get(c) == row.get(c) for c in key) for r in rows):
                raise APIError({
                    "message": f'duplicate key value violates unique constraint "{table}_{"_".join(key)}_key"',
                    "code": "23505",
                    "hint": None,
                    "details": None,
                })
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        stored.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        rows.append(stored)
        return stored

    def upsert_row(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Merge into the row with the same id, or insert."""
        existing = self.get(table, id=row["id"]) if "id" in row else None
        if existing is None:
            return self.insert_row(table, row)
        existing.update(copy.deepcopy(row))
        return existing
