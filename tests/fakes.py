"""In-memory stand-in for the supabase AsyncClient surface the catalog uses."""
import re
from datetime import datetime, timezone
from types import SimpleNamespace

from postgrest.exceptions import APIError

_OR_PART = re.compile(r'^(\w+)\.(\w+)\.(?:"((?:[^"\\]|\\.)*)"|(.*))$')


def _split_or(text):
    parts, buf, quoted, escaped = [], "", False, False
    for ch in text:
        if escaped:
            buf += ch
            escaped = False
        elif ch == "\\":
            buf += ch
            escaped = True
        elif ch == '"':
            quoted = not quoted
            buf += ch
        elif ch == "," and not quoted:
            parts.append(buf)
            buf = ""
        else:
            buf += ch
    parts.append(buf)
    return [p.strip() for p in parts if p.strip()]


def _unescape(value):
    return re.sub(r"\\(.)", r"\1", value)


def _like_to_regex(pattern):
    out, chars = "", iter(pattern)
    for ch in chars:
        if ch == "\\":
            out += re.escape(next(chars, "\\"))
        elif ch == "%":
            out += ".*"
        elif ch == "_":
            out += "."
        else:
            out += re.escape(ch)
    return out


def _match(row, op, column, value):
    current = row.get(column)
    if op == "eq":
        return str(current) == str(value)
    if op == "neq":
        return str(current) != str(value)
    if current is None:
        return False
    if op == "gte":
        return float(current) >= float(value)
    if op == "lte":
        return float(current) <= float(value)
    if op == "ilike":
        return re.fullmatch(_like_to_regex(str(value)), str(current), flags=re.I | re.S) is not None
    raise AssertionError(f"unsupported op {op}")


class FakeQuery:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.calls = []
        self.filters = []
        self.columns = "*"
        self.count = None
        self.action = "select"
        self.payload = None
        self.order_by = None
        self.max_rows = None
        self.window = None
        self.is_single = False

    def _record(self, *call):
        self.calls.append(call)
        return self

    def select(self, columns="*", count=None):
        self.columns = columns
        self.count = count
        return self._record("select", columns)

    def insert(self, rows):
        self.action, self.payload = "insert", rows
        return self._record("insert", rows)

    def update(self, changes):
        self.action, self.payload = "update", changes
        return self._record("update", changes)

    def delete(self):
        self.action = "delete"
        return self._record("delete")

    def _filter(self, op, column, value):
        self.filters.append(lambda row: _match(row, op, column, value))
        return self._record(op, column, value)

    def eq(self, column, value):
        return self._filter("eq", column, value)

    def neq(self, column, value):
        return self._filter("neq", column, value)

    def gte(self, column, value):
        return self._filter("gte", column, value)

    def lte(self, column, value):
        return self._filter("lte", column, value)

    def ilike(self, column, value):
        return self._filter("ilike", column, value)

    def or_(self, text):
        alternatives = []
        for part in _split_or(text):
            column, op, quoted, bare = _OR_PART.match(part).groups()
            value = _unescape(quoted) if quoted is not None else bare
            alternatives.append((op, column, value))
        self.filters.append(lambda row: any(_match(row, *alt) for alt in alternatives))
        return self._record("or", text)

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self._record("order", column, desc)

    def limit(self, n):
        self.max_rows = n
        return self._record("limit", n)

    def range(self, start, end):
        self.window = (start, end)
        return self._record("range", start, end)

    def single(self):
        self.is_single = True
        return self._record("single")

    def _rows(self):
        return [row for row in self.client.tables.setdefault(self.table, []) if all(f(row) for f in self.filters)]

    async def execute(self):
        self.client.queries.append(self)
        if self.client.error:
            raise APIError({"message": self.client.error, "code": "XX000"})

        if self.action == "insert":
            rows = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = []
            for row in rows:
                row = dict(row)
                row.setdefault("id", self.client.next_id())
                row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
                self.client.tables.setdefault(self.table, []).append(row)
                inserted.append(dict(row))
            return SimpleNamespace(data=inserted, count=None)

        matched = self._rows()
        if self.action == "update":
            for row in matched:
                row.update(self.payload)
            return SimpleNamespace(data=[dict(r) for r in matched], count=None)
        if self.action == "delete":
            table = self.client.tables[self.table]
            self.client.tables[self.table] = [r for r in table if r not in matched]
            return SimpleNamespace(data=[dict(r) for r in matched], count=None)

        rows = [dict(r) for r in matched]
        if self.order_by:
            column, desc = self.order_by
            rows.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=desc)
        total = len(rows)
        if self.window:
            rows = rows[self.window[0]:self.window[1] + 1]
        elif self.max_rows is not None:
            rows = rows[:self.max_rows]
        if "properties(" in self.columns:
            for row in rows:
                prop = next((p for p in self.client.tables.get("properties", []) if p["id"] == row.get("property_id")), None)
                row["properties"] = {k: prop.get(k) for k in ("title", "price", "location")} if prop else None
        if self.is_single:
            if len(rows) != 1:
                raise APIError({
                    "message": "JSON object requested, multiple (or no) rows returned",
                    "code": "PGRST116",
                })
            return SimpleNamespace(data=rows[0], count=None)
        return SimpleNamespace(data=rows, count=total if self.count else None)


class FakeBucket:
    def __init__(self, storage, name):
        self.storage = storage
        self.name = name

    async def upload(self, path, content, options=None):
        self.storage.files[(self.name, path)] = (content, options)
        return SimpleNamespace(path=path)

    async def get_public_url(self, path):
        return f"https://storage.example/{self.name}/{path}"

    async def remove(self, paths):
        for path in paths:
            self.storage.files.pop((self.name, path), None)
        return []


class FakeStorage:
    def __init__(self):
        self.files = {}

    def from_(self, name):
        return FakeBucket(self, name)


class FakeAuth:
    def __init__(self, tokens=None):
        self.tokens = tokens or {}
        self.listeners = []

    async def get_user(self, token):
        if token not in self.tokens:
            raise Exception("invalid JWT")
        return SimpleNamespace(user=SimpleNamespace(id=self.tokens[token], email=f"{self.tokens[token]}@example.com"))

    def on_auth_state_change(self, callback):
        self.listeners.append(callback)
        return SimpleNamespace(unsubscribe=lambda: None)


class FakeClient:
    def __init__(self, tables=None, tokens=None):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.queries = []
        self.error = None
        self.storage = FakeStorage()
        self.auth = FakeAuth(tokens)
        self._id = max((r.get("id", 0) for rows in self.tables.values() for r in rows), default=0)

    def next_id(self):
        self._id += 1
        return self._id

    def table(self, name):
        return FakeQuery(self, name)

    @property
    def last(self):
        return self.queries[-1]


def sample_properties():
    return [
        {"id": 1, "title": "Casa con jardín", "description": "Amplia casa", "location": "Av. Larco 123",
         "district": "Miraflores", "property_type": "Casa", "price": 250000, "area": 180, "bedrooms": 4,
         "status": "active", "featured": True, "created_at": "2024-03-01T10:00:00+00:00"},
        {"id": 2, "title": "Departamento moderno", "description": "Vista al mar", "location": "Malecón",
         "district": "Barranco", "property_type": "Departamento", "price": 150000, "area": 85, "bedrooms": 2,
         "status": "active", "featured": False, "created_at": "2024-03-05T10:00:00+00:00"},
        {"id": 3, "title": "Casa de playa", "description": "Frente al mar", "location": "Punta Hermosa",
         "district": "Punta Hermosa", "property_type": "Casa", "price": 400000, "area": 300, "bedrooms": 5,
         "status": "sold", "featured": True, "created_at": "2024-02-01T10:00:00+00:00"},
        {"id": 42, "title": "Casa en Miraflores", "description": "Remodelada", "location": "Calle Berlín",
         "district": "Miraflores", "property_type": "Casa", "price": 300000, "area": 200, "bedrooms": 3,
         "status": "active", "featured": False, "created_at": "2024-03-10T10:00:00+00:00"},
        {"id": 43, "title": "Oficina céntrica", "description": "Cerca al parque", "location": "Diagonal",
         "district": "Miraflores", "property_type": "Oficina", "price": 120000, "area": 60, "bedrooms": 0,
         "status": "active", "featured": False, "created_at": "2024-01-10T10:00:00+00:00"},
    ]


def gate_for(client, **kwargs):
    from catalogo.readiness import ReadinessGate

    return ReadinessGate(lambda: (lambda: client), **kwargs)


def missing_backend_gate():
    from catalogo.readiness import ReadinessGate

    return ReadinessGate(lambda: None, interval=0.001, attempts=3)
