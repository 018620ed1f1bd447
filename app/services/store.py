# file: app/services/store.py
"""
Row storage for the pipeline.

Two backends share one interface:
  • LocalStore     – in-process tables persisted to a JSON file (or memory only)
  • PostgrestStore – Supabase / PostgREST over HTTP

Filters are a mapping ``{column: value}`` (equality) or
``{column: (op, value)}`` with op in eq, neq, ilike, in, lt, lte, gt, gte, is, not_is.
Reads are paged by PAGE_SIZE, which is the per-request row cap of PostgREST.
"""
from __future__ import annotations
import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import aiohttp
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.errors import StoreError, UniqueViolation

log = logging.getLogger("store")

PAGE_SIZE = 1000
MAX_ROWS = 1_000_000
RETRIES = 3

# errors worth another attempt; anything else fails at once
TRANSIENT = (aiohttp.ClientConnectionError, asyncio.TimeoutError)

# table -> columns carrying a unique constraint
UNIQUE = {"contacts": ("email",)}

Filters = Mapping[str, Any]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _encode(o: Any):
    if isinstance(o, datetime):
        return o.isoformat()
    if isinstance(o, Enum):
        return o.value
    raise TypeError(f"not JSON serializable: {type(o).__name__}")


def jsonable(row: Mapping[str, Any]) -> Dict[str, Any]:
    return json.loads(json.dumps(dict(row), default=_encode))


def _cond(value: Any) -> Tuple[str, Any]:
    if isinstance(value, tuple):
        return value
    return ("eq", value)


class RecordStore:
    """Common read helpers; backends implement _select_page, insert and update."""

    async def connect(self): ...

    async def close(self): ...

    async def _select_page(self, table: str, filters: Filters, order_by: Optional[str],
                           ascending: bool, offset: int, limit: int) -> List[dict]:
        raise NotImplementedError

    async def insert(self, table: str, row: Mapping[str, Any]) -> dict:
        raise NotImplementedError

    async def update(self, table: str, key_column: str, key_value: Any,
                     patch: Mapping[str, Any], expect: Optional[Filters] = None) -> Optional[dict]:
        """
        Atomic single-row update. With ``expect`` the row must also match those
        filters; None is returned when it does not (lost race, status moved on).
        """
        raise NotImplementedError

    async def select_where(self, table: str, filters: Filters, limit: Optional[int] = None,
                           order_by: Optional[str] = "created_at", ascending: bool = False) -> List[dict]:
        wanted = MAX_ROWS if limit is None else min(limit, MAX_ROWS)
        rows: List[dict] = []
        offset = 0
        while len(rows) < wanted:
            size = min(PAGE_SIZE, wanted - len(rows))
            page = await self._select_page(table, filters, order_by, ascending, offset, size)
            rows.extend(page)
            offset += len(page)
            if len(page) < size:
                break
        return rows

    async def select(self, table: str, column: str, value: Any, limit: Optional[int] = 100,
                     order_by: Optional[str] = "created_at", ascending: bool = False) -> List[dict]:
        return await self.select_where(table, {column: value}, limit, order_by, ascending)


# ---------------------------------------------------------------------------
# Local JSON-backed store
# ---------------------------------------------------------------------------

def _matches(row: Mapping[str, Any], filters: Filters) -> bool:
    for col, raw in filters.items():
        op, val = _cond(raw)
        cur = row.get(col)
        if isinstance(val, Enum):
            val = val.value
        if op == "eq":
            ok = cur == val
        elif op == "neq":
            ok = cur != val
        elif op == "ilike":
            ok = cur is not None and str(val).lower() in str(cur).lower()
        elif op == "in":
            ok = cur in [v.value if isinstance(v, Enum) else v for v in val]
        elif op == "is":
            ok = cur is val
        elif op == "not_is":
            ok = cur is not val
        elif op in ("lt", "lte", "gt", "gte"):
            if cur is None:
                ok = False
            else:
                if isinstance(val, datetime):
                    val = val.isoformat()
                ok = {"lt": cur < val, "lte": cur <= val, "gt": cur > val, "gte": cur >= val}[op]
        else:
            raise ValueError(f"unsupported filter operator {op!r}")
        if not ok:
            return False
    return True


class LocalStore(RecordStore):
    """In-process tables with JSON persistence (memory only when path is None)"""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None
        self.lock = asyncio.Lock()
        self.tables: Dict[str, List[dict]] = self._load_json(self.path, {}) if self.path else {}

    def _load_json(self, path: Path, default):
        if path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise StoreError(f"cannot read store file {path}: {e}") from e
        return default

    def _save_json(self):
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self.tables, f, indent=2, default=_encode)
        tmp.replace(self.path)

    async def _select_page(self, table, filters, order_by, ascending, offset, limit):
        async with self.lock:
            rows = [dict(r) for r in self.tables.get(table, []) if _matches(r, filters)]
        if order_by:
            # stable sort keeps insertion order among equal keys
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by) or ""), reverse=not ascending)
        return rows[offset:offset + limit]

    async def insert(self, table, row):
        record = jsonable(row)
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", now_utc().isoformat())
        async with self.lock:
            rows = self.tables.setdefault(table, [])
            for col in UNIQUE.get(table, ()):
                val = record.get(col)
                if val is not None and any(r.get(col) == val for r in rows):
                    raise UniqueViolation(f"duplicate key value violates unique constraint {table}.{col}={val}")
            rows.append(record)
            self._save_json()
        return dict(record)

    async def update(self, table, key_column, key_value, patch, expect=None):
        changes = jsonable(patch)
        async with self.lock:
            for r in self.tables.get(table, []):
                if r.get(key_column) != key_value:
                    continue
                if expect and not _matches(r, expect):
                    return None
                r.update(changes)
                self._save_json()
                return dict(r)
        if expect:
            return None
        raise StoreError(f"{table}: no row with {key_column}={key_value}")


# ---------------------------------------------------------------------------
# Supabase / PostgREST store
# ---------------------------------------------------------------------------

def _literal(v: Any) -> str:
    if isinstance(v, Enum):
        v = v.value
    if isinstance(v, bool):
        return "true" if v else "false"
    if v is None:
        return "null"
    if isinstance(v, datetime):
        return v.isoformat()
    return str(v)


def _params(filters: Filters) -> List[Tuple[str, str]]:
    out = []
    for col, raw in filters.items():
        op, val = _cond(raw)
        if op == "ilike":
            out.append((col, f"ilike.*{val}*"))
        elif op == "in":
            out.append((col, "in.(" + ",".join(_literal(v) for v in val) + ")"))
        elif op == "is":
            out.append((col, f"is.{_literal(val)}"))
        elif op == "not_is":
            out.append((col, f"not.is.{_literal(val)}"))
        else:
            out.append((col, f"{op}.{_literal(val)}"))
    return out


class PostgrestStore(RecordStore):
    """Supabase REST client (PostgREST dialect)"""

    def __init__(self, url: str, key: str, timeout: int = 30):
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: aiohttp.ClientSession | None = None

    async def connect(self):
        if not self.session:
            self.session = aiohttp.ClientSession(headers=self.headers, timeout=self.timeout)

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def _request(self, method: str, table: str, params=None, body=None, prefer: str | None = None):
        await self.connect()
        headers = {"Prefer": prefer} if prefer else {}
        data = json.dumps(body, default=_encode) if body is not None else None
        try:
            status, text = await self._send(method, f"{self.base_url}/{table}", params, data, headers)
        except TRANSIENT as e:
            log.error("store %s %s failed after %d attempts: %r", method, table, RETRIES + 1, e)
            raise StoreError(f"{method} {table}: {e!r}") from e
        except aiohttp.ClientError as e:
            raise StoreError(f"{method} {table}: {e!r}") from e
        if status >= 400:
            self._raise(table, status, text)
        try:
            return json.loads(text) if text else []
        except json.JSONDecodeError as e:
            raise StoreError(f"{method} {table}: HTTP {status} body is not JSON") from e

    @retry(
        stop=stop_after_attempt(RETRIES + 1),
        wait=wait_exponential(max=10),
        retry=retry_if_exception_type(TRANSIENT),
        before_sleep=before_sleep_log(log, logging.WARNING),
        reraise=True,
    )
    async def _send(self, method, url, params, data, headers):
        async with self.session.request(method, url, params=params, data=data, headers=headers) as r:
            return r.status, await r.text()

    @staticmethod
    def _raise(table: str, status: int, text: str):
        try:
            err = json.loads(text)
        except json.JSONDecodeError:
            err = {"message": text}
        code = str(err.get("code") or "")
        msg = f"{table}: HTTP {status} {err.get('message') or text}"
        if status == 409 or code == "23505":
            raise UniqueViolation(msg)
        raise StoreError(msg)

    async def _select_page(self, table, filters, order_by, ascending, offset, limit):
        params = [("select", "*"), *_params(filters), ("limit", str(limit)), ("offset", str(offset))]
        if order_by:
            params.append(("order", f"{order_by}.{'asc' if ascending else 'desc'}"))
        return await self._request("GET", table, params=params)

    async def insert(self, table, row):
        rows = await self._request("POST", table, body=jsonable(row), prefer="return=representation")
        if not rows:
            raise StoreError(f"{table}: insert returned no row")
        return rows[0]

    async def update(self, table, key_column, key_value, patch, expect=None):
        params = _params({key_column: key_value, **(expect or {})})
        rows = await self._request("PATCH", table, params=params, body=jsonable(patch),
                                   prefer="return=representation")
        if rows:
            return rows[0]
        if expect:
            return None
        raise StoreError(f"{table}: no row with {key_column}={key_value}")
