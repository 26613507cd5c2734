"""
Data store collaborator.

``DataStore`` describes the record-level operations the import pipeline and
analytics aggregator rely on: select (filter, embed relations, order, range),
insert, update and delete against named collections.  ``SqlDataStore``
implements it on a SQLAlchemy engine; ``ScopedDataStore`` wraps any store so
that every call carries the tenant scope.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import Table, and_, delete, func, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from gymdesk.db.tables import RELATIONS, metadata
from gymdesk.domain.tenancy.scope import TenantScope

logger = logging.getLogger(__name__)


class DataStoreError(Exception):
    """Raised when a data store operation fails or is malformed."""
    pass


class ScopeViolationError(DataStoreError):
    """Raised when a call would read or write outside the tenant scope."""
    pass


FILTER_OPERATORS = ("eq", "in", "gte", "gt", "lte", "lt", "ilike")


@dataclass(frozen=True)
class Filter:
    """
    A single filter clause.

    ``column`` may be dotted (``"member.subaccount_id"``) to filter on a
    related collection through the relation registry.
    """
    column: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator '{self.op}'")


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def gt(column: str, value: Any) -> Filter:
    return Filter(column, "gt", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", value)


def ilike(column: str, value: str) -> Filter:
    """Case-insensitive substring match."""
    return Filter(column, "ilike", value)


def _embed_tree(paths: Sequence[str]) -> Dict[str, Dict]:
    tree: Dict[str, Dict] = {}
    for path in paths:
        node = tree
        for part in path.split("."):
            node = node.setdefault(part, {})
    return tree


class DataStore:
    """Record store interface consumed by the domain code."""

    def select(
        self,
        collection: str,
        *,
        filters: Sequence[Filter] = (),
        embed: Sequence[str] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def insert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def update(self, collection: str, filters: Sequence[Filter], patch: Dict[str, Any]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def delete(self, collection: str, filters: Sequence[Filter]) -> int:
        raise NotImplementedError

    def count(self, collection: str, filters: Sequence[Filter] = ()) -> int:
        return len(self.select(collection, filters=filters))

    def select_one(self, collection: str, *, filters: Sequence[Filter] = (), embed: Sequence[str] = ()) -> Optional[Dict[str, Any]]:
        rows = self.select(collection, filters=filters, embed=embed, limit=1)
        return rows[0] if rows else None

    def scoped(self, scope: TenantScope) -> "ScopedDataStore":
        return ScopedDataStore(self, scope)


class SqlDataStore(DataStore):
    """DataStore backed by SQLAlchemy Core over the tables in ``gymdesk.db.tables``."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _table(self, collection: str) -> Table:
        table = metadata.tables.get(collection)
        if table is None:
            raise DataStoreError(f"Unknown collection '{collection}'")
        return table

    def _column(self, table: Table, name: str):
        if name not in table.c:
            raise DataStoreError(f"Unknown column '{name}' on '{table.name}'")
        return table.c[name]

    def _relation(self, collection: str, relation: str) -> Tuple[str, str]:
        try:
            return RELATIONS[collection][relation]
        except KeyError:
            raise DataStoreError(f"'{collection}' has no relation named '{relation}'") from None

    def _condition(self, collection: str, flt: Filter):
        table = self._table(collection)
        relation, _, rest = flt.column.partition(".")
        if rest:
            target, foreign_key = self._relation(collection, relation)
            target_table = self._table(target)
            inner = self._condition(target, Filter(rest, flt.op, flt.value))
            return self._column(table, foreign_key).in_(select(target_table.c.id).where(inner))

        column = self._column(table, flt.column)
        if flt.op == "eq":
            return column.is_(None) if flt.value is None else column == flt.value
        if flt.op == "in":
            return column.in_(list(flt.value))
        if flt.op == "gte":
            return column >= flt.value
        if flt.op == "gt":
            return column > flt.value
        if flt.op == "lte":
            return column <= flt.value
        if flt.op == "lt":
            return column < flt.value
        return column.ilike(f"%{flt.value}%")

    def _where(self, collection: str, filters: Sequence[Filter]):
        conditions = [self._condition(collection, flt) for flt in filters]
        return and_(*conditions) if conditions else None

    def _embed(self, conn: Connection, collection: str, rows: List[Dict[str, Any]], tree: Dict[str, Dict]) -> None:
        for relation, children in tree.items():
            target, foreign_key = self._relation(collection, relation)
            keys = {row.get(foreign_key) for row in rows if row.get(foreign_key) is not None}
            related: Dict[Any, Dict[str, Any]] = {}
            if keys:
                target_table = self._table(target)
                result = conn.execute(select(target_table).where(target_table.c.id.in_(keys)))
                related_rows = [dict(row) for row in result.mappings()]
                if children:
                    self._embed(conn, target, related_rows, children)
                related = {row["id"]: row for row in related_rows}
            for row in rows:
                row[relation] = related.get(row.get(foreign_key))

    def select(
        self,
        collection: str,
        *,
        filters: Sequence[Filter] = (),
        embed: Sequence[str] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        table = self._table(collection)
        stmt = select(table)
        where = self._where(collection, filters)
        if where is not None:
            stmt = stmt.where(where)
        if order_by:
            column = self._column(table, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)

        try:
            with self.engine.connect() as conn:
                rows = [dict(row) for row in conn.execute(stmt).mappings()]
                if embed and rows:
                    self._embed(conn, collection, rows, _embed_tree(embed))
        except SQLAlchemyError as exc:
            raise DataStoreError(f"Select on '{collection}' failed: {exc}") from exc
        return rows

    def count(self, collection: str, filters: Sequence[Filter] = ()) -> int:
        table = self._table(collection)
        stmt = select(func.count()).select_from(table)
        where = self._where(collection, filters)
        if where is not None:
            stmt = stmt.where(where)
        try:
            with self.engine.connect() as conn:
                return conn.execute(stmt).scalar() or 0
        except SQLAlchemyError as exc:
            raise DataStoreError(f"Count on '{collection}' failed: {exc}") from exc

    def insert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        table = self._table(collection)
        unknown = sorted(set(record) - set(table.c.keys()))
        if unknown:
            raise DataStoreError(f"Unknown column(s) {unknown} for '{collection}'")

        values = dict(record)
        values.setdefault("id", str(uuid.uuid4()))
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(table).values(**values))
                row = conn.execute(select(table).where(table.c.id == values["id"])).mappings().first()
        except SQLAlchemyError as exc:
            raise DataStoreError(f"Insert into '{collection}' failed: {exc}") from exc
        return dict(row)

    def update(self, collection: str, filters: Sequence[Filter], patch: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not filters:
            raise DataStoreError("Refusing to update without filters")
        table = self._table(collection)
        unknown = sorted(set(patch) - set(table.c.keys()))
        if unknown:
            raise DataStoreError(f"Unknown column(s) {unknown} for '{collection}'")

        where = self._where(collection, filters)
        try:
            with self.engine.begin() as conn:
                ids = [row[0] for row in conn.execute(select(table.c.id).where(where))]
                if not ids:
                    return []
                conn.execute(update(table).where(table.c.id.in_(ids)).values(**patch))
                result = conn.execute(select(table).where(table.c.id.in_(ids)))
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as exc:
            raise DataStoreError(f"Update on '{collection}' failed: {exc}") from exc

    def delete(self, collection: str, filters: Sequence[Filter]) -> int:
        if not filters:
            raise DataStoreError("Refusing to delete without filters")
        table = self._table(collection)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(delete(table).where(self._where(collection, filters)))
                return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise DataStoreError(f"Delete on '{collection}' failed: {exc}") from exc


# Column (possibly through a relation) that ties a collection to a subaccount.
SCOPE_COLUMNS = {
    "subaccounts": "id",
    "plans": "subaccount_id",
    "members": "subaccount_id",
    "expenses": "subaccount_id",
    "member_imports": "subaccount_id",
    "payments": "member.subaccount_id",
}


class ScopedDataStore:
    """
    Tenant-bound view over a DataStore.

    It cannot be built without a scope, adds the scope filter to every read,
    update and delete, and rejects inserts that would land outside the scope.
    """

    def __init__(self, store: DataStore, scope: TenantScope):
        if not isinstance(scope, TenantScope):
            raise ScopeViolationError("A TenantScope is required for scoped data access")
        self.store = store
        self.scope = scope

    def _scope_filter(self, collection: str) -> Filter:
        column = SCOPE_COLUMNS.get(collection)
        if column is None:
            raise ScopeViolationError(f"Collection '{collection}' is not tenant scoped")
        return in_(column, self.scope.subaccount_ids)

    def select(self, collection: str, *, filters: Sequence[Filter] = (), **kwargs) -> List[Dict[str, Any]]:
        return self.store.select(collection, filters=(self._scope_filter(collection), *filters), **kwargs)

    def select_one(self, collection: str, *, filters: Sequence[Filter] = (), embed: Sequence[str] = ()) -> Optional[Dict[str, Any]]:
        rows = self.select(collection, filters=filters, embed=embed, limit=1)
        return rows[0] if rows else None

    def count(self, collection: str, filters: Sequence[Filter] = ()) -> int:
        return self.store.count(collection, (self._scope_filter(collection), *filters))

    def insert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        column = SCOPE_COLUMNS.get(collection)
        if column is None:
            raise ScopeViolationError(f"Collection '{collection}' is not tenant scoped")

        relation, _, rest = column.partition(".")
        if rest:
            target, foreign_key = RELATIONS[collection][relation]
            parent = self.select_one(target, filters=(eq("id", record.get(foreign_key)),))
            if parent is None:
                raise ScopeViolationError(
                    f"{collection}.{foreign_key}={record.get(foreign_key)!r} is outside the tenant scope"
                )
            return self.store.insert(collection, record)

        value = record.get(column)
        if value is None and self.scope.is_single:
            record = {**record, column: self.scope.primary}
        elif not self.scope.contains(value):
            raise ScopeViolationError(f"{collection}.{column}={value!r} is outside the tenant scope")
        return self.store.insert(collection, record)

    def update(self, collection: str, filters: Sequence[Filter], patch: Dict[str, Any]) -> List[Dict[str, Any]]:
        column = SCOPE_COLUMNS.get(collection)
        if column in patch and not self.scope.contains(patch[column]):
            raise ScopeViolationError(f"Cannot move {collection} records outside the tenant scope")
        return self.store.update(collection, (self._scope_filter(collection), *filters), patch)

    def delete(self, collection: str, filters: Sequence[Filter]) -> int:
        return self.store.delete(collection, (self._scope_filter(collection), *filters))
