from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from sqlalchemy import Table, and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import async_sessionmaker
from ordersync.database import Base
from ordersync.models import integrations, orders  # noqa: F401
from ordersync.utils.logger import get_loggers
logger = get_loggers("OrderStore")

FILTER_OPS = ("eq", "in", "gte", "lte", "ilike")


@dataclass
class Pagination:
    limit: Optional[int] = None
    offset: int = 0


@dataclass
class SelectResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0


def parse_filter_key(key: str) -> Tuple[List[str], str]:
    """``"a|b__ilike"`` -> (["a", "b"], "ilike"); bare column names mean ``eq``."""
    column_part, sep, op = key.rpartition("__")
    if not sep or op not in FILTER_OPS:
        column_part, op = key, "eq"
    return column_part.split("|"), op


def _compare(actual: Any, op: str, expected: Any) -> bool:
    if op == "eq":
        return actual == expected
    if op == "in":
        return actual in set(expected)
    if actual is None:
        return False
    if op == "gte":
        return actual >= expected
    if op == "lte":
        return actual <= expected
    if op == "ilike":
        return str(expected).lower() in str(actual).lower()
    raise ValueError(f"Unsupported filter operator: {op}")


def row_matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    """In-process evaluation of the store filter language."""
    for key, expected in (filters or {}).items():
        columns, op = parse_filter_key(key)
        if not any(_compare(row.get(c), op, expected) for c in columns):
            return False
    return True


def _plain(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: float(v) if isinstance(v, Decimal) else v for k, v in row.items()}


class OrderStore(ABC):
    """Persisted store verbs used by the sync core."""

    @abstractmethod
    async def select(self, table: str, filters: Optional[Dict[str, Any]] = None,
                     pagination: Optional[Pagination] = None,
                     order_by: Optional[str] = None) -> SelectResult:
        ...

    @abstractmethod
    async def upsert(self, table: str, rows: List[Dict[str, Any]],
                     conflict_key: Union[str, Sequence[str]],
                     only_if_changed: Optional[str] = None) -> int:
        ...

    @abstractmethod
    async def update(self, table: str, filters: Dict[str, Any], patch: Dict[str, Any]) -> int:
        ...


def conflict_columns(conflict_key: Union[str, Sequence[str]]) -> List[str]:
    if isinstance(conflict_key, str):
        return [c.strip() for c in conflict_key.split(",") if c.strip()]
    return list(conflict_key)


class SqlAlchemyStore(OrderStore):
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    def _table(self, name: str) -> Table:
        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise ValueError(f"Unknown table: {name}")

    @staticmethod
    def _operator(column, op: str, value: Any):
        if op == "eq":
            return column.is_(None) if value is None else column == value
        if op == "in":
            return column.in_(list(value))
        if op == "gte":
            return column >= value
        if op == "lte":
            return column <= value
        if op == "ilike":
            return column.ilike(f"%{value}%")
        raise ValueError(f"Unsupported filter operator: {op}")

    def _where(self, table: Table, filters: Optional[Dict[str, Any]]) -> List[Any]:
        clauses = []
        for key, value in (filters or {}).items():
            columns, op = parse_filter_key(key)
            parts = [self._operator(table.c[c], op, value) for c in columns]
            clauses.append(or_(*parts) if len(parts) > 1 else parts[0])
        return clauses

    async def select(self, table: str, filters: Optional[Dict[str, Any]] = None,
                     pagination: Optional[Pagination] = None,
                     order_by: Optional[str] = None) -> SelectResult:
        t = self._table(table)
        where = and_(*self._where(t, filters)) if filters else None
        stmt = select(t)
        count_stmt = select(func.count()).select_from(t)
        if where is not None:
            stmt = stmt.where(where)
            count_stmt = count_stmt.where(where)
        if order_by:
            column = t.c[order_by.lstrip("-")]
            stmt = stmt.order_by(column.desc() if order_by.startswith("-") else column.asc())
        if pagination:
            if pagination.limit is not None:
                stmt = stmt.limit(pagination.limit)
            stmt = stmt.offset(pagination.offset)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = [_plain(dict(r._mapping)) for r in result]
            total = (await session.execute(count_stmt)).scalar_one()
        return SelectResult(rows=rows, total=int(total))

    async def upsert(self, table: str, rows: List[Dict[str, Any]],
                     conflict_key: Union[str, Sequence[str]],
                     only_if_changed: Optional[str] = None) -> int:
        if not rows:
            return 0
        t = self._table(table)
        keys = conflict_columns(conflict_key)
        stmt = insert(t).values(rows)
        set_ = {c: stmt.excluded[c] for c in rows[0] if c not in keys}
        where = None
        if only_if_changed:
            where = t.c[only_if_changed].is_distinct_from(stmt.excluded[only_if_changed])
        if set_:
            stmt = stmt.on_conflict_do_update(index_elements=keys, set_=set_, where=where)
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=keys)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        logger.debug(f"Upserted {result.rowcount} rows into {table}")
        return result.rowcount

    async def update(self, table: str, filters: Dict[str, Any], patch: Dict[str, Any]) -> int:
        if not filters:
            raise ValueError("update requires at least one filter")
        t = self._table(table)
        stmt = update(t).where(and_(*self._where(t, filters))).values(**patch)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount

