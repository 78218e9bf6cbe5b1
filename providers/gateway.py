"""
Remote Data Gateway Contract

Everything the services layer knows about the backend goes through
`DataGateway`: the auth service, object storage, composable table queries,
remote procedures and row-level change feeds.

Queries are built fluently and executed by a terminal coroutine::

    page = await (
        gateway.table("content_items")
        .ilike("model_label", "diffusion")
        .or_(ilike("body", text), ilike("category", text))
        .order("created_at", descending=True)
        .range(0, 9)
        .select()
    )
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from core.auth import AuthService
from providers.storage_provider import StorageProvider


@dataclass(frozen=True)
class Predicate:
    """One filter term. `and`/`or` terms hold child predicates in `value`."""

    op: str
    column: Optional[str] = None
    value: Any = None


def eq(column: str, value: Any) -> Predicate:
    return Predicate("eq", column, value)


def neq(column: str, value: Any) -> Predicate:
    return Predicate("neq", column, value)


def ilike(column: str, text: str) -> Predicate:
    """Case-insensitive substring match"""
    return Predicate("ilike", column, text)


def in_(column: str, values: Iterable[Any]) -> Predicate:
    return Predicate("in", column, tuple(values))


def and_(*predicates: Predicate) -> Predicate:
    return Predicate("and", None, tuple(predicates))


def or_(*predicates: Predicate) -> Predicate:
    return Predicate("or", None, tuple(predicates))


class TableQuery:
    """Filter, ordering and range state for one table, bound to a gateway"""

    def __init__(self, gateway: "DataGateway", table: str):
        self.gateway = gateway
        self.table = table
        self.predicates: List[Predicate] = []
        self.ordering: List[Tuple[str, bool]] = []
        self.offset: Optional[int] = None
        self.limit_count: Optional[int] = None

    # Composition

    def where(self, predicate: Predicate) -> "TableQuery":
        self.predicates.append(predicate)
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        return self.where(eq(column, value))

    def neq(self, column: str, value: Any) -> "TableQuery":
        return self.where(neq(column, value))

    def ilike(self, column: str, text: str) -> "TableQuery":
        return self.where(ilike(column, text))

    def in_(self, column: str, values: Iterable[Any]) -> "TableQuery":
        return self.where(in_(column, values))

    def or_(self, *predicates: Predicate) -> "TableQuery":
        return self.where(or_(*predicates))

    def order(self, column: str, descending: bool = False) -> "TableQuery":
        self.ordering.append((column, descending))
        return self

    def range(self, start: int, end: int) -> "TableQuery":
        """Restrict to rows `start..end`, both inclusive"""
        self.offset = start
        self.limit_count = max(end - start + 1, 0)
        return self

    def limit(self, count: int) -> "TableQuery":
        self.limit_count = count
        return self

    # Terminals

    async def select(self) -> List[Any]:
        return await self.gateway.run_select(self)

    async def first(self) -> Optional[Any]:
        self.limit_count = 1
        rows = await self.gateway.run_select(self)
        return rows[0] if rows else None

    async def count(self) -> int:
        return await self.gateway.run_count(self)

    async def insert(self, rows: Sequence[Dict[str, Any]]) -> List[Any]:
        return await self.gateway.run_insert(self, rows)

    async def update(self, values: Dict[str, Any]) -> List[Any]:
        return await self.gateway.run_update(self, values)

    async def delete(self) -> int:
        return await self.gateway.run_delete(self)


class DataGateway(ABC):
    """Abstract backend: auth, storage, tables, procedures and change feeds"""

    auth: AuthService
    storage: StorageProvider

    def table(self, name: str) -> TableQuery:
        return TableQuery(self, name)

    @abstractmethod
    async def run_select(self, query: TableQuery) -> List[Any]:
        pass

    @abstractmethod
    async def run_count(self, query: TableQuery) -> int:
        pass

    @abstractmethod
    async def run_insert(self, query: TableQuery, rows: Sequence[Dict[str, Any]]) -> List[Any]:
        pass

    @abstractmethod
    async def run_update(self, query: TableQuery, values: Dict[str, Any]) -> List[Any]:
        pass

    @abstractmethod
    async def run_delete(self, query: TableQuery) -> int:
        pass

    @abstractmethod
    async def rpc(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Call a server-side procedure"""
        pass

    @abstractmethod
    def subscribe(
        self,
        table: str,
        row_filter: Optional[Dict[str, Any]] = None,
        on_insert: Optional[Callable[[Any], Any]] = None,
        on_update: Optional[Callable[[Any], Any]] = None,
    ) -> Callable[[], None]:
        """Subscribe to row changes, returning an unsubscribe function"""
        pass
