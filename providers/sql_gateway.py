"""
SQL-backed Data Gateway.

This module implements the `DataGateway` contract on top of SQLModel tables
and SQLAlchemy async sessions. It is the only place where gateway queries
touch the database.

Key Components:
- `SQLGateway`: Compiles `TableQuery` objects into SQLAlchemy statements,
  executes them in short-lived sessions and publishes committed INSERT and
  UPDATE rows to the change feed.
- Procedure registry: server-side procedures are plain coroutines registered
  under a name with `@procedure(...)`. Each runs inside one session and one
  transaction, so the counters a procedure maintains change together or not
  at all.
- `TABLES`: The table names exposed through `gateway.table(name)`.

Error Handling:
- Every `SQLAlchemyError` is logged and re-raised as `GatewayError` (queries
  and mutations) or `RemoteProcedureError` (procedures). Nothing is retried.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Type

from sqlalchemy import and_, case, delete, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from core.auth import AuthService
from core.content import NotificationKind
from core.exceptions import GatewayError, RemoteProcedureError
from core.models import (
    Comment,
    ContentItem,
    Follow,
    GeneratorModel,
    Like,
    Message,
    Notification,
    Profile,
)
from providers.change_feed import INSERT, UPDATE, ChangeFeed
from providers.gateway import DataGateway, Predicate, TableQuery
from providers.storage_provider import StorageProvider

logger = logging.getLogger(__name__)

TABLES: Dict[str, Type[SQLModel]] = {
    "profiles": Profile,
    "content_items": ContentItem,
    "likes": Like,
    "follows": Follow,
    "comments": Comment,
    "messages": Message,
    "notifications": Notification,
    "generator_models": GeneratorModel,
}


# ---------------------------------------------------------------------------
# Procedures
# ---------------------------------------------------------------------------


@dataclass
class ProcedureCall:
    """Session, parameters and pending change events of one procedure run"""

    name: str
    session: AsyncSession
    params: Dict[str, Any]
    changes: List[Tuple[str, str, Any]] = field(default_factory=list)

    def require(self, key: str) -> Any:
        value = self.params.get(key)
        if value is None or value == "":
            raise RemoteProcedureError(self.name, f"Missing parameter '{key}'")
        return value

    def changed(self, table: str, event: str, row: Any) -> None:
        self.changes.append((table, event, row))


ProcedureFn = Callable[[ProcedureCall], Awaitable[Any]]

PROCEDURES: Dict[str, ProcedureFn] = {}


def procedure(name: str):
    """Register a coroutine as a remote procedure"""

    def decorator(func: ProcedureFn) -> ProcedureFn:
        PROCEDURES[name] = func
        return func

    return decorator


def _clamped(column, delta: int):
    # Counters never go below zero
    return case((column + delta < 0, 0), else_=column + delta)


async def _adjust_like_count(call: ProcedureCall, delta: int) -> int:
    item_id = call.require("item_id")
    conn = await call.session.connection()
    result = await conn.execute(
        update(ContentItem)
        .where(ContentItem.id == item_id)
        .values(like_count=_clamped(ContentItem.like_count, delta))
    )
    if result.rowcount == 0:
        raise RemoteProcedureError(call.name, f"Content item {item_id} not found")

    item = await call.session.get(ContentItem, item_id, populate_existing=True)
    call.changed("content_items", UPDATE, item)
    return item.like_count


@procedure("increment_like_count")
async def increment_like_count(call: ProcedureCall) -> int:
    return await _adjust_like_count(call, 1)


@procedure("decrement_like_count")
async def decrement_like_count(call: ProcedureCall) -> int:
    return await _adjust_like_count(call, -1)


@procedure("create_notification")
async def create_notification(call: ProcedureCall) -> str:
    kind = call.require("kind")
    if kind not in {k.value for k in NotificationKind}:
        raise RemoteProcedureError(call.name, f"Unknown notification kind '{kind}'")

    notification = Notification(
        user_id=call.require("recipient"),
        kind=kind,
        title=call.require("title"),
        body=call.params.get("body") or "",
        related_id=call.params.get("related_id"),
    )
    call.session.add(notification)
    await call.session.flush()
    call.changed("notifications", INSERT, notification)
    return notification.id


@procedure("mark_notifications_read")
async def mark_notifications_read(call: ProcedureCall) -> int:
    ids = list(call.params.get("ids") or [])
    if not ids:
        return 0

    statement = select(Notification).where(
        Notification.id.in_(ids), Notification.is_read == False  # noqa: E712
    )
    if call.params.get("user_id"):
        statement = statement.where(Notification.user_id == call.params["user_id"])

    rows = (await call.session.exec(statement)).all()
    for row in rows:
        row.is_read = True
        call.session.add(row)
        call.changed("notifications", UPDATE, row)
    return len(rows)


@procedure("toggle_follow")
async def toggle_follow(call: ProcedureCall) -> Dict[str, Any]:
    """Insert or delete a follow edge and move both counters with it"""
    follower_id = call.require("follower_id")
    following_id = call.require("following_id")
    session = call.session

    existing = (
        await session.exec(
            select(Follow).where(
                Follow.follower_id == follower_id, Follow.following_id == following_id
            )
        )
    ).first()

    if existing:
        await session.delete(existing)
        delta = -1
    else:
        edge = Follow(follower_id=follower_id, following_id=following_id)
        session.add(edge)
        call.changed("follows", INSERT, edge)
        delta = 1
    await session.flush()

    conn = await session.connection()
    for profile_id, values in (
        (follower_id, {"following_count": _clamped(Profile.following_count, delta)}),
        (following_id, {"followers_count": _clamped(Profile.followers_count, delta)}),
    ):
        result = await conn.execute(
            update(Profile).where(Profile.id == profile_id).values(**values)
        )
        if result.rowcount == 0:
            raise RemoteProcedureError(call.name, f"Profile {profile_id} not found")

    target = await session.get(Profile, following_id, populate_existing=True)
    follower = await session.get(Profile, follower_id, populate_existing=True)
    call.changed("profiles", UPDATE, target)
    call.changed("profiles", UPDATE, follower)
    return {
        "following": delta > 0,
        "followers_count": target.followers_count,
        "following_count": follower.following_count,
    }


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class SQLGateway(DataGateway):
    """DataGateway over SQLModel tables"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        auth: AuthService,
        storage: StorageProvider,
        change_feed: Optional[ChangeFeed] = None,
    ):
        self.session_factory = session_factory
        self.auth = auth
        self.storage = storage
        self.change_feed = change_feed or ChangeFeed()

    # Query compilation

    @staticmethod
    def _model(table: str) -> Type[SQLModel]:
        model = TABLES.get(table)
        if model is None:
            raise GatewayError(f"table:{table}", "Unknown table")
        return model

    @staticmethod
    def _column(model: Type[SQLModel], name: str):
        if name not in model.model_fields:
            raise GatewayError(f"table:{model.__tablename__}", f"Unknown column '{name}'")
        return getattr(model, name)

    def _compile(self, model: Type[SQLModel], predicate: Predicate):
        if predicate.op == "and":
            return and_(*(self._compile(model, p) for p in predicate.value))
        if predicate.op == "or":
            return or_(*(self._compile(model, p) for p in predicate.value))

        column = self._column(model, predicate.column)
        if predicate.op == "eq":
            return column.is_(None) if predicate.value is None else column == predicate.value
        if predicate.op == "neq":
            return column.is_not(None) if predicate.value is None else column != predicate.value
        if predicate.op == "ilike":
            escaped = (
                str(predicate.value)
                .replace("\\", "\\\\")
                .replace("%", "\\%")
                .replace("_", "\\_")
            )
            return column.ilike(f"%{escaped}%", escape="\\")
        if predicate.op == "in":
            return column.in_(list(predicate.value))
        raise GatewayError(f"table:{model.__tablename__}", f"Unknown operator '{predicate.op}'")

    def _where(self, statement, model: Type[SQLModel], query: TableQuery):
        clauses = [self._compile(model, p) for p in query.predicates]
        return statement.where(*clauses) if clauses else statement

    @asynccontextmanager
    async def _session(self, operation: str):
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Gateway operation {operation} failed: {e}")
            raise GatewayError(operation, str(e))

    async def _publish(self, changes: Sequence[Tuple[str, str, Any]]) -> None:
        for table, event, row in changes:
            await self.change_feed.publish(table, event, row)

    # Terminals

    async def run_select(self, query: TableQuery) -> List[Any]:
        model = self._model(query.table)
        statement = self._where(select(model), model, query)
        for name, descending in query.ordering:
            column = self._column(model, name)
            statement = statement.order_by(column.desc() if descending else column.asc())
        if query.offset:
            statement = statement.offset(query.offset)
        if query.limit_count is not None:
            statement = statement.limit(query.limit_count)

        async with self._session(f"select:{query.table}") as session:
            result = await session.exec(statement)
            return list(result.all())

    async def run_count(self, query: TableQuery) -> int:
        model = self._model(query.table)
        statement = self._where(select(func.count()).select_from(model), model, query)
        async with self._session(f"count:{query.table}") as session:
            result = await session.exec(statement)
            return int(result.one())

    async def run_insert(self, query: TableQuery, rows: Sequence[Dict[str, Any]]) -> List[Any]:
        model = self._model(query.table)
        for row in rows:
            for name in row:
                self._column(model, name)
        instances = [model(**row) for row in rows]

        async with self._session(f"insert:{query.table}") as session:
            session.add_all(instances)
            await session.commit()
            for instance in instances:
                await session.refresh(instance)

        await self._publish([(query.table, INSERT, instance) for instance in instances])
        return instances

    async def run_update(self, query: TableQuery, values: Dict[str, Any]) -> List[Any]:
        model = self._model(query.table)
        if not query.predicates:
            raise GatewayError(f"update:{query.table}", "Refusing to update without a filter")
        for name in values:
            self._column(model, name)

        async with self._session(f"update:{query.table}") as session:
            rows = list((await session.exec(self._where(select(model), model, query))).all())
            for row in rows:
                for name, value in values.items():
                    setattr(row, name, value)
                session.add(row)
            await session.commit()

        await self._publish([(query.table, UPDATE, row) for row in rows])
        return rows

    async def run_delete(self, query: TableQuery) -> int:
        model = self._model(query.table)
        if not query.predicates:
            raise GatewayError(f"delete:{query.table}", "Refusing to delete without a filter")

        async with self._session(f"delete:{query.table}") as session:
            conn = await session.connection()
            result = await conn.execute(self._where(delete(model), model, query))
            await session.commit()
            return result.rowcount

    async def rpc(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        handler = PROCEDURES.get(name)
        if handler is None:
            raise RemoteProcedureError(name, "Unknown procedure")

        try:
            async with self.session_factory() as session:
                call = ProcedureCall(name, session, dict(params or {}))
                result = await handler(call)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Procedure {name} failed: {e}")
            raise RemoteProcedureError(name, str(e))

        logger.debug(f"Procedure {name} completed", extra={"procedure": name})
        await self._publish(call.changes)
        return result

    def subscribe(
        self,
        table: str,
        row_filter: Optional[Dict[str, Any]] = None,
        on_insert: Optional[Callable[[Any], Any]] = None,
        on_update: Optional[Callable[[Any], Any]] = None,
    ) -> Callable[[], None]:
        self._model(table)
        return self.change_feed.subscribe(table, row_filter, on_insert, on_update)
