"""Record-oriented client over the app database.

Every table is addressed by name ('todos', 'assignable_users', 'user_status')
and rows travel as plain dicts, so callers never hold ORM objects across
awaits. Successful mutations are published to per-table subscribers as
ChangeEvent values; subscribers are expected to treat every event as
"something changed, refetch" rather than as a patch to apply.
"""
from typing import Any, Callable, Iterable, Optional
from dataclasses import dataclass
from sqlmodel import select
from sqlalchemy import update as sqlalchemy_update
from sqlalchemy import delete as sqlalchemy_delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import asyncio
import inspect
import logging

from .db import async_session
from .errors import ConstraintViolation, StoreQueryFailure
from .models import TABLES

logger = logging.getLogger(__name__)

INSERT = 'INSERT'
UPDATE = 'UPDATE'
DELETE = 'DELETE'


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    kind: str
    record: dict


class Subscription:
    """A live change channel for one table.

    Use as an async context manager: the channel is registered on enter and
    unregistered (with its pump task cancelled) on exit, whatever happens in
    between. Events are queued and handed to `callback` one at a time; the
    callback may be a plain function or a coroutine function.
    """

    def __init__(self, store: 'RecordStore', table: str, callback: Callable[[ChangeEvent], Any]):
        self.store = store
        self.table = table
        self.callback = callback
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pump: Optional[asyncio.Task] = None

    async def __aenter__(self) -> 'Subscription':
        self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def active(self) -> bool:
        return self._pump is not None and not self._pump.done()

    def open(self) -> None:
        if self.active:
            return
        self.store._subscribers.setdefault(self.table, []).append(self)
        self._pump = asyncio.create_task(self._run())
        logger.debug('subscription opened on %s', self.table)

    async def close(self) -> None:
        subs = self.store._subscribers.get(self.table, [])
        if self in subs:
            subs.remove(self)
        pump, self._pump = self._pump, None
        if pump is not None and not pump.done():
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
        logger.debug('subscription closed on %s', self.table)

    def deliver(self, event: ChangeEvent) -> None:
        self._queue.put_nowait(event)

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                res = self.callback(event)
                if inspect.isawaitable(res):
                    await res
            except Exception:
                # keep the channel alive; the next event triggers another attempt
                logger.exception('change callback failed for %s %s', event.table, event.kind)


class RecordStore:
    """Async table client: select/insert/update/delete/upsert plus subscribe.

    All operations raise StoreQueryFailure when the database rejects them or
    when they name an unknown table or column.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or async_session
        self._subscribers: dict[str, list[Subscription]] = {}

    # -- helpers -----------------------------------------------------------

    def _model(self, operation: str, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise StoreQueryFailure(operation, table, 'unknown table') from None

    def _check_columns(self, operation: str, table: str, model, names: Iterable[str]) -> None:
        for name in names:
            if name not in model.model_fields:
                raise StoreQueryFailure(operation, table, f'unknown column {name!r}')

    def _filtered(self, stmt, operation: str, table: str, model, eq: dict):
        self._check_columns(operation, table, model, eq)
        for name, value in eq.items():
            col = getattr(model, name)
            stmt = stmt.where(col.is_(None)) if value is None else stmt.where(col == value)
        return stmt

    def _publish(self, table: str, kind: str, records: list[dict]) -> None:
        subs = list(self._subscribers.get(table, []))
        if not subs:
            return
        for record in records:
            event = ChangeEvent(table=table, kind=kind, record=record)
            for sub in subs:
                sub.deliver(event)

    # -- primitives --------------------------------------------------------

    async def select(self, table: str, order_by: str | None = None, descending: bool = False, **eq) -> list[dict]:
        model = self._model('select', table)
        stmt = self._filtered(select(model), 'select', table, model, eq)
        if order_by:
            self._check_columns('select', table, model, [order_by])
            col = getattr(model, order_by)
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        try:
            async with self._session_factory() as sess:
                res = await sess.exec(stmt)
                rows = res.all()
        except SQLAlchemyError as exc:
            raise StoreQueryFailure('select', table, str(exc)) from exc
        return [row.model_dump() for row in rows]

    async def get(self, table: str, record_id: str) -> Optional[dict]:
        rows = await self.select(table, id=record_id)
        return rows[0] if rows else None

    async def insert(self, table: str, rows: dict | list[dict]) -> list[dict]:
        model = self._model('insert', table)
        if isinstance(rows, dict):
            rows = [rows]
        for row in rows:
            self._check_columns('insert', table, model, row)
        objs = [model(**row) for row in rows]
        try:
            async with self._session_factory() as sess:
                for obj in objs:
                    sess.add(obj)
                await sess.commit()
                for obj in objs:
                    await sess.refresh(obj)
        except IntegrityError as exc:
            raise ConstraintViolation('insert', table, str(exc)) from exc
        except SQLAlchemyError as exc:
            raise StoreQueryFailure('insert', table, str(exc)) from exc
        records = [obj.model_dump() for obj in objs]
        self._publish(table, INSERT, records)
        return records

    async def update(self, table: str, patch: dict, **eq) -> list[dict]:
        """Apply `patch` to every row matching `eq`; return the updated rows."""
        model = self._model('update', table)
        self._check_columns('update', table, model, patch)
        if not eq:
            raise StoreQueryFailure('update', table, 'refusing to update without a filter')
        tbl = model.__table__
        stmt = self._filtered(sqlalchemy_update(tbl), 'update', table, model, eq)
        stmt = stmt.values(**patch).returning(*tbl.c)
        try:
            async with self._session_factory() as sess:
                res = await sess.exec(stmt)
                records = [dict(r) for r in res.mappings().all()]
                await sess.commit()
        except SQLAlchemyError as exc:
            raise StoreQueryFailure('update', table, str(exc)) from exc
        self._publish(table, UPDATE, records)
        return records

    async def delete(self, table: str, **eq) -> list[dict]:
        """Delete every row matching `eq`; return the removed rows."""
        model = self._model('delete', table)
        if not eq:
            raise StoreQueryFailure('delete', table, 'refusing to delete without a filter')
        tbl = model.__table__
        stmt = self._filtered(sqlalchemy_delete(tbl), 'delete', table, model, eq)
        stmt = stmt.returning(*tbl.c)
        try:
            async with self._session_factory() as sess:
                res = await sess.exec(stmt)
                records = [dict(r) for r in res.mappings().all()]
                await sess.commit()
        except SQLAlchemyError as exc:
            raise StoreQueryFailure('delete', table, str(exc)) from exc
        self._publish(table, DELETE, records)
        return records

    async def upsert(self, table: str, row: dict, on_conflict: str) -> dict:
        """Insert `row`, or update the existing row sharing its `on_conflict` value."""
        model = self._model('upsert', table)
        self._check_columns('upsert', table, model, list(row) + [on_conflict])
        if on_conflict not in row:
            raise StoreQueryFailure('upsert', table, f'row has no value for {on_conflict!r}')
        tbl = model.__table__
        key = row[on_conflict]
        values = {k: v for k, v in row.items() if k not in ('id', on_conflict)}
        # Two attempts: a concurrent insert of the same key turns our insert
        # into an IntegrityError, after which the update branch applies.
        for attempt in range(2):
            try:
                async with self._session_factory() as sess:
                    records = []
                    if values:
                        stmt = sqlalchemy_update(tbl).where(getattr(model, on_conflict) == key)
                        res = await sess.exec(stmt.values(**values).returning(*tbl.c))
                        records = [dict(r) for r in res.mappings().all()]
                    else:
                        res = await sess.exec(select(model).where(getattr(model, on_conflict) == key))
                        records = [r.model_dump() for r in res.all()]
                    if records:
                        await sess.commit()
                        kind = UPDATE
                    else:
                        obj = model(**row)
                        sess.add(obj)
                        await sess.commit()
                        await sess.refresh(obj)
                        records = [obj.model_dump()]
                        kind = INSERT
            except IntegrityError as exc:
                if attempt == 0:
                    logger.info('upsert on %s raced on %s=%r; retrying as update', table, on_conflict, key)
                    continue
                raise StoreQueryFailure('upsert', table, str(exc)) from exc
            except SQLAlchemyError as exc:
                raise StoreQueryFailure('upsert', table, str(exc)) from exc
            self._publish(table, kind, records)
            return records[0]
        raise StoreQueryFailure('upsert', table, 'conflict could not be resolved')

    def subscribe(self, table: str, callback: Callable[[ChangeEvent], Any]) -> Subscription:
        self._model('subscribe', table)
        return Subscription(self, table, callback)

    def subscriber_count(self, table: str) -> int:
        return len(self._subscribers.get(table, []))


# Process-wide store used by the HTTP layer. Route handlers receive it via
# Depends(get_store) so tests can substitute a failing store.
store = RecordStore()


def get_store() -> RecordStore:
    return store
