import sys
import pathlib
import os
import tempfile
import pytest
import pytest_asyncio
import logging as _logging
from sqlalchemy import delete as sqlalchemy_delete

# Point the app at a throwaway SQLite file before layer_todos.db is imported;
# the engine is created from DATABASE_URL at import time.
_DB_DIR = tempfile.mkdtemp(prefix='layer_todos_tests_')
os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"

# Reduce SQLAlchemy logger verbosity during tests
for _name in ('sqlalchemy', 'sqlalchemy.engine', 'sqlalchemy.pool', 'sqlmodel'):
    _logging.getLogger(_name).setLevel(_logging.ERROR)

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from httpx import AsyncClient, ASGITransport

from layer_todos.main import app
from layer_todos.db import init_db, async_session
from layer_todos.errors import StoreQueryFailure
from layer_todos.models import AssignableUser, Todo, UserStatus
from layer_todos.store import RecordStore, get_store


class FlakyStore(RecordStore):
    """RecordStore that rejects chosen operations for chosen ids.

    update/delete fail when their `id` filter is in `fail_on`; select fails
    when its `parent_id` filter is in `fail_on` (a failing child lookup).
    """

    def __init__(self, fail_on=(), fail_ops=('update', 'delete')):
        super().__init__()
        self.fail_on = set(fail_on)
        self.fail_ops = set(fail_ops)

    def _maybe_fail(self, operation, table, key):
        if operation in self.fail_ops and key in self.fail_on:
            raise StoreQueryFailure(operation, table, 'injected failure')

    async def select(self, table, order_by=None, descending=False, **eq):
        self._maybe_fail('select', table, eq.get('parent_id'))
        return await super().select(table, order_by=order_by, descending=descending, **eq)

    async def update(self, table, patch, **eq):
        self._maybe_fail('update', table, eq.get('id'))
        return await super().update(table, patch, **eq)

    async def delete(self, table, **eq):
        self._maybe_fail('delete', table, eq.get('id'))
        return await super().delete(table, **eq)


@pytest.fixture
def flaky_store():
    """Factory fixture: flaky_store(fail_on=[...], fail_ops=[...])."""
    return FlakyStore


@pytest_asyncio.fixture
async def ensure_db():
    await init_db()
    async with async_session() as sess:
        for model in (Todo, AssignableUser, UserStatus):
            await sess.exec(sqlalchemy_delete(model))
        await sess.commit()


@pytest_asyncio.fixture
async def store(ensure_db):
    return RecordStore()


@pytest.fixture
def add_todo(store):
    """Insert one todo row and return it. `parent` may be a row dict or an id."""
    async def _add(text, parent=None, **extra):
        parent_id = parent['id'] if isinstance(parent, dict) else parent
        row = {'text': text, 'parent_id': parent_id, **extra}
        return (await store.insert('todos', row))[0]
    return _add


@pytest_asyncio.fixture
async def chain(add_todo):
    """root -> child -> grandchild, all incomplete."""
    root = await add_todo('root')
    child = await add_todo('child', root)
    grandchild = await add_todo('grandchild', child)
    return root, child, grandchild


@pytest_asyncio.fixture
async def client(ensure_db):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_store, None)
