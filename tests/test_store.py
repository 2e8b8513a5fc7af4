import asyncio
import pytest

from layer_todos.errors import ConstraintViolation, StoreQueryFailure
from layer_todos.db import init_db
from layer_todos.models import TABLES, Todo
from layer_todos.store import DELETE, INSERT, UPDATE

pytestmark = pytest.mark.asyncio


async def _settle(predicate, timeout=2.0):
    """Yield to the loop until predicate() is true (subscription pumps run async)."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError('condition not reached')
        await asyncio.sleep(0.01)


async def test_insert_fills_defaults(store):
    row = (await store.insert('todos', {'text': 'write tests'}))[0]
    assert row['id']
    assert row['completed'] is False
    assert row['in_backlog'] is False
    assert row['parent_id'] is None
    assert row['created_at'] is not None


async def test_select_filters_and_orders(store, add_todo):
    a = await add_todo('a', assigned_to='Alice', in_backlog=True)
    await add_todo('b', assigned_to='Bob', in_backlog=True)
    c = await add_todo('c', assigned_to='Alice', in_backlog=True)
    await add_todo('d')
    rows = await store.select('todos', order_by='created_at', in_backlog=True, assigned_to='Alice')
    assert [r['id'] for r in rows] == [a['id'], c['id']]
    rows = await store.select('todos', order_by='created_at', descending=True, in_backlog=True, assigned_to='Alice')
    assert [r['id'] for r in rows] == [c['id'], a['id']]


async def test_select_none_filter_matches_null(store, chain):
    root, _, _ = chain
    rows = await store.select('todos', parent_id=None)
    assert [r['id'] for r in rows] == [root['id']]


async def test_update_returns_only_matching_rows(store, chain):
    root, child, _ = chain
    rows = await store.update('todos', {'notes': 'checked'}, parent_id=root['id'])
    assert [r['id'] for r in rows] == [child['id']]
    assert rows[0]['notes'] == 'checked'
    assert await store.update('todos', {'notes': 'x'}, id='does-not-exist') == []


async def test_delete_by_parent(store, add_todo):
    root = await add_todo('root')
    await add_todo('a', root)
    await add_todo('b', root)
    removed = await store.delete('todos', parent_id=root['id'])
    assert len(removed) == 2
    assert [r['id'] for r in await store.select('todos')] == [root['id']]


async def test_unknown_table_and_column_are_rejected(store):
    with pytest.raises(StoreQueryFailure):
        await store.select('nope')
    with pytest.raises(StoreQueryFailure):
        await store.select('todos', colour='red')
    with pytest.raises(StoreQueryFailure):
        await store.update('todos', {'colour': 'red'}, id='x')


async def test_unfiltered_update_and_delete_are_refused(store):
    with pytest.raises(StoreQueryFailure):
        await store.update('todos', {'completed': True})
    with pytest.raises(StoreQueryFailure):
        await store.delete('todos')


async def test_database_rejection_becomes_store_failure(store):
    # text is NOT NULL
    with pytest.raises(StoreQueryFailure) as excinfo:
        await store.insert('todos', {'completed': True})
    assert excinfo.value.operation == 'insert'
    assert excinfo.value.table == 'todos'


async def test_upsert_inserts_then_updates(store):
    first = await store.upsert('user_status', {'user_name': 'Alice', 'status_text': 'started'}, on_conflict='user_name')
    second = await store.upsert('user_status', {'user_name': 'Alice', 'status_text': 'halfway'}, on_conflict='user_name')
    assert first['id'] == second['id']
    rows = await store.select('user_status')
    assert len(rows) == 1
    assert rows[0]['status_text'] == 'halfway'


async def test_concurrent_upserts_keep_one_row(store):
    await asyncio.gather(*(
        store.upsert('user_status', {'user_name': 'Carol', 'status_text': f'v{i}'}, on_conflict='user_name')
        for i in range(10)
    ))
    rows = await store.select('user_status', user_name='Carol')
    assert len(rows) == 1


async def test_subscription_receives_every_mutation_kind(store):
    events = []
    async with store.subscribe('todos', events.append):
        row = (await store.insert('todos', {'text': 'watched'}))[0]
        await store.update('todos', {'completed': True}, id=row['id'])
        await store.delete('todos', id=row['id'])
        # other tables are not delivered here
        await store.insert('assignable_users', {'name': 'Dana'})
        await _settle(lambda: len(events) == 3)
    assert [e.kind for e in events] == [INSERT, UPDATE, DELETE]
    assert all(e.table == 'todos' and e.record['id'] == row['id'] for e in events)
    assert store.subscriber_count('todos') == 0


async def test_subscription_survives_failing_callback(store):
    seen = []

    async def callback(event):
        seen.append(event.kind)
        if len(seen) == 1:
            raise RuntimeError('boom')

    async with store.subscribe('todos', callback) as sub:
        await store.insert('todos', {'text': 'one'})
        await store.insert('todos', {'text': 'two'})
        await _settle(lambda: len(seen) == 2)
        assert sub.active
    assert not sub.active


async def test_subscription_closes_when_block_raises(store):
    with pytest.raises(RuntimeError):
        async with store.subscribe('todos', lambda e: None):
            assert store.subscriber_count('todos') == 1
            raise RuntimeError('view went away')
    assert store.subscriber_count('todos') == 0


async def test_duplicate_unique_key_is_a_constraint_violation(store):
    await store.insert('assignable_users', {'name': 'Alice'})
    with pytest.raises(ConstraintViolation) as excinfo:
        await store.insert('assignable_users', {'name': 'Alice'})
    assert excinfo.value.operation == 'insert'
    assert len(await store.select('assignable_users')) == 1


async def test_init_db_is_repeatable(store, add_todo):
    await add_todo('kept')
    await init_db()
    assert [r['text'] for r in await store.select('todos')] == ['kept']
    assert set(TABLES) == {'todos', 'assignable_users', 'user_status'}


async def test_parent_reference_is_not_enforced(store, add_todo):
    assert not Todo.__table__.c.parent_id.foreign_keys
    orphan = await add_todo('orphan', 'no-such-parent')
    assert orphan['parent_id'] == 'no-such-parent'
    parent = await add_todo('parent')
    child = await add_todo('child', parent)
    # parent first, child left pointing at a missing row
    await store.delete('todos', id=parent['id'])
    assert (await store.get('todos', child['id']))['parent_id'] == parent['id']
