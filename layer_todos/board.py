"""View sessions over the todo forest.

A TodoBoard is the server-side counterpart of one open todo list: it knows
its scope (the main list, or one assignee's backlog), holds the most recent
forest, and forwards user intents to the store and cascade helpers. Each
operation is an error boundary: store failures are logged and reported as a
destructive Notification instead of propagating, and every mutation is
followed by a full refetch.
"""
from typing import List, Optional
from contextlib import asynccontextmanager
from pydantic import BaseModel
import asyncio
import logging

from . import cascade
from .cascade import CascadeResult
from .errors import PartialCascadeFailure, StoreQueryFailure, TodoNotFound
from .store import ChangeEvent, RecordStore
from .tree import TodoNode, build_forest

logger = logging.getLogger(__name__)

RETRY_HINT = 'Please try again later'


class Notification(BaseModel):
    title: str
    description: str
    variant: str = 'default'

    @property
    def is_error(self) -> bool:
        return self.variant == 'destructive'


def _error(title: str, description: str = RETRY_HINT) -> Notification:
    return Notification(title=title, description=description, variant='destructive')


class Outcome(BaseModel):
    """What an operation reports back to its caller."""
    notification: Notification
    record: Optional[dict] = None
    cascade: Optional[CascadeResult] = None

    @property
    def ok(self) -> bool:
        return not self.notification.is_error


class TodoBoard:
    """One view of the todo forest.

    With backlog_of=None the board shows the main list (todos not in any
    backlog); otherwise it shows the backlog of that assignee, and new todos
    are created inside it.
    """

    def __init__(self, store: RecordStore, backlog_of: str | None = None):
        self.store = store
        self.backlog_of = backlog_of
        self.todos: List[TodoNode] = []
        self.version = 0
        self._refreshed = asyncio.Condition()

    @property
    def in_backlog(self) -> bool:
        return self.backlog_of is not None

    def _scope(self) -> dict:
        if self.backlog_of is None:
            return {'in_backlog': False}
        return {'in_backlog': True, 'assigned_to': self.backlog_of}

    # -- reads -------------------------------------------------------------

    async def fetch(self) -> List[TodoNode]:
        """Fetch this board's rows and rebuild the forest. Raises StoreQueryFailure."""
        rows = await self.store.select('todos', order_by='created_at', **self._scope())
        forest = build_forest(rows)
        self.todos = forest
        self.version += 1
        async with self._refreshed:
            self._refreshed.notify_all()
        return forest

    async def refresh(self) -> bool:
        """fetch() that logs failures instead of raising; the old forest stays."""
        try:
            await self.fetch()
        except StoreQueryFailure:
            logger.exception('refetch failed for board %s', self.backlog_of or 'main')
            return False
        return True

    async def wait_for_refresh(self, after_version: int | None = None) -> List[TodoNode]:
        """Block until the forest is rebuilt past `after_version` (default: now)."""
        target = self.version if after_version is None else after_version
        async with self._refreshed:
            await self._refreshed.wait_for(lambda: self.version > target)
        return self.todos

    async def _require(self, todo_id: str) -> dict:
        row = await self.store.get('todos', todo_id)
        if row is None:
            raise TodoNotFound(todo_id)
        return row

    async def descendant_ids(self, todo_id: str) -> List[str]:
        await self._require(todo_id)
        return await cascade.get_descendant_ids(self.store, todo_id)

    # -- live mode ---------------------------------------------------------

    async def _on_change(self, event: ChangeEvent) -> None:
        logger.debug('%s on %s (%s); refetching', event.kind, event.table, event.record.get('id'))
        await self.refresh()

    @asynccontextmanager
    async def live(self):
        """Keep self.todos current while the block runs.

        Opens a subscription on the todos table, refetches once to reconcile,
        and closes the subscription on exit no matter how the block ends.
        """
        async with self.store.subscribe('todos', self._on_change):
            await self.refresh()
            yield self

    # -- operations --------------------------------------------------------

    async def add_todo(self, text: str, parent_id: str | None = None, assigned_to: str | None = None) -> Outcome:
        row = {'text': text, 'parent_id': parent_id, 'in_backlog': self.in_backlog,
               'assigned_to': self.backlog_of if self.backlog_of is not None else assigned_to}
        try:
            if parent_id is not None:
                await self._require(parent_id)
            created = (await self.store.insert('todos', row))[0]
        except StoreQueryFailure:
            logger.exception('failed to add todo %r under %s', text, parent_id)
            return Outcome(notification=_error('Error adding todo'))
        await self.refresh()
        description = 'Sub-todo added successfully' if parent_id else 'Todo added successfully'
        return Outcome(notification=Notification(title='Todo added', description=description), record=created)

    async def _patch(self, todo_id: str, patch: dict, title: str, description: str, error_title: str) -> Outcome:
        try:
            rows = await self.store.update('todos', patch, id=todo_id)
        except StoreQueryFailure:
            logger.exception('failed to update todo %s with %s', todo_id, sorted(patch))
            return Outcome(notification=_error(error_title))
        if not rows:
            raise TodoNotFound(todo_id)
        await self.refresh()
        return Outcome(notification=Notification(title=title, description=description), record=rows[0])

    async def update_text(self, todo_id: str, text: str) -> Outcome:
        return await self._patch(todo_id, {'text': text}, 'Todo updated', 'Task name has been updated', 'Error updating todo')

    async def update_notes(self, todo_id: str, notes: str) -> Outcome:
        return await self._patch(todo_id, {'notes': notes}, 'Notes updated', 'Task notes have been saved', 'Error updating notes')

    async def assign(self, todo_id: str, assignee: str) -> Outcome:
        description = f'Task assigned to {assignee}' if assignee else 'Task is now unassigned'
        return await self._patch(todo_id, {'assigned_to': assignee}, 'Todo assigned', description, 'Error assigning todo')

    async def uncomplete(self, todo_id: str) -> Outcome:
        try:
            rows = await cascade.uncomplete(self.store, todo_id)
        except StoreQueryFailure:
            logger.exception('failed to uncomplete todo %s', todo_id)
            return Outcome(notification=_error('Error uncompleting todo'))
        if not rows:
            raise TodoNotFound(todo_id)
        await self.refresh()
        return Outcome(notification=Notification(title='Todo uncompleted', description='Task has been marked as incomplete'), record=rows[0])

    async def move_to_main_list(self, todo_id: str) -> Outcome:
        """Take a backlog todo out of the backlog. Raises ValueError if it isn't in one."""
        try:
            row = await self._require(todo_id)
        except StoreQueryFailure:
            logger.exception('failed to load todo %s for move', todo_id)
            return Outcome(notification=_error('Error moving todo'))
        if not row.get('in_backlog'):
            raise ValueError('This todo is not in the backlog')
        return await self._patch(todo_id, {'in_backlog': False}, 'Todo moved', 'Task moved to the main list', 'Error moving todo')

    async def _run_cascade(self, todo_id: str, run, success: Notification, error_title: str) -> Outcome:
        result = None
        try:
            await self._require(todo_id)
            result = await run()
            result.raise_for_failure()
        except PartialCascadeFailure as exc:
            logger.error('%s on %s left partial changes: succeeded=%s failed=%s',
                         exc.result.operation, todo_id, exc.result.succeeded_ids, exc.result.failed_ids)
            notification = _error(error_title)
        except StoreQueryFailure:
            logger.exception('%s failed for %s before any change', error_title.lower(), todo_id)
            notification = _error(error_title)
        else:
            notification = success
        # reconcile with whatever landed, including partial cascades
        await self.refresh()
        return Outcome(notification=notification, cascade=result)

    async def delete(self, todo_id: str) -> Outcome:
        return await self._run_cascade(
            todo_id,
            lambda: cascade.cascade_delete(self.store, todo_id),
            Notification(title='Todo deleted', description='Task has been removed'),
            'Error deleting todo',
        )

    async def complete(self, todo_id: str, signature: str) -> Outcome:
        return await self._run_cascade(
            todo_id,
            lambda: cascade.cascade_complete(self.store, todo_id, signature),
            Notification(title='Todo completed',
                         description=f'Task and uncompleted subtasks marked as complete by {signature}'),
            'Error completing todo',
        )
