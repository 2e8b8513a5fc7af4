"""Descendant lookup and the cascading delete/complete operations.

The cascades are multi-row sagas without compensation: each row mutation is
atomic in the store, but a failure part way through leaves the earlier
mutations in place. CascadeResult records exactly which ids were touched so
callers can report or retry the remainder.
"""
from typing import List, Optional
from pydantic import BaseModel, Field
import asyncio
import logging

from .errors import PartialCascadeFailure, StoreQueryFailure
from .store import RecordStore

logger = logging.getLogger(__name__)

TABLE = 'todos'


class CascadeResult(BaseModel):
    operation: str
    target_id: str
    succeeded_ids: List[str] = Field(default_factory=list)
    # descendants left alone on purpose (already completed)
    skipped_ids: List[str] = Field(default_factory=list)
    failed_ids: List[str] = Field(default_factory=list)
    failed_at: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failed_at is None

    @property
    def partial(self) -> bool:
        return not self.ok and bool(self.succeeded_ids)

    def raise_for_failure(self) -> None:
        if not self.ok:
            raise PartialCascadeFailure(self)


async def _child_ids(store: RecordStore, parent_id: str) -> List[str]:
    rows = await store.select(TABLE, order_by='created_at', parent_id=parent_id)
    return [row['id'] for row in rows]


async def get_descendant_ids(store: RecordStore, todo_id: str) -> List[str]:
    """Return every transitive descendant of `todo_id`, level by level.

    All ids of one level are looked up concurrently and joined before the
    next level starts, so the number of sequential round trips equals the
    depth of the subtree. Any failed lookup fails the whole call.
    """
    found: List[str] = []
    seen = {todo_id}
    frontier = [todo_id]
    while frontier:
        levels = await asyncio.gather(*(_child_ids(store, pid) for pid in frontier))
        frontier = []
        for child_ids in levels:
            for child_id in child_ids:
                if child_id in seen:
                    logger.warning('todo %s reached twice below %s; parent links form a cycle', child_id, todo_id)
                    continue
                seen.add(child_id)
                found.append(child_id)
                frontier.append(child_id)
    return found


def _collect(result: CascadeResult, ids: List[str], outcomes: list) -> None:
    """Fold gather(return_exceptions=True) outcomes into `result`."""
    for todo_id, outcome in zip(ids, outcomes):
        if isinstance(outcome, StoreQueryFailure):
            result.failed_ids.append(todo_id)
            if result.failed_at is None:
                result.failed_at = todo_id
                result.error = outcome.message
        elif isinstance(outcome, BaseException):
            raise outcome
        elif outcome:
            result.succeeded_ids.append(todo_id)
        else:
            result.skipped_ids.append(todo_id)


def _log_failure(result: CascadeResult) -> None:
    logger.warning(
        '%s of %s stopped at %s (%d succeeded, %d failed): %s',
        result.operation, result.target_id, result.failed_at,
        len(result.succeeded_ids), len(result.failed_ids), result.error,
    )


async def cascade_delete(store: RecordStore, todo_id: str) -> CascadeResult:
    """Delete `todo_id` and all of its descendants, children first.

    Descendant deletes run concurrently; the target row is deleted only once
    they have all succeeded.
    """
    descendants = await get_descendant_ids(store, todo_id)
    result = CascadeResult(operation='cascade_delete', target_id=todo_id)

    async def _delete(did: str) -> bool:
        await store.delete(TABLE, id=did)
        return True

    outcomes = await asyncio.gather(*(_delete(d) for d in descendants), return_exceptions=True)
    _collect(result, descendants, outcomes)
    if not result.ok:
        _log_failure(result)
        return result

    try:
        await store.delete(TABLE, id=todo_id)
    except StoreQueryFailure as exc:
        result.failed_ids.append(todo_id)
        result.failed_at = todo_id
        result.error = exc.message
        _log_failure(result)
        return result
    result.succeeded_ids.append(todo_id)
    logger.info('deleted %s with %d descendants', todo_id, len(descendants))
    return result


async def cascade_complete(store: RecordStore, todo_id: str, signature: str) -> CascadeResult:
    """Mark `todo_id` and its open descendants completed under `signature`.

    Descendants that are already completed keep their existing signature;
    the target itself is always (re)signed.
    """
    descendants = await get_descendant_ids(store, todo_id)
    result = CascadeResult(operation='cascade_complete', target_id=todo_id)
    patch = {'completed': True, 'signature': signature}

    async def _complete_if_open(did: str) -> bool:
        rows = await store.update(TABLE, patch, id=did, completed=False)
        return bool(rows)

    outcomes = await asyncio.gather(*(_complete_if_open(d) for d in descendants), return_exceptions=True)
    _collect(result, descendants, outcomes)
    if not result.ok:
        _log_failure(result)
        return result

    try:
        await store.update(TABLE, patch, id=todo_id)
    except StoreQueryFailure as exc:
        result.failed_ids.append(todo_id)
        result.failed_at = todo_id
        result.error = exc.message
        _log_failure(result)
        return result
    result.succeeded_ids.append(todo_id)
    logger.info('completed %s as %r (%d descendants signed, %d already done)',
                todo_id, signature, len(result.succeeded_ids) - 1, len(result.skipped_ids))
    return result


async def uncomplete(store: RecordStore, todo_id: str) -> List[dict]:
    """Reopen a single todo and clear its signature. Descendants are untouched."""
    return await store.update(TABLE, {'completed': False, 'signature': None}, id=todo_id)
