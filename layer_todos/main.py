from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from typing import List, Optional
from contextlib import asynccontextmanager
import asyncio
import json
import logging
import sys

from . import config
from .board import TodoBoard
from .db import init_db
from .errors import StoreQueryFailure, TodoNotFound
from .people import router as people_router
from .responses import failure_response, forest_json, outcome_response
from .store import RecordStore, get_store
from .tree import filter_by_assignees, hide_completed
from .utils import clean_text

logger = logging.getLogger(__name__)
# The console handler sits on the package logger so board, store and cascade
# records reach it as well as this module's.
app_logger = logging.getLogger('layer_todos')
if not app_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter('%(asctime)s %(levelname)s:%(name)s: %(message)s')
    handler.setFormatter(formatter)
    app_logger.addHandler(handler)
if config.DEV_MODE:
    app_logger.setLevel(logging.DEBUG)
else:
    app_logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    from . import db as _dbmod
    logger.info('starting %s using DATABASE_URL=%s', config.BOARD_TITLE, _dbmod.DATABASE_URL)
    yield


app = FastAPI(lifespan=lifespan)
app.include_router(people_router)


@app.exception_handler(TodoNotFound)
async def _todo_not_found(request: Request, exc: TodoNotFound):
    return JSONResponse({'detail': 'todo not found', 'id': exc.todo_id}, status_code=404)


@app.exception_handler(StoreQueryFailure)
async def _store_failure(request: Request, exc: StoreQueryFailure):
    # reads that fail outside a board operation end up here
    logger.error('store failure on %s: %s', request.url.path, exc)
    return failure_response('Error loading todos', 'Please try again later')


class TodoIn(BaseModel):
    text: str
    parent_id: Optional[str] = None
    in_backlog: bool = False
    assigned_to: Optional[str] = None


class TextIn(BaseModel):
    text: str


class NotesIn(BaseModel):
    notes: str = ''


class AssignIn(BaseModel):
    assigned_to: str = ''


class SignatureIn(BaseModel):
    signature: str


def _board(store: RecordStore, backlog_of: str | None) -> TodoBoard:
    return TodoBoard(store, backlog_of=clean_text(backlog_of) or None)


@app.get('/')
async def index():
    return {'title': config.BOARD_TITLE, 'todos': '/todos', 'backlogs': '/backlogs/{user_name}', 'status': '/status'}


@app.get('/todos')
async def list_todos(assignee: List[str] = Query(default=[]),
                     show_completed: bool = False,
                     store: RecordStore = Depends(get_store)):
    board = TodoBoard(store)
    forest = await board.fetch()
    forest = filter_by_assignees(forest, assignee)
    if not show_completed:
        forest = hide_completed(forest)
    return {'todos': forest_json(forest)}


@app.get('/backlogs/{user_name}')
async def user_backlog(user_name: str, show_completed: bool = False, store: RecordStore = Depends(get_store)):
    name = clean_text(user_name)
    if not name:
        raise HTTPException(status_code=400, detail='user name is required')
    forest = await TodoBoard(store, backlog_of=name).fetch()
    if not show_completed:
        forest = hide_completed(forest)
    return {'user_name': name, 'todos': forest_json(forest)}


@app.post('/todos')
async def add_todo(payload: TodoIn, store: RecordStore = Depends(get_store)):
    text = clean_text(payload.text)
    if not text:
        raise HTTPException(status_code=400, detail='text is required')
    assignee = clean_text(payload.assigned_to) or None
    if payload.in_backlog and not assignee:
        raise HTTPException(status_code=400, detail='backlog todos need an assignee')
    board = _board(store, assignee if payload.in_backlog else None)
    outcome = await board.add_todo(text, parent_id=payload.parent_id, assigned_to=assignee)
    return outcome_response(outcome, board.todos)


@app.patch('/todos/{todo_id}/text')
async def update_todo_text(todo_id: str, payload: TextIn, backlog_of: Optional[str] = None,
                           store: RecordStore = Depends(get_store)):
    text = clean_text(payload.text)
    if not text:
        raise HTTPException(status_code=400, detail='text is required')
    board = _board(store, backlog_of)
    return outcome_response(await board.update_text(todo_id, text), board.todos)


@app.patch('/todos/{todo_id}/notes')
async def update_todo_notes(todo_id: str, payload: NotesIn, backlog_of: Optional[str] = None,
                            store: RecordStore = Depends(get_store)):
    board = _board(store, backlog_of)
    return outcome_response(await board.update_notes(todo_id, payload.notes), board.todos)


@app.post('/todos/{todo_id}/assign')
async def assign_todo(todo_id: str, payload: AssignIn, backlog_of: Optional[str] = None,
                      store: RecordStore = Depends(get_store)):
    board = _board(store, backlog_of)
    return outcome_response(await board.assign(todo_id, clean_text(payload.assigned_to)), board.todos)


@app.post('/todos/{todo_id}/complete')
async def complete_todo(todo_id: str, payload: SignatureIn, backlog_of: Optional[str] = None,
                        store: RecordStore = Depends(get_store)):
    signature = clean_text(payload.signature)
    if not signature:
        raise HTTPException(status_code=400, detail='signature is required')
    board = _board(store, backlog_of)
    return outcome_response(await board.complete(todo_id, signature), board.todos)


@app.post('/todos/{todo_id}/uncomplete')
async def uncomplete_todo(todo_id: str, backlog_of: Optional[str] = None, store: RecordStore = Depends(get_store)):
    board = _board(store, backlog_of)
    return outcome_response(await board.uncomplete(todo_id), board.todos)


@app.delete('/todos/{todo_id}')
async def delete_todo(todo_id: str, backlog_of: Optional[str] = None, store: RecordStore = Depends(get_store)):
    board = _board(store, backlog_of)
    return outcome_response(await board.delete(todo_id), board.todos)


@app.post('/todos/{todo_id}/move_to_main')
async def move_todo_to_main(todo_id: str, backlog_of: Optional[str] = None, store: RecordStore = Depends(get_store)):
    board = _board(store, backlog_of)
    try:
        outcome = await board.move_to_main_list(todo_id)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return outcome_response(outcome, board.todos)


@app.get('/todos/stream')
async def stream_todos(request: Request, backlog_of: Optional[str] = None, store: RecordStore = Depends(get_store)):
    """SSE endpoint that streams the rebuilt forest after every todos change.

    Each event is named 'todos' and carries the whole forest as JSON; clients
    replace what they display rather than merging.
    """
    board = _board(store, backlog_of)

    async def event_generator():
        async with board.live():
            sent = -1
            while True:
                if board.version != sent:
                    sent = board.version
                    yield f"event: todos\ndata: {json.dumps(forest_json(board.todos))}\n\n"
                # if client disconnects, stop
                if await request.is_disconnected():
                    break
                try:
                    await asyncio.wait_for(board.wait_for_refresh(sent), timeout=config.STREAM_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"

    return StreamingResponse(event_generator(), media_type='text/event-stream')


@app.get('/todos/{todo_id}/descendants')
async def todo_descendants(todo_id: str, store: RecordStore = Depends(get_store)):
    ids = await TodoBoard(store).descendant_ids(todo_id)
    return {'id': todo_id, 'descendant_ids': ids}
