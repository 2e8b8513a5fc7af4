"""Assignable users and the "where I left off" status board."""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
import logging

from .board import Notification
from .errors import ConstraintViolation, StoreQueryFailure
from .responses import failure_response
from .store import RecordStore, get_store
from .utils import clean_text, now_utc

router = APIRouter()
logger = logging.getLogger(__name__)


class UserIn(BaseModel):
    name: str


class StatusIn(BaseModel):
    status_text: str = ''


@router.get('/users')
async def list_users(store: RecordStore = Depends(get_store)):
    try:
        users = await store.select('assignable_users', order_by='name')
    except StoreQueryFailure:
        logger.exception('failed to load assignable users')
        return failure_response('Error loading users', 'Please try again later')
    return {'users': users}


@router.post('/users')
async def add_user(payload: UserIn, store: RecordStore = Depends(get_store)):
    name = clean_text(payload.name)
    if not name:
        raise HTTPException(status_code=400, detail='name is required')
    try:
        if await store.select('assignable_users', name=name):
            raise HTTPException(status_code=409, detail='user already exists')
        user = (await store.insert('assignable_users', {'name': name}))[0]
    except ConstraintViolation:
        # a concurrent request added the same name after our check
        raise HTTPException(status_code=409, detail='user already exists')
    except StoreQueryFailure:
        logger.exception('failed to add assignable user %r', name)
        return failure_response('Error adding user', 'Please try again later')
    logger.info('assignable user added: %s', name)
    return {'ok': True, 'user': user}


@router.delete('/users/{user_id}')
async def remove_user(user_id: str, store: RecordStore = Depends(get_store)):
    try:
        removed = await store.delete('assignable_users', id=user_id)
    except StoreQueryFailure:
        logger.exception('failed to remove assignable user %s', user_id)
        return failure_response('Error removing user', 'Please try again later')
    if not removed:
        raise HTTPException(status_code=404, detail='user not found')
    # todos keep their assigned_to names; the list is display convenience only
    return {'ok': True, 'deleted': user_id}


@router.get('/status')
async def list_statuses(store: RecordStore = Depends(get_store)):
    """Every assignable user paired with their latest status (or None)."""
    try:
        users = await store.select('assignable_users', order_by='name')
        statuses = await store.select('user_status', order_by='updated_at', descending=True)
    except StoreQueryFailure:
        logger.exception('failed to load user statuses')
        return failure_response('Error loading statuses', 'Please try again later')
    by_name = {s['user_name']: s for s in statuses}
    board = [{'user_name': u['name'], 'status': by_name.get(u['name'])} for u in users]
    return {'statuses': statuses, 'board': board}


@router.put('/status/{user_name}')
async def update_status(user_name: str, payload: StatusIn, store: RecordStore = Depends(get_store)):
    name = clean_text(user_name)
    if not name:
        raise HTTPException(status_code=400, detail='user name is required')
    row = {'user_name': name, 'status_text': payload.status_text, 'updated_at': now_utc()}
    try:
        status = await store.upsert('user_status', row, on_conflict='user_name')
    except StoreQueryFailure:
        logger.exception('failed to update status for %s', name)
        return failure_response('Error updating status', 'Please try again later')
    notification = Notification(title='Status updated', description='Your status has been saved')
    return {'ok': True, 'notification': notification.model_dump(), 'status': status}
