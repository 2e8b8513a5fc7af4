"""JSON shapes shared by the HTTP routers."""
from typing import Iterable
from fastapi.responses import JSONResponse

from .board import Notification, Outcome
from .tree import TodoNode

# Status used when the store rejected the request; the app itself is healthy.
STORE_FAILURE_STATUS = 502


def forest_json(forest: Iterable[TodoNode]) -> list[dict]:
    return [node.model_dump(mode='json', by_alias=True) for node in forest]


def outcome_response(outcome: Outcome, forest: Iterable[TodoNode] | None = None) -> JSONResponse:
    body = {'ok': outcome.ok, **outcome.model_dump(mode='json')}
    if forest is not None:
        body['todos'] = forest_json(forest)
    status = 200 if outcome.ok else STORE_FAILURE_STATUS
    return JSONResponse(body, status_code=status)


def failure_response(title: str, description: str) -> JSONResponse:
    notification = Notification(title=title, description=description, variant='destructive')
    return JSONResponse({'ok': False, 'notification': notification.model_dump()}, status_code=STORE_FAILURE_STATUS)
