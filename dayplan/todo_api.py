import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from . import planner, todos
from .auth import require_user_id
from .errors import ValidationError

router = APIRouter(prefix='/todos')
logger = logging.getLogger(__name__)


async def _json_payload(request: Request) -> dict:
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError('invalid JSON')
    if not isinstance(payload, dict):
        raise ValidationError('invalid JSON')
    return payload


@router.get('')
async def list_todos(user_id: int = Depends(require_user_id)):
    return [todos.serialize_todo(t) for t in await todos.list_todos(user_id)]


@router.post('')
async def create_todo(request: Request, user_id: int = Depends(require_user_id)):
    """
    Create a todo. Expects JSON payload with:
    - title: str (required)
    - completed, dueDate, priority, tags, category, notes (optional)
    """
    payload = await _json_payload(request)
    todo = await todos.create_todo(user_id, payload)
    return JSONResponse(todos.serialize_todo(todo), status_code=201)


@router.post('/plan-tomorrow')
async def plan_tomorrow(user_id: int = Depends(require_user_id)):
    result = await planner.plan_tomorrow(user_id)
    return result.to_dict()


@router.put('/{todo_id}')
async def update_todo(todo_id: int, request: Request, user_id: int = Depends(require_user_id)):
    payload = await _json_payload(request)
    todo = await todos.update_todo(user_id, todo_id, payload)
    return todos.serialize_todo(todo)


@router.delete('/{todo_id}')
async def delete_todo(todo_id: int, user_id: int = Depends(require_user_id)):
    await todos.delete_todo(user_id, todo_id)
    return {'message': 'Todo deleted'}
