"""Per-user todo persistence.

Every lookup is scoped by owner: a todo belonging to another user is
reported exactly like a missing one.
"""
from datetime import datetime
from typing import Any, Optional
import logging

from sqlmodel import select

from .db import async_session
from .errors import NotFoundError, ValidationError
from .models import Priority, Todo
from .utils import isoformat_utc, now_utc, parse_iso_datetime

logger = logging.getLogger(__name__)


def serialize_todo(todo: Todo) -> dict:
    return {
        'id': todo.id,
        'user': todo.owner_id,
        'title': todo.title,
        'completed': bool(todo.completed),
        'completedAt': isoformat_utc(todo.completed_at),
        'dueDate': isoformat_utc(todo.due_date),
        'priority': Priority(todo.priority).value,
        'tags': list(todo.tags or []),
        'category': todo.category,
        'notes': todo.notes,
        'createdAt': isoformat_utc(todo.created_at),
    }


def _clean_title(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError('title is required and must be a non-empty string')
    return value.strip()


def _clean_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f'{name} must be a boolean')
    return value


def _clean_due_date(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if not isinstance(value, str):
        raise ValidationError('dueDate must be an ISO-8601 string or null')
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError('dueDate must be an ISO-8601 string or null')


def _clean_priority(value: Any) -> Priority:
    try:
        return Priority(value)
    except ValueError:
        raise ValidationError('priority must be one of: low, medium, high')


def _clean_tags(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        raise ValidationError('tags must be a list of strings')
    # set semantics, first occurrence wins
    out: list[str] = []
    for t in value:
        t = t.strip()
        if t and t not in out:
            out.append(t)
    return out


def _clean_category(value: Any) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        return 'general'
    if not isinstance(value, str):
        raise ValidationError('category must be a string')
    return value.strip()


def _clean_notes(value: Any) -> str:
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ValidationError('notes must be a string')
    return value


async def list_todos(user_id: int) -> list[Todo]:
    async with async_session() as sess:
        q = await sess.exec(select(Todo).where(Todo.owner_id == user_id).order_by(Todo.id))
        return list(q.all())


async def create_todo(user_id: int, payload: dict) -> Todo:
    if not isinstance(payload, dict):
        raise ValidationError('invalid JSON')
    todo = Todo(
        owner_id=user_id,
        title=_clean_title(payload.get('title')),
        completed=_clean_bool('completed', payload['completed']) if payload.get('completed') is not None else False,
        due_date=_clean_due_date(payload.get('dueDate')),
        priority=_clean_priority(payload['priority']) if payload.get('priority') is not None else Priority.medium,
        tags=_clean_tags(payload.get('tags')),
        category=_clean_category(payload.get('category')),
        notes=_clean_notes(payload.get('notes')),
    )
    async with async_session() as sess:
        sess.add(todo)
        await sess.commit()
        await sess.refresh(todo)
    logger.info('created todo id=%s for user=%s', todo.id, user_id)
    return todo


async def _get_owned(sess, user_id: int, todo_id: int) -> Todo:
    q = await sess.exec(select(Todo).where(Todo.id == todo_id).where(Todo.owner_id == user_id))
    todo = q.first()
    if todo is None:
        raise NotFoundError('Todo not found')
    return todo


async def update_todo(user_id: int, todo_id: int, payload: dict, now: Optional[datetime] = None) -> Todo:
    """Apply a partial update.

    Only title, completed, dueDate, priority, tags, category and notes are
    applied; other keys (id, user, createdAt, completedAt) are ignored.
    """
    if not isinstance(payload, dict):
        raise ValidationError('invalid JSON')
    async with async_session() as sess:
        todo = await _get_owned(sess, user_id, todo_id)

        if 'title' in payload:
            todo.title = _clean_title(payload['title'])
        if 'completed' in payload:
            completed = _clean_bool('completed', payload['completed'])
            if completed and not todo.completed:
                todo.completed_at = now or now_utc()
            elif not completed:
                todo.completed_at = None
            todo.completed = completed
        if 'dueDate' in payload:
            todo.due_date = _clean_due_date(payload['dueDate'])
        if 'priority' in payload:
            todo.priority = _clean_priority(payload['priority'])
        if 'tags' in payload:
            todo.tags = _clean_tags(payload['tags'])
        if 'category' in payload:
            todo.category = _clean_category(payload['category'])
        if 'notes' in payload:
            todo.notes = _clean_notes(payload['notes'])

        sess.add(todo)
        await sess.commit()
        await sess.refresh(todo)
    return todo


async def delete_todo(user_id: int, todo_id: int) -> None:
    async with async_session() as sess:
        todo = await _get_owned(sess, user_id, todo_id)
        await sess.delete(todo)
        await sess.commit()
    logger.info('deleted todo id=%s for user=%s', todo_id, user_id)
