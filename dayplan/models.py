from enum import Enum
from typing import List, Optional
from datetime import datetime
from .utils import now_utc
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class User(SQLModel, table=True):
    """Account record keyed by email.

    A row is created as soon as a verification code is requested, so name and
    password_hash stay empty until registration completes. Reset fields are
    only populated while a password reset is in flight.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    name: Optional[str] = None
    email: str = Field(index=True, sa_column_kwargs={"unique": True})
    password_hash: Optional[str] = None
    is_verified: bool = Field(default=False, index=True)
    verification_code: Optional[str] = None
    code_expires: Optional[datetime] = None
    reset_code: Optional[str] = None
    reset_code_expires: Optional[datetime] = None
    created_at: datetime | None = Field(default_factory=now_utc)


class Todo(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    # Set once at creation; every lookup is scoped by it.
    owner_id: int = Field(foreign_key="user.id", index=True)
    title: str
    completed: bool = Field(default=False, index=True)
    # Only stamped by a false -> true transition on update.
    completed_at: Optional[datetime] = None
    due_date: Optional[datetime] = Field(default=None, index=True)
    priority: Priority = Field(default=Priority.medium, index=True)
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    category: str = Field(default="general", index=True)
    notes: str = Field(default="")
    created_at: datetime | None = Field(default_factory=now_utc)
