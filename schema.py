"""Entity records shared by every storage backend, and request schemas.

Records are frozen dataclasses: storage hands out values, never live rows.
Request bodies are validated with pydantic models that accept the camelCase
keys the client sends.
"""
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PRIORITIES = ('low', 'medium', 'high')
DEFAULT_PRIORITY = 'medium'

Priority = Literal['low', 'medium', 'high']


def _iso(value):
    return value.isoformat() if value is not None else None


def _camel_dict(record):
    return {to_camel(key): value for key, value in asdict(record).items()}


# Records

@dataclass(frozen=True)
class User:
    id: int
    username: str
    password: str
    external_id: str
    name: Optional[str] = None
    email: Optional[str] = None

    def to_dict(self):
        data = _camel_dict(self)
        data.pop('password')
        return data


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    color: str

    def to_dict(self):
        return _camel_dict(self)


@dataclass(frozen=True)
class Task:
    id: int
    title: str
    user_id: int
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    category_id: Optional[int] = None
    priority: str = DEFAULT_PRIORITY
    due_date: Optional[datetime] = None
    completed: bool = False

    def to_dict(self):
        data = _camel_dict(self)
        for key in ('createdAt', 'updatedAt', 'dueDate'):
            data[key] = _iso(data[key])
        return data


@dataclass(frozen=True)
class Subtask:
    id: int
    title: str
    task_id: int
    completed: bool = False

    def to_dict(self):
        return _camel_dict(self)


@dataclass(frozen=True)
class AiSuggestion:
    id: int
    task_id: int
    suggestion: str
    created_at: datetime
    priority: Optional[str] = None

    def to_dict(self):
        data = _camel_dict(self)
        data['createdAt'] = _iso(data['createdAt'])
        return data


# Request schemas

class RequestSchema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore')


def _as_utc(value):
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CategoryCreate(RequestSchema):
    name: str = Field(min_length=1)
    color: str = Field(min_length=1)


class TaskCreate(RequestSchema):
    title: str = Field(min_length=1)
    user_id: int
    description: Optional[str] = None
    category_id: Optional[int] = None
    priority: Priority = DEFAULT_PRIORITY
    due_date: Optional[datetime] = None
    completed: bool = False

    @field_validator('due_date')
    @classmethod
    def normalize_due_date(cls, value):
        return _as_utc(value)


class TaskUpdate(RequestSchema):
    """Partial task update. ``userId`` is not a field, so it is dropped."""

    title: str = Field(default=None, min_length=1)
    description: Optional[str] = None
    category_id: Optional[int] = None
    priority: Priority = None
    due_date: Optional[datetime] = None
    completed: bool = None

    @field_validator('due_date')
    @classmethod
    def normalize_due_date(cls, value):
        return _as_utc(value)


class SubtaskCreate(RequestSchema):
    title: str = Field(min_length=1)
    task_id: int
    completed: bool = False


class SubtaskUpdate(RequestSchema):
    """Partial subtask update. ``taskId`` is not a field, so it is dropped."""

    title: str = Field(default=None, min_length=1)
    completed: bool = None


class AiSuggestionCreate(RequestSchema):
    task_id: int
    suggestion: str
    priority: Optional[Priority] = None


class ApplySuggestion(RequestSchema):
    suggestion_id: int = Field(gt=0)
