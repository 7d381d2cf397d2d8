"""Storage backends for users, categories, tasks, subtasks and AI suggestions.

Every backend follows the same contract: lookups return ``None`` (or an empty
list) for unknown ids, ``update_*`` returns ``None`` without touching anything
when the id is unknown, and ``delete_*`` reports whether a record was removed.
Deleting a task also deletes its subtasks and AI suggestions.
"""
import dataclasses
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

import model
from model import db
from schema import (
    AiSuggestion,
    Category,
    DEFAULT_PRIORITY,
    Subtask,
    Task,
    User,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    ('Work', '#10B981'),
    ('Personal', '#3B82F6'),
    ('Education', '#8B5CF6'),
    ('Health', '#F59E0B'),
)

# Fields a partial update may never touch.
_IMMUTABLE_TASK_FIELDS = frozenset({'id', 'user_id', 'created_at', 'updated_at'})
_IMMUTABLE_SUBTASK_FIELDS = frozenset({'id', 'task_id'})


def utcnow():
    return datetime.now(timezone.utc)


def next_timestamp(previous):
    """Return the current time, nudged past ``previous`` if the clock has not moved."""
    now = utcnow()
    if now <= previous:
        now = previous + timedelta(microseconds=1)
    return now


def _mutable_changes(changes, immutable):
    return {key: value for key, value in changes.items() if key not in immutable}


class Storage(ABC):

    # Users

    @abstractmethod
    def get_user(self, user_id): ...

    @abstractmethod
    def get_user_by_username(self, username): ...

    @abstractmethod
    def get_user_by_external_id(self, external_id): ...

    @abstractmethod
    def create_user(self, *, username, password, external_id, name=None, email=None): ...

    # Categories

    @abstractmethod
    def get_categories(self): ...

    @abstractmethod
    def get_category_by_id(self, category_id): ...

    @abstractmethod
    def create_category(self, *, name, color): ...

    # Tasks

    @abstractmethod
    def get_tasks(self, user_id): ...

    @abstractmethod
    def get_task_by_id(self, task_id): ...

    @abstractmethod
    def get_tasks_by_category(self, category_id): ...

    @abstractmethod
    def get_tasks_by_priority(self, priority, user_id): ...

    @abstractmethod
    def get_completed_tasks(self, user_id): ...

    @abstractmethod
    def get_active_tasks(self, user_id): ...

    @abstractmethod
    def create_task(self, *, title, user_id, description=None, category_id=None,
                    priority=DEFAULT_PRIORITY, due_date=None, completed=False): ...

    @abstractmethod
    def update_task(self, task_id, **changes): ...

    @abstractmethod
    def delete_task(self, task_id): ...

    # Subtasks

    @abstractmethod
    def get_subtasks(self, task_id): ...

    @abstractmethod
    def create_subtask(self, *, title, task_id, completed=False): ...

    @abstractmethod
    def update_subtask(self, subtask_id, **changes): ...

    @abstractmethod
    def delete_subtask(self, subtask_id): ...

    # AI suggestions

    @abstractmethod
    def get_ai_suggestions(self, task_id): ...

    @abstractmethod
    def create_ai_suggestion(self, *, task_id, suggestion, priority=None): ...

    @abstractmethod
    def create_ai_suggestions_for_task(self, task_id, suggestions):
        """Store ``suggestions`` (dicts of ``suggestion`` and ``priority``) for a task.

        Returns ``None`` and stores nothing when the task does not exist.
        """


def seed_default_categories(storage):
    """Create the stock categories unless the store already has some."""
    if storage.get_categories():
        return []
    created = [storage.create_category(name=name, color=color) for name, color in DEFAULT_CATEGORIES]
    logger.info("Seeded %d default categories", len(created))
    return created


class MemStorage(Storage):
    """Dict-backed storage. Ids come from per-entity counters that only go up."""

    def __init__(self):
        self._lock = threading.RLock()
        self._users = {}
        self._categories = {}
        self._tasks = {}
        self._subtasks = {}
        self._ai_suggestions = {}
        self._counters = {
            'user': 1,
            'category': 1,
            'task': 1,
            'subtask': 1,
            'ai_suggestion': 1,
        }

    def _next_id(self, entity):
        value = self._counters[entity]
        self._counters[entity] = value + 1
        return value

    @staticmethod
    def _select(collection, predicate):
        return [record for record in list(collection.values()) if predicate(record)]

    # Users

    def get_user(self, user_id):
        return self._users.get(user_id)

    def get_user_by_username(self, username):
        return next((u for u in list(self._users.values()) if u.username == username), None)

    def get_user_by_external_id(self, external_id):
        return next((u for u in list(self._users.values()) if u.external_id == external_id), None)

    def create_user(self, *, username, password, external_id, name=None, email=None):
        with self._lock:
            user = User(
                id=self._next_id('user'),
                username=username,
                password=password,
                external_id=external_id,
                name=name,
                email=email,
            )
            self._users[user.id] = user
            return user

    # Categories

    def get_categories(self):
        return list(self._categories.values())

    def get_category_by_id(self, category_id):
        return self._categories.get(category_id)

    def create_category(self, *, name, color):
        with self._lock:
            category = Category(id=self._next_id('category'), name=name, color=color)
            self._categories[category.id] = category
            return category

    # Tasks

    def get_tasks(self, user_id):
        return self._select(self._tasks, lambda t: t.user_id == user_id)

    def get_task_by_id(self, task_id):
        return self._tasks.get(task_id)

    def get_tasks_by_category(self, category_id):
        return self._select(self._tasks, lambda t: t.category_id == category_id)

    def get_tasks_by_priority(self, priority, user_id):
        return self._select(self._tasks, lambda t: t.priority == priority and t.user_id == user_id)

    def get_completed_tasks(self, user_id):
        return self._select(self._tasks, lambda t: t.completed and t.user_id == user_id)

    def get_active_tasks(self, user_id):
        return self._select(self._tasks, lambda t: not t.completed and t.user_id == user_id)

    def create_task(self, *, title, user_id, description=None, category_id=None,
                    priority=DEFAULT_PRIORITY, due_date=None, completed=False):
        with self._lock:
            now = utcnow()
            task = Task(
                id=self._next_id('task'),
                title=title,
                user_id=user_id,
                description=description,
                category_id=category_id,
                priority=priority if priority is not None else DEFAULT_PRIORITY,
                due_date=due_date,
                completed=bool(completed),
                created_at=now,
                updated_at=now,
            )
            self._tasks[task.id] = task
            return task

    def update_task(self, task_id, **changes):
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            updated = dataclasses.replace(
                task,
                updated_at=next_timestamp(task.updated_at),
                **_mutable_changes(changes, _IMMUTABLE_TASK_FIELDS),
            )
            self._tasks[task_id] = updated
            return updated

    def delete_task(self, task_id):
        with self._lock:
            if task_id not in self._tasks:
                return False
            for subtask in self._select(self._subtasks, lambda s: s.task_id == task_id):
                del self._subtasks[subtask.id]
            for suggestion in self._select(self._ai_suggestions, lambda s: s.task_id == task_id):
                del self._ai_suggestions[suggestion.id]
            del self._tasks[task_id]
            return True

    # Subtasks

    def get_subtasks(self, task_id):
        return self._select(self._subtasks, lambda s: s.task_id == task_id)

    def create_subtask(self, *, title, task_id, completed=False):
        with self._lock:
            subtask = Subtask(
                id=self._next_id('subtask'),
                title=title,
                task_id=task_id,
                completed=bool(completed),
            )
            self._subtasks[subtask.id] = subtask
            return subtask

    def update_subtask(self, subtask_id, **changes):
        with self._lock:
            subtask = self._subtasks.get(subtask_id)
            if subtask is None:
                return None
            updated = dataclasses.replace(subtask, **_mutable_changes(changes, _IMMUTABLE_SUBTASK_FIELDS))
            self._subtasks[subtask_id] = updated
            return updated

    def delete_subtask(self, subtask_id):
        with self._lock:
            return self._subtasks.pop(subtask_id, None) is not None

    # AI suggestions

    def get_ai_suggestions(self, task_id):
        return self._select(self._ai_suggestions, lambda s: s.task_id == task_id)

    def create_ai_suggestion(self, *, task_id, suggestion, priority=None):
        with self._lock:
            record = AiSuggestion(
                id=self._next_id('ai_suggestion'),
                task_id=task_id,
                suggestion=suggestion,
                priority=priority,
                created_at=utcnow(),
            )
            self._ai_suggestions[record.id] = record
            return record

    def create_ai_suggestions_for_task(self, task_id, suggestions):
        with self._lock:
            if task_id not in self._tasks:
                return None
            return [
                self.create_ai_suggestion(
                    task_id=task_id,
                    suggestion=item['suggestion'],
                    priority=item.get('priority'),
                )
                for item in suggestions
            ]


# Database backend

def _to_db_time(value):
    # SQLite drops tzinfo, so timestamps are stored as naive UTC
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db_time(value):
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _user_record(row):
    return User(
        id=row.id,
        username=row.username,
        password=row.password,
        external_id=row.external_id,
        name=row.name,
        email=row.email,
    )


def _category_record(row):
    return Category(id=row.id, name=row.name, color=row.color)


def _task_record(row):
    return Task(
        id=row.id,
        title=row.title,
        user_id=row.user_id,
        description=row.description,
        category_id=row.category_id,
        priority=row.priority,
        due_date=_from_db_time(row.due_date),
        completed=row.completed,
        created_at=_from_db_time(row.created_at),
        updated_at=_from_db_time(row.updated_at),
    )


def _subtask_record(row):
    return Subtask(id=row.id, title=row.title, task_id=row.task_id, completed=row.completed)


def _suggestion_record(row):
    return AiSuggestion(
        id=row.id,
        task_id=row.task_id,
        suggestion=row.suggestion,
        priority=row.priority,
        created_at=_from_db_time(row.created_at),
    )


class DatabaseStorage(Storage):
    """Flask-SQLAlchemy storage. Must be used inside an application context."""

    def __init__(self):
        # Serialises cascade deletes against guarded child inserts
        self._lock = threading.RLock()

    def _one(self, entity, convert, **filters):
        row = db.session.execute(db.select(entity).filter_by(**filters)).scalars().first()
        return convert(row) if row is not None else None

    def _all(self, entity, convert, *criteria):
        query = db.select(entity).order_by(entity.id)
        if criteria:
            query = query.where(*criteria)
        return [convert(row) for row in db.session.execute(query).scalars()]

    def _add(self, row, convert):
        db.session.add(row)
        db.session.commit()
        return convert(row)

    # Users

    def get_user(self, user_id):
        row = db.session.get(model.User, user_id)
        return _user_record(row) if row is not None else None

    def get_user_by_username(self, username):
        return self._one(model.User, _user_record, username=username)

    def get_user_by_external_id(self, external_id):
        return self._one(model.User, _user_record, external_id=external_id)

    def create_user(self, *, username, password, external_id, name=None, email=None):
        row = model.User(
            username=username,
            password=password,
            external_id=external_id,
            name=name,
            email=email,
        )
        return self._add(row, _user_record)

    # Categories

    def get_categories(self):
        return self._all(model.Category, _category_record)

    def get_category_by_id(self, category_id):
        row = db.session.get(model.Category, category_id)
        return _category_record(row) if row is not None else None

    def create_category(self, *, name, color):
        return self._add(model.Category(name=name, color=color), _category_record)

    # Tasks

    def get_tasks(self, user_id):
        return self._all(model.Task, _task_record, model.Task.user_id == user_id)

    def get_task_by_id(self, task_id):
        row = db.session.get(model.Task, task_id)
        return _task_record(row) if row is not None else None

    def get_tasks_by_category(self, category_id):
        return self._all(model.Task, _task_record, model.Task.category_id == category_id)

    def get_tasks_by_priority(self, priority, user_id):
        return self._all(
            model.Task, _task_record,
            model.Task.priority == priority, model.Task.user_id == user_id,
        )

    def get_completed_tasks(self, user_id):
        return self._all(
            model.Task, _task_record,
            model.Task.completed.is_(True), model.Task.user_id == user_id,
        )

    def get_active_tasks(self, user_id):
        return self._all(
            model.Task, _task_record,
            model.Task.completed.is_(False), model.Task.user_id == user_id,
        )

    def create_task(self, *, title, user_id, description=None, category_id=None,
                    priority=DEFAULT_PRIORITY, due_date=None, completed=False):
        now = _to_db_time(utcnow())
        row = model.Task(
            title=title,
            user_id=user_id,
            description=description,
            category_id=category_id,
            priority=priority if priority is not None else DEFAULT_PRIORITY,
            due_date=_to_db_time(due_date),
            completed=bool(completed),
            created_at=now,
            updated_at=now,
        )
        return self._add(row, _task_record)

    def update_task(self, task_id, **changes):
        row = db.session.get(model.Task, task_id)
        if row is None:
            return None
        for key, value in _mutable_changes(changes, _IMMUTABLE_TASK_FIELDS).items():
            if key == 'due_date':
                value = _to_db_time(value)
            setattr(row, key, value)
        row.updated_at = _to_db_time(next_timestamp(_from_db_time(row.updated_at)))
        db.session.commit()
        return _task_record(row)

    def delete_task(self, task_id):
        with self._lock:
            row = db.session.get(model.Task, task_id)
            if row is None:
                return False
            db.session.execute(db.delete(model.Subtask).where(model.Subtask.task_id == task_id))
            db.session.execute(db.delete(model.AiSuggestion).where(model.AiSuggestion.task_id == task_id))
            db.session.delete(row)
            db.session.commit()
            return True

    # Subtasks

    def get_subtasks(self, task_id):
        return self._all(model.Subtask, _subtask_record, model.Subtask.task_id == task_id)

    def create_subtask(self, *, title, task_id, completed=False):
        row = model.Subtask(title=title, task_id=task_id, completed=bool(completed))
        return self._add(row, _subtask_record)

    def update_subtask(self, subtask_id, **changes):
        row = db.session.get(model.Subtask, subtask_id)
        if row is None:
            return None
        for key, value in _mutable_changes(changes, _IMMUTABLE_SUBTASK_FIELDS).items():
            setattr(row, key, value)
        db.session.commit()
        return _subtask_record(row)

    def delete_subtask(self, subtask_id):
        row = db.session.get(model.Subtask, subtask_id)
        if row is None:
            return False
        db.session.delete(row)
        db.session.commit()
        return True

    # AI suggestions

    def get_ai_suggestions(self, task_id):
        return self._all(model.AiSuggestion, _suggestion_record, model.AiSuggestion.task_id == task_id)

    def create_ai_suggestion(self, *, task_id, suggestion, priority=None):
        row = model.AiSuggestion(
            task_id=task_id,
            suggestion=suggestion,
            priority=priority,
            created_at=_to_db_time(utcnow()),
        )
        return self._add(row, _suggestion_record)

    def create_ai_suggestions_for_task(self, task_id, suggestions):
        with self._lock:
            # Column query, so a task cached in this session cannot mask a delete
            exists = db.session.execute(db.select(model.Task.id).where(model.Task.id == task_id)).first()
            if exists is None:
                return None
            now = _to_db_time(utcnow())
            rows = [
                model.AiSuggestion(
                    task_id=task_id,
                    suggestion=item['suggestion'],
                    priority=item.get('priority'),
                    created_at=now,
                )
                for item in suggestions
            ]
            db.session.add_all(rows)
            db.session.commit()
            return [_suggestion_record(row) for row in rows]
