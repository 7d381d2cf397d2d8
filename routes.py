import logging
from datetime import datetime, timezone

from flask import Blueprint, abort, current_app, jsonify, request

from schema import (
    ApplySuggestion,
    CategoryCreate,
    SubtaskCreate,
    SubtaskUpdate,
    TaskCreate,
    TaskUpdate,
)

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)

DEFAULT_USER = {
    'username': 'default_user',
    'password': '',
    'external_id': 'local_development',
    'name': 'Default User',
    'email': 'user@example.com',
}


def _storage():
    return current_app.extensions['storage']


def _ai_service():
    return current_app.extensions['ai_service']


def _background():
    return current_app.extensions['background']


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description='Request body must be a JSON object')
    return data


def _task_or_404(task_id):
    task = _storage().get_task_by_id(task_id)
    if task is None:
        abort(404, description='Task not found')
    return task


def get_or_create_default_user(storage):
    # No real authentication: every request acts as this one user
    user = storage.get_user_by_username(DEFAULT_USER['username'])
    if user is None:
        user = storage.create_user(**DEFAULT_USER)
        logger.info("Created default user id=%s", user.id)
    return user


def generate_suggestions(storage, ai_service, task):
    """Store AI breakdown ideas for ``task`` plus a priority hint if it differs.

    The AI calls run first; the results are stored only if the task still
    exists at that point. Returns ``None`` when it does not.
    """
    pending = [
        {'suggestion': item.suggestion, 'priority': item.priority}
        for item in ai_service.generate_task_suggestions(task)
    ]
    suggested_priority = ai_service.analyze_priority(task)
    if suggested_priority != task.priority:
        pending.append({
            'suggestion': f'Consider changing priority to {suggested_priority}',
            'priority': suggested_priority,
        })
    stored = storage.create_ai_suggestions_for_task(task.id, pending)
    if stored is None:
        logger.info("Task %s deleted before its suggestions were stored", task.id)
    return stored


def _generate_suggestions_later(storage, ai_service, task):
    if storage.get_task_by_id(task.id) is None:
        logger.info("Task %s deleted before suggestions were generated", task.id)
        return None
    return generate_suggestions(storage, ai_service, task)


# Health and user

@api.route('/health')
def health():
    return jsonify({'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat()})


@api.route('/user')
def get_user():
    return jsonify(get_or_create_default_user(_storage()).to_dict())


# Categories

@api.route('/categories')
def list_categories():
    return jsonify([c.to_dict() for c in _storage().get_categories()])


@api.route('/categories', methods=['POST'])
def create_category():
    payload = CategoryCreate.model_validate(_json_body())
    category = _storage().create_category(**payload.model_dump())
    return jsonify(category.to_dict()), 201


# Tasks

@api.route('/tasks')
def list_tasks():
    storage = _storage()
    user = get_or_create_default_user(storage)

    # One filter at a time: completed, then priority, then categoryId
    completed = request.args.get('completed')
    priority = request.args.get('priority')
    category_id = request.args.get('categoryId')

    if completed == 'true':
        tasks = storage.get_completed_tasks(user.id)
    elif completed == 'false':
        tasks = storage.get_active_tasks(user.id)
    elif priority:
        tasks = storage.get_tasks_by_priority(priority, user.id)
    elif category_id:
        try:
            tasks = storage.get_tasks_by_category(int(category_id))
        except ValueError:
            tasks = []
    else:
        tasks = storage.get_tasks(user.id)

    return jsonify([t.to_dict() for t in tasks])


@api.route('/tasks/<int:task_id>')
def get_task(task_id):
    return jsonify(_task_or_404(task_id).to_dict())


@api.route('/tasks', methods=['POST'])
def create_task():
    storage = _storage()
    user = get_or_create_default_user(storage)
    body = _json_body()

    payload = TaskCreate.model_validate({**body, 'userId': user.id})
    task = storage.create_task(**payload.model_dump())

    if body.get('generateAiSuggestions'):
        _background().submit(
            f'suggestions for task {task.id}',
            _generate_suggestions_later, storage, _ai_service(), task,
        )

    return jsonify(task.to_dict()), 201


@api.route('/tasks/<int:task_id>', methods=['PATCH'])
def update_task(task_id):
    _task_or_404(task_id)
    changes = TaskUpdate.model_validate(_json_body()).model_dump(exclude_unset=True)
    task = _storage().update_task(task_id, **changes)
    if task is None:
        abort(404, description='Task not found')
    return jsonify(task.to_dict())


@api.route('/tasks/<int:task_id>', methods=['DELETE'])
def delete_task(task_id):
    if not _storage().delete_task(task_id):
        abort(404, description='Task not found')
    return '', 204


# Subtasks

@api.route('/tasks/<int:task_id>/subtasks')
def list_subtasks(task_id):
    _task_or_404(task_id)
    return jsonify([s.to_dict() for s in _storage().get_subtasks(task_id)])


@api.route('/tasks/<int:task_id>/subtasks', methods=['POST'])
def create_subtask(task_id):
    _task_or_404(task_id)
    payload = SubtaskCreate.model_validate({**_json_body(), 'taskId': task_id})
    subtask = _storage().create_subtask(**payload.model_dump())
    return jsonify(subtask.to_dict()), 201


@api.route('/subtasks/<int:subtask_id>', methods=['PATCH'])
def update_subtask(subtask_id):
    changes = SubtaskUpdate.model_validate(_json_body()).model_dump(exclude_unset=True)
    subtask = _storage().update_subtask(subtask_id, **changes)
    if subtask is None:
        abort(404, description='Subtask not found')
    return jsonify(subtask.to_dict())


@api.route('/subtasks/<int:subtask_id>', methods=['DELETE'])
def delete_subtask(subtask_id):
    if not _storage().delete_subtask(subtask_id):
        abort(404, description='Subtask not found')
    return '', 204


# AI suggestions

@api.route('/tasks/<int:task_id>/suggestions')
def list_suggestions(task_id):
    _task_or_404(task_id)
    return jsonify([s.to_dict() for s in _storage().get_ai_suggestions(task_id)])


@api.route('/tasks/<int:task_id>/suggestions', methods=['POST'])
def create_suggestions(task_id):
    task = _task_or_404(task_id)
    stored = generate_suggestions(_storage(), _ai_service(), task)
    if stored is None:
        abort(404, description='Task not found')
    return jsonify([s.to_dict() for s in stored]), 201


@api.route('/tasks/<int:task_id>/suggestions/apply', methods=['POST'])
def apply_suggestion(task_id):
    storage = _storage()
    _task_or_404(task_id)
    payload = ApplySuggestion.model_validate(_json_body())

    suggestion = next(
        (s for s in storage.get_ai_suggestions(task_id) if s.id == payload.suggestion_id),
        None,
    )
    if suggestion is None:
        abort(404, description='Suggestion not found')

    changes = {}
    if suggestion.priority:
        changes['priority'] = suggestion.priority

    task = storage.update_task(task_id, **changes)
    if task is None:
        abort(404, description='Task not found')
    return jsonify(task.to_dict())
