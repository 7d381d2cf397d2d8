import logging

import pytest

from app import create_app
from storage import MemStorage

from .fakes import DeletingAIService, FakeAIService


def _create_task(client, **body):
    body.setdefault('title', 'Write report')
    response = client.post('/api/tasks', json=body)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def test_health(client):
    response = client.get('/api/health')

    assert response.status_code == 200
    assert response.get_json()['status'] == 'ok'


def test_user_is_created_once_without_password(client, app):
    first = client.get('/api/user').get_json()
    second = client.get('/api/user').get_json()

    assert first == second
    assert first['username'] == 'default_user'
    assert first['externalId'] == 'local_development'
    assert 'password' not in first


def test_categories_roundtrip(client):
    created = client.post('/api/categories', json={'name': 'Work', 'color': '#10B981'})

    assert created.status_code == 201
    assert created.get_json() == {'id': 1, 'name': 'Work', 'color': '#10B981'}
    assert client.get('/api/categories').get_json() == [created.get_json()]


def test_category_validation(client):
    response = client.post('/api/categories', json={'name': 'Work'})

    assert response.status_code == 400
    body = response.get_json()
    assert body['error'] == 'Validation failed'
    assert [d['field'] for d in body['details']] == ['color']


def test_default_categories_are_seeded(ai):
    app = create_app({'TESTING': True}, storage=MemStorage(), ai_service=ai)
    names = [c['name'] for c in app.test_client().get('/api/categories').get_json()]

    assert names == ['Work', 'Personal', 'Education', 'Health']


def test_create_task_defaults_and_owner(client):
    task = _create_task(client, userId=999)
    user = client.get('/api/user').get_json()

    assert task['id'] == 1
    assert task['userId'] == user['id']
    assert task['priority'] == 'medium'
    assert task['completed'] is False
    assert task['createdAt'] == task['updatedAt']


def test_create_task_parses_due_date(client):
    task = _create_task(client, dueDate='2026-11-03T17:00:00Z')

    assert task['dueDate'] == '2026-11-03T17:00:00+00:00'


@pytest.mark.parametrize('body, field', [
    ({}, 'title'),
    ({'title': ''}, 'title'),
    ({'title': 'x', 'priority': 'urgent'}, 'priority'),
    ({'title': 'x', 'completed': 'maybe'}, 'completed'),
])
def test_create_task_validation(client, body, field):
    response = client.post('/api/tasks', json=body)

    assert response.status_code == 400
    assert field in [d['field'] for d in response.get_json()['details']]


def test_non_object_body_is_rejected(client):
    response = client.post('/api/tasks', json=['title'])

    assert response.status_code == 400
    assert response.get_json() == {'error': 'Request body must be a JSON object'}


def test_get_task(client):
    task = _create_task(client)

    assert client.get(f"/api/tasks/{task['id']}").get_json() == task
    missing = client.get('/api/tasks/99')
    assert missing.status_code == 404
    assert missing.get_json() == {'error': 'Task not found'}


def test_list_filter_precedence(client):
    done = _create_task(client, title='Done', completed=True, priority='low')
    high = _create_task(client, title='Urgent', priority='high', categoryId=2)
    plain = _create_task(client, title='Plain', categoryId=2)

    def ids(query):
        return [t['id'] for t in client.get(f'/api/tasks{query}').get_json()]

    assert ids('') == [done['id'], high['id'], plain['id']]
    assert ids('?completed=true&priority=high') == [done['id']]
    assert ids('?completed=false') == [high['id'], plain['id']]
    assert ids('?priority=high&categoryId=5') == [high['id']]
    assert ids('?completed=maybe&priority=low') == [done['id']]
    assert ids('?categoryId=2') == [high['id'], plain['id']]
    assert ids('?categoryId=abc') == []


def test_patch_task(client):
    task = _create_task(client)

    response = client.patch(f"/api/tasks/{task['id']}", json={'completed': True, 'userId': 42})

    updated = response.get_json()
    assert response.status_code == 200
    assert updated['completed'] is True
    assert updated['userId'] == task['userId']
    assert updated['title'] == task['title']
    assert updated['updatedAt'] > task['updatedAt']


def test_patch_task_clears_nullable_fields(client):
    task = _create_task(client, description='notes', categoryId=1)

    updated = client.patch(f"/api/tasks/{task['id']}", json={'description': None, 'categoryId': None}).get_json()

    assert updated['description'] is None
    assert updated['categoryId'] is None


def test_patch_task_errors(client):
    task = _create_task(client)

    assert client.patch('/api/tasks/99', json={'title': 'x'}).status_code == 404
    bad = client.patch(f"/api/tasks/{task['id']}", json={'title': None})
    assert bad.status_code == 400
    assert client.get(f"/api/tasks/{task['id']}").get_json() == task


def test_delete_task_cascades(client, app):
    task = _create_task(client)
    client.post(f"/api/tasks/{task['id']}/subtasks", json={'title': 'Draft outline'})
    client.post(f"/api/tasks/{task['id']}/suggestions")

    assert client.delete(f"/api/tasks/{task['id']}").status_code == 204
    assert client.delete(f"/api/tasks/{task['id']}").status_code == 404

    storage = app.extensions['storage']
    assert storage.get_subtasks(task['id']) == []
    assert storage.get_ai_suggestions(task['id']) == []
    assert client.get(f"/api/tasks/{task['id']}/subtasks").status_code == 404


def test_subtasks(client):
    task = _create_task(client)

    created = client.post(f"/api/tasks/{task['id']}/subtasks", json={'title': 'Draft outline', 'taskId': 77})
    subtask = created.get_json()
    assert created.status_code == 201
    assert subtask == {'id': 1, 'title': 'Draft outline', 'taskId': task['id'], 'completed': False}

    patched = client.patch(f"/api/subtasks/{subtask['id']}", json={'completed': True, 'taskId': 77})
    assert patched.status_code == 200
    assert patched.get_json()['completed'] is True
    assert patched.get_json()['taskId'] == task['id']

    assert client.get(f"/api/tasks/{task['id']}/subtasks").get_json() == [patched.get_json()]
    assert client.delete(f"/api/subtasks/{subtask['id']}").status_code == 204
    assert client.delete(f"/api/subtasks/{subtask['id']}").status_code == 404
    assert client.patch(f"/api/subtasks/{subtask['id']}", json={'completed': False}).status_code == 404


def test_subtask_requires_existing_task(client):
    response = client.post('/api/tasks/5/subtasks', json={'title': 'Orphan'})

    assert response.status_code == 404
    assert client.post('/api/tasks/5/subtasks', json={}).status_code == 404


def test_generate_suggestions(client, ai):
    task = _create_task(client, priority='medium')

    response = client.post(f"/api/tasks/{task['id']}/suggestions")

    stored = response.get_json()
    assert response.status_code == 201
    assert [s['suggestion'] for s in stored] == [
        'Outline the report',
        'Collect figures',
        'Consider changing priority to high',
    ]
    assert stored[-1]['priority'] == 'high'
    assert client.get(f"/api/tasks/{task['id']}/suggestions").get_json() == stored


def test_generate_suggestions_skips_matching_priority(client, ai):
    task = _create_task(client, priority='high')

    stored = client.post(f"/api/tasks/{task['id']}/suggestions").get_json()

    assert len(stored) == 2
    assert client.post('/api/tasks/99/suggestions').status_code == 404


def test_apply_suggestion(client):
    task = _create_task(client)
    stored = client.post(f"/api/tasks/{task['id']}/suggestions").get_json()
    hint = stored[-1]

    response = client.post(f"/api/tasks/{task['id']}/suggestions/apply", json={'suggestionId': hint['id']})

    assert response.status_code == 200
    assert response.get_json()['priority'] == 'high'


def test_apply_suggestion_errors(client):
    first = _create_task(client)
    second = _create_task(client, title='Other')
    foreign = client.post(f"/api/tasks/{second['id']}/suggestions").get_json()[0]
    url = f"/api/tasks/{first['id']}/suggestions/apply"

    assert client.post(url, json={}).status_code == 400
    assert client.post(url, json={'suggestionId': 0}).status_code == 400
    missing = client.post(url, json={'suggestionId': foreign['id']})
    assert missing.status_code == 404
    assert missing.get_json() == {'error': 'Suggestion not found'}
    assert client.post('/api/tasks/99/suggestions/apply', json={'suggestionId': 1}).status_code == 404


def test_create_task_schedules_suggestions(make_app):
    ai = FakeAIService()
    app = make_app(ai)
    client = app.test_client()

    task = _create_task(client, generateAiSuggestions=True)
    app.extensions['background'].drain(timeout=5)

    suggestions = client.get(f"/api/tasks/{task['id']}/suggestions").get_json()
    assert [s['suggestion'] for s in suggestions] == [
        'Outline the report',
        'Collect figures',
        'Consider changing priority to high',
    ]
    assert ('suggestions', task['id']) in ai.calls


def test_background_suggestions_for_deleted_task_are_dropped(make_app):
    ai = DeletingAIService()
    app = make_app(ai)
    ai.storage = app.extensions['storage']
    client = app.test_client()

    task = _create_task(client, generateAiSuggestions=True)
    app.extensions['background'].drain(timeout=5)

    assert client.get(f"/api/tasks/{task['id']}").status_code == 404
    with app.app_context():
        assert app.extensions['storage'].get_ai_suggestions(task['id']) == []


def test_suggestions_for_task_deleted_mid_request_are_dropped(make_app):
    ai = DeletingAIService()
    app = make_app(ai)
    ai.storage = app.extensions['storage']
    client = app.test_client()
    task = _create_task(client)

    response = client.post(f"/api/tasks/{task['id']}/suggestions")

    assert response.status_code == 404
    with app.app_context():
        assert app.extensions['storage'].get_ai_suggestions(task['id']) == []


def test_suggestion_failure_does_not_fail_task_creation(caplog):
    app = create_app(
        {'TESTING': True, 'SEED_DEFAULT_CATEGORIES': False},
        storage=MemStorage(),
        ai_service=FakeAIService(fail=True),
    )
    client = app.test_client()

    with caplog.at_level(logging.ERROR, logger='background'):
        task = _create_task(client, generateAiSuggestions=True)
        app.extensions['background'].drain(timeout=5)

    assert client.get(f"/api/tasks/{task['id']}").status_code == 200
    assert client.get(f"/api/tasks/{task['id']}/suggestions").get_json() == []
    assert any('failed' in record.getMessage() for record in caplog.records)


def test_unexpected_errors_are_hidden(ai, caplog):
    class BrokenStorage(MemStorage):
        def get_categories(self):
            raise RuntimeError('disk on fire')

    app = create_app({'TESTING': True, 'SEED_DEFAULT_CATEGORIES': False}, storage=BrokenStorage(), ai_service=ai)

    with caplog.at_level(logging.ERROR):
        response = app.test_client().get('/api/categories')

    assert response.status_code == 500
    assert response.get_json() == {'error': 'Internal server error'}
    assert 'disk on fire' not in response.get_data(as_text=True)


def test_unknown_route_is_json_404(client):
    response = client.get('/api/nope')

    assert response.status_code == 404
    assert 'error' in response.get_json()
