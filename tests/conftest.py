import pytest

from app import create_app
from storage import MemStorage

from .fakes import FakeAIService


@pytest.fixture()
def ai():
    return FakeAIService()


@pytest.fixture()
def app(ai):
    """App on a fresh in-memory store, without stock categories."""
    app = create_app(
        {'TESTING': True, 'SEED_DEFAULT_CATEGORIES': False},
        storage=MemStorage(),
        ai_service=ai,
    )
    yield app
    app.extensions['background'].shutdown()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(params=['memory', 'database'])
def storage(request):
    """
    Every storage backend, fresh per test.

    The database variant runs on in-memory SQLite inside an app context.
    """
    if request.param == 'memory':
        yield MemStorage()
        return

    app = create_app(
        {
            'TESTING': True,
            'STORAGE_BACKEND': 'database',
            'SQLALCHEMY_DATABASE_URI': 'sqlite://',
            'SEED_DEFAULT_CATEGORIES': False,
        },
        ai_service=FakeAIService(),
    )
    with app.app_context():
        yield app.extensions['storage']
    app.extensions['background'].shutdown()


@pytest.fixture(params=['memory', 'database'])
def make_app(request, tmp_path):
    """
    Factory for apps on every storage backend.

    The database variant uses a SQLite file so the background worker thread
    gets its own connection.
    """
    apps = []

    def factory(ai_service):
        config = {'TESTING': True, 'SEED_DEFAULT_CATEGORIES': False, 'STORAGE_BACKEND': request.param}
        if request.param == 'database':
            config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///' + str(tmp_path / 'tasks.db')
        app = create_app(config, ai_service=ai_service)
        apps.append(app)
        return app

    yield factory
    for app in apps:
        app.extensions['background'].shutdown()
