import atexit
import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from ai_service import DEFAULT_ENDPOINT, HuggingFaceAIService, OfflineAIService
from background import BackgroundTasks
from model import db
from routes import api
from storage import DatabaseStorage, MemStorage, seed_default_categories

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name, default):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def load_config(instance_path):
    return {
        'STORAGE_BACKEND': os.getenv('STORAGE_BACKEND', 'memory').strip().lower(),
        'SQLALCHEMY_DATABASE_URI': os.getenv(
            'DATABASE_URL', 'sqlite:///' + os.path.join(instance_path, 'tasks.db')
        ),
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SEED_DEFAULT_CATEGORIES': _env_bool('SEED_DEFAULT_CATEGORIES', True),
        'HUGGINGFACE_API_KEY': os.getenv('HUGGINGFACE_API_KEY', '').strip(),
        'HUGGINGFACE_ENDPOINT': os.getenv('HUGGINGFACE_ENDPOINT', DEFAULT_ENDPOINT),
        'AI_TIMEOUT_SECONDS': float(os.getenv('AI_TIMEOUT_SECONDS', '15')),
        'BACKGROUND_WORKERS': int(os.getenv('BACKGROUND_WORKERS', '2')),
    }


def _make_storage(app):
    backend = app.config['STORAGE_BACKEND']
    if backend == 'memory':
        return MemStorage()
    if backend == 'database':
        db.init_app(app)
        with app.app_context():
            db.create_all()
        return DatabaseStorage()
    raise RuntimeError(f"Unknown STORAGE_BACKEND {backend!r}, expected 'memory' or 'database'")


def _make_ai_service(app):
    api_key = app.config['HUGGINGFACE_API_KEY']
    if not api_key:
        logger.warning("HUGGINGFACE_API_KEY not set, AI suggestions run in offline mode")
        return OfflineAIService()
    return HuggingFaceAIService(
        api_key=api_key,
        endpoint=app.config['HUGGINGFACE_ENDPOINT'],
        timeout=app.config['AI_TIMEOUT_SECONDS'],
    )


def register_error_handlers(app):

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc):
        details = [
            {'field': '.'.join(str(part) for part in err['loc']), 'message': err['msg']}
            for err in exc.errors()
        ]
        return jsonify({'error': 'Validation failed', 'details': details}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        # Routing redirects carry their own Location header
        if exc.code is not None and exc.code < 400:
            return exc
        return jsonify({'error': exc.description}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc):
        logger.exception("Unhandled error")
        return jsonify({'error': 'Internal server error'}), 500


def create_app(test_config=None, storage=None, ai_service=None):
    """Build the app with its own storage, AI service and background queue."""
    app = Flask(__name__, instance_relative_config=True)

    # Ensure instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    app.config.from_mapping(load_config(app.instance_path))
    if test_config:
        app.config.update(test_config)

    if storage is None:
        storage = _make_storage(app)
    if ai_service is None:
        ai_service = _make_ai_service(app)
        atexit.register(ai_service.close)

    app.extensions['storage'] = storage
    app.extensions['ai_service'] = ai_service
    BackgroundTasks(max_workers=app.config['BACKGROUND_WORKERS']).init_app(app)

    if app.config['SEED_DEFAULT_CATEGORIES']:
        with app.app_context():
            seed_default_categories(storage)

    app.register_blueprint(api, url_prefix='/api')
    register_error_handlers(app)
    return app


if __name__ == '__main__':
    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    create_app().run(debug=True)
