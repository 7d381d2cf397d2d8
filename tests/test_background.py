import logging

from flask import Flask, current_app

from background import BackgroundTasks


def test_runs_job_inside_app_context():
    app = Flask(__name__)
    tasks = BackgroundTasks(max_workers=1)
    tasks.init_app(app)

    future = tasks.submit('name lookup', lambda: current_app.name)
    tasks.drain(timeout=5)

    assert future.result() == app.name
    assert app.extensions['background'] is tasks
    tasks.shutdown()


def test_failure_is_logged(caplog):
    tasks = BackgroundTasks(max_workers=1)

    def explode():
        raise ValueError('boom')

    with caplog.at_level(logging.ERROR, logger='background'):
        future = tasks.submit('exploding job', explode)
        tasks.drain(timeout=5)

    assert isinstance(future.exception(), ValueError)
    assert 'Background job exploding job failed' in caplog.text
    tasks.shutdown()


def test_drain_without_jobs_returns():
    tasks = BackgroundTasks()
    tasks.drain()
    tasks.shutdown()
