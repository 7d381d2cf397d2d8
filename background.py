"""Fire-and-forget job queue for work that must not hold up a request."""
import logging
import threading
from concurrent import futures

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Runs callables on a small thread pool, each inside an app context.

    A failing job is logged and otherwise dropped; nothing is reported back to
    the request that scheduled it.
    """

    def __init__(self, app=None, max_workers=2):
        self._app = app
        self._executor = futures.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='background')
        self._pending = set()
        self._lock = threading.Lock()

    def init_app(self, app):
        self._app = app
        app.extensions['background'] = self

    def submit(self, name, fn, *args, **kwargs):
        future = self._executor.submit(self._run, name, fn, args, kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def _run(self, name, fn, args, kwargs):
        logger.debug("Running background job %s", name)
        try:
            if self._app is None:
                return fn(*args, **kwargs)
            with self._app.app_context():
                return fn(*args, **kwargs)
        except Exception:
            logger.exception("Background job %s failed", name)
            raise

    def _discard(self, future):
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout=None):
        """Block until every job submitted so far has finished."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            futures.wait(pending, timeout=timeout)

    def shutdown(self, wait=True):
        self._executor.shutdown(wait=wait)
