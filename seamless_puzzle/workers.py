# workers.py
"""
Qt bridge for running controller commands off the GUI thread.
Defines a Worker QRunnable whose outcome is reported through WorkerSignals.
"""
import inspect
import logging
from typing import Any, Callable, Optional

from PySide6.QtCore import QObject, QRunnable, QThreadPool, Signal

from .errors import OperationCancelledError

logger = logging.getLogger(__name__)


class WorkerSignals(QObject):
    started = Signal()
    finished = Signal()
    error = Signal(str)
    progress = Signal(float)
    result = Signal(object)


def _accepts_progress(fn: Callable) -> bool:
    try:
        params = inspect.signature(fn).parameters
    except (TypeError, ValueError):
        return False
    return "progress" in params or any(
        p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values()
    )


class Worker(QRunnable):
    """Wraps any function to run in a QThreadPool.

    If *fn* takes a ``progress`` keyword it receives a callable that emits
    ``signals.progress``.
    """

    def __init__(
        self,
        fn: Callable,
        *args,
        progress_callback: Optional[Callable[[float], Any]] = None,
        **kwargs,
    ):
        super().__init__()
        self.fn = fn
        self.args = args
        self.kwargs = kwargs
        self.signals = WorkerSignals()
        if progress_callback:
            self.signals.progress.connect(progress_callback)
        if "progress" not in kwargs and _accepts_progress(fn):
            self.kwargs["progress"] = self.signals.progress.emit

    def run(self) -> None:
        try:
            self.signals.started.emit()
            result = self.fn(*self.args, **self.kwargs)
            self.signals.result.emit(result)
        except OperationCancelledError:
            logger.debug("Worker cancelled: %s", getattr(self.fn, "__name__", self.fn))
            self.signals.result.emit(None)
        except Exception as e:
            logger.error("Worker error: %s", e)
            self.signals.error.emit(str(e))
        finally:
            self.signals.finished.emit()


def run_in_pool(worker: Worker, pool: Optional[QThreadPool] = None) -> Worker:
    """Start *worker* on *pool* (the global pool by default)."""
    (pool or QThreadPool.globalInstance()).start(worker)
    return worker


__all__ = ["Worker", "WorkerSignals", "run_in_pool"]
