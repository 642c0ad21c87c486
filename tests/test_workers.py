import os

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

pytest.importorskip(
    "PySide6.QtCore",
    reason="PySide6 Qt bindings required for worker tests",
    exc_type=ImportError,
)

from PySide6.QtCore import QCoreApplication, QThreadPool  # noqa: E402

from seamless_puzzle.errors import OperationCancelledError  # noqa: E402
from seamless_puzzle.workers import Worker, run_in_pool  # noqa: E402


@pytest.fixture(scope="module")
def qt_app() -> QCoreApplication:
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    return app


def _collect(worker: Worker) -> dict:
    seen = {"started": 0, "finished": 0, "result": [], "error": [], "progress": []}
    worker.signals.started.connect(lambda: seen.__setitem__("started", seen["started"] + 1))
    worker.signals.finished.connect(lambda: seen.__setitem__("finished", seen["finished"] + 1))
    worker.signals.result.connect(seen["result"].append)
    worker.signals.error.connect(seen["error"].append)
    worker.signals.progress.connect(seen["progress"].append)
    return seen


def test_worker_emits_result_and_progress(qt_app):
    def task(a, b, progress=None):
        progress(0.5)
        return a + b

    worker = Worker(task, 2, 3)
    seen = _collect(worker)
    worker.run()

    assert seen["started"] == 1
    assert seen["finished"] == 1
    assert seen["result"] == [5]
    assert seen["progress"] == [0.5]
    assert seen["error"] == []


def test_worker_reports_errors(qt_app):
    def broken():
        raise RuntimeError("bad input")

    worker = Worker(broken)
    seen = _collect(worker)
    worker.run()
    assert seen["error"] == ["bad input"]
    assert seen["result"] == []
    assert seen["finished"] == 1


def test_cancelled_worker_is_not_an_error(qt_app):
    def cancelled():
        raise OperationCancelledError("stop")

    worker = Worker(cancelled)
    seen = _collect(worker)
    worker.run()
    assert seen["error"] == []
    assert seen["result"] == [None]


def test_functions_without_progress_are_called_plainly(qt_app):
    worker = Worker(lambda value: value * 2, 21)
    seen = _collect(worker)
    worker.run()
    assert seen["result"] == [42]


def test_run_in_pool_executes(qt_app):
    calls = []
    pool = QThreadPool()
    worker = Worker(calls.append, "ran")
    assert run_in_pool(worker, pool) is worker
    assert pool.waitForDone(5000)
    assert calls == ["ran"]
