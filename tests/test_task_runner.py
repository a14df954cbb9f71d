"""Tests for the background task runner."""

import threading
import time

import task_runner
from task_runner import TaskRunner, ProgressChannel, COMPLETED, CANCELLED


def pump(app, until, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not until() and time.monotonic() < deadline:
        app.processEvents()
        time.sleep(0.01)
    app.processEvents()
    return until()


class NoApplication:
    @staticmethod
    def instance():
        return None


# --- Progress channel ---


def test_progress_channel_latest_value_wins(tmp_path):
    channel = ProgressChannel(tmp_path / 'cache' / 'progress.txt')
    assert channel.read() is None
    channel.write('Scanning 1/3')
    channel.write('Scanning 2/3')
    assert channel.read() == 'Scanning 2/3'
    channel.clear()
    assert channel.read() is None


# --- Synchronous fallback ---


def test_runs_inline_without_application(tmp_path, monkeypatch):
    monkeypatch.setattr(task_runner, 'QCoreApplication', NoApplication)
    runner = TaskRunner(tmp_path / 'progress.txt')
    results = []

    assert runner.start(lambda channel, is_cancelled: 42, on_result=results.append)
    assert results == [42]
    assert runner.state == COMPLETED


def test_inline_with_application_delivers_later(qapp, tmp_path):
    runner = TaskRunner(tmp_path / 'progress.txt', use_threads=False)
    results = []

    runner.start(lambda channel, is_cancelled: 'done', on_result=results.append)
    assert results == []
    assert pump(qapp, lambda: results)
    assert results == ['done']


# --- Threaded execution ---


def test_threaded_result_delivered_once(qapp, tmp_path):
    runner = TaskRunner(tmp_path / 'progress.txt', poll_interval=10, throttle=0)
    results = []
    progress = []
    worker_threads = []

    def workload(channel, is_cancelled):
        worker_threads.append(threading.get_ident())
        channel.write('halfway')
        time.sleep(0.2)
        return {'found': 3}

    assert runner.start(workload, on_result=results.append, on_progress=progress.append)
    assert runner.is_busy()
    assert pump(qapp, lambda: results)
    pump(qapp, lambda: False, timeout=0.2)
    runner.wait_for_threads()

    assert results == [{'found': 3}]
    assert worker_threads[0] != threading.get_ident()
    assert progress == ['halfway']
    assert not runner.is_busy()
    assert not (tmp_path / 'progress.txt').exists()


def test_second_start_rejected_while_running(qapp, tmp_path):
    runner = TaskRunner(tmp_path / 'progress.txt')
    release = threading.Event()
    results = []

    runner.start(lambda channel, is_cancelled: release.wait(5), on_result=results.append)
    assert not runner.start(lambda channel, is_cancelled: 'second', on_result=results.append)

    release.set()
    assert pump(qapp, lambda: results)
    runner.wait_for_threads()
    assert results == [True]


def test_cancel_discards_result(qapp, tmp_path):
    runner = TaskRunner(tmp_path / 'progress.txt')
    release = threading.Event()
    results = []
    cancelled = []
    seen_cancel = []

    def workload(channel, is_cancelled):
        release.wait(5)
        seen_cancel.append(is_cancelled())
        return 'late'

    runner.start(workload, on_result=results.append, on_cancel=lambda: cancelled.append(True))
    assert runner.cancel()
    assert runner.state == CANCELLED
    assert cancelled == [True]

    release.set()
    runner.wait_for_threads()
    pump(qapp, lambda: False, timeout=0.3)
    assert results == []
    assert seen_cancel == [True]


def test_cancel_ignored_when_not_cancellable(qapp, tmp_path):
    runner = TaskRunner(tmp_path / 'progress.txt')
    release = threading.Event()
    results = []

    runner.start(lambda channel, is_cancelled: release.wait(5), on_result=results.append, cancellable=False)
    assert not runner.cancel()

    release.set()
    assert pump(qapp, lambda: results)
    runner.wait_for_threads()


def test_workload_exception_reported(qapp, tmp_path):
    runner = TaskRunner(tmp_path / 'progress.txt')
    errors = []
    results = []

    def workload(channel, is_cancelled):
        raise RuntimeError('disk full')

    runner.start(workload, on_result=results.append, on_error=errors.append)
    assert pump(qapp, lambda: errors)
    runner.wait_for_threads()

    assert errors == ['disk full']
    assert results == []
    assert not runner.is_busy()


def test_start_rejected_until_cancelled_thread_exits(qapp, tmp_path):
    runner = TaskRunner(tmp_path / 'progress.txt')
    release = threading.Event()
    results = []

    runner.start(lambda channel, is_cancelled: release.wait(5), on_result=results.append)
    assert runner.cancel()
    assert runner.is_busy()
    assert not runner.start(lambda channel, is_cancelled: 'second', on_result=results.append)

    release.set()
    runner.wait_for_threads()
    assert not runner.is_busy()
    assert runner.start(lambda channel, is_cancelled: 'third', on_result=results.append)
    assert pump(qapp, lambda: results)
    runner.wait_for_threads()
    assert results == ['third']


def test_cancelled_run_cannot_write_progress(qapp, tmp_path):
    progress_file = tmp_path / 'progress.txt'
    runner = TaskRunner(progress_file)
    release = threading.Event()
    written = []

    def workload(channel, is_cancelled):
        release.wait(5)
        channel.write('stale')
        written.append(True)

    runner.start(workload, on_result=lambda result: None)
    runner.cancel()
    release.set()
    runner.wait_for_threads()

    assert written == [True]
    assert not progress_file.exists()
