"""
Task Runner
Runs one scan or install workload at a time off the UI thread
"""

import logging
import time
from pathlib import Path

from PyQt6.QtCore import QCoreApplication, QObject, QThread, QTimer, pyqtSignal

import config

logger = logging.getLogger(__name__)

IDLE = 'idle'
RUNNING = 'running'
COMPLETED = 'completed'
CANCELLED = 'cancelled'


class ProgressChannel:
    """Latest-value-wins progress text, relayed through a scratch file."""

    def __init__(self, path):
        self.path = Path(path)

    def write(self, text):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(text, encoding='utf-8')
        except OSError as e:
            logger.debug(f"Could not write progress file: {e}")

    def read(self):
        try:
            text = self.path.read_text(encoding='utf-8').strip()
        except OSError:
            return None
        return text or None

    def clear(self):
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.debug(f"Could not remove progress file: {e}")


class RunChannel:
    """Progress sink handed to one run; writes are dropped once that run is over."""

    def __init__(self, channel, is_current):
        self.channel = channel
        self.is_current = is_current

    def write(self, text):
        if self.is_current():
            self.channel.write(text)


class WorkloadThread(QThread):
    """Worker thread running a single workload"""
    finished = pyqtSignal(object)
    failed = pyqtSignal(str)

    def __init__(self, workload, channel):
        """Initialize workload thread.

        Args:
            workload: callable(channel, is_cancelled) - Work to run; its return value is the result
            channel: RunChannel - Progress sink handed to the workload
        """
        super().__init__()
        self.workload = workload
        self.channel = channel
        self._is_cancelled = False

    def cancel(self):
        """Request cancellation; the workload polls is_cancelled()."""
        self._is_cancelled = True

    def is_cancelled(self):
        return self._is_cancelled

    def run(self):
        """Execute the workload.

        Emits: finished(result) or failed(message)
        """
        try:
            result = self.workload(self.channel, self.is_cancelled)
        except Exception as e:
            logger.exception("Background task failed")
            self.failed.emit(str(e))
            return
        self.finished.emit(result)


class TaskRunner(QObject):
    def __init__(self, progress_file, parent=None, use_threads=True,
                 poll_interval=config.PROGRESS_POLL_MS, throttle=config.PROGRESS_THROTTLE_SECONDS,
                 clock=time.monotonic):
        """Initialize task runner.

        Args:
            progress_file: str/Path - Scratch file used as the progress channel
            parent: Optional QObject - Qt parent
            use_threads: bool - Run workloads on a QThread when an application exists
            poll_interval: int - Milliseconds between progress polls
            throttle: float - Minimum seconds between visible progress updates
            clock: callable - Monotonic time source
        """
        super().__init__(parent)
        self.channel = ProgressChannel(progress_file)
        self.use_threads = use_threads
        self.poll_interval = poll_interval
        self.throttle = throttle
        self.clock = clock

        self.state = IDLE
        self._run_id = 0
        self._thread = None
        self._orphans = []
        self._timer = None
        self._delivered = False
        self._cancellable = True
        self._on_result = None
        self._on_cancel = None
        self._on_progress = None
        self._on_error = None
        self._last_progress = None
        self._last_progress_at = None

    def is_busy(self):
        """True while a run is active or a cancelled run has not exited yet."""
        if self.state == RUNNING:
            return True
        self._reap_orphans()
        return bool(self._orphans)

    def start(self, workload, on_result, on_cancel=None, on_progress=None, on_error=None, cancellable=True):
        """Start a workload.

        Args:
            workload: callable(channel, is_cancelled) - Work to run
            on_result: callable(result) - Called once when the workload completes
            on_cancel: Optional callable() - Called when the user cancels
            on_progress: Optional callable(str) - Receives throttled progress text
            on_error: Optional callable(str) - Called if the workload raises
            cancellable: bool - Whether cancel() is honoured

        Returns:
            bool - False if another workload is still running
        """
        if self.is_busy():
            logger.warning("A task is already running, ignoring new request")
            return False

        self.channel.clear()
        self._run_id += 1
        run_id = self._run_id
        run_channel = RunChannel(self.channel, lambda: self._run_id == run_id and self.state == RUNNING)
        self.state = RUNNING
        self._delivered = False
        self._cancellable = cancellable
        self._on_result = on_result
        self._on_cancel = on_cancel
        self._on_progress = on_progress
        self._on_error = on_error
        self._last_progress = None
        self._last_progress_at = None

        if not self.use_threads or QCoreApplication.instance() is None:
            self._run_inline(workload, run_channel)
            return True

        thread = WorkloadThread(workload, run_channel)
        thread.finished.connect(lambda result: self._thread_finished(thread, result))
        thread.failed.connect(lambda message: self._thread_failed(thread, message))
        self._thread = thread

        self._timer = QTimer(self)
        self._timer.timeout.connect(self._poll_progress)
        self._timer.start(self.poll_interval)

        thread.start()
        return True

    def _run_inline(self, workload, run_channel):
        logger.debug("Running task synchronously")
        run_id = self._run_id
        error = None
        result = None
        try:
            result = workload(run_channel, lambda: self.state == CANCELLED)
        except Exception as e:
            logger.exception("Task failed")
            error = str(e)

        def deliver():
            if run_id != self._run_id or self.state != RUNNING:
                return
            self._finish(COMPLETED)
            if error is not None:
                self._report_error(error)
            else:
                self._deliver(result)

        if QCoreApplication.instance() is not None:
            QTimer.singleShot(config.SYNC_RESULT_DELAY_MS, deliver)
        else:
            deliver()

    def _thread_finished(self, thread, result):
        if thread is not self._thread or self.state != RUNNING:
            return
        # the signal is the last thing run() does
        thread.wait()
        self._finish(COMPLETED)
        self._deliver(result)

    def _thread_failed(self, thread, message):
        if thread is not self._thread or self.state != RUNNING:
            return
        thread.wait()
        self._finish(COMPLETED)
        self._report_error(message)

    def _deliver(self, result):
        if self._delivered:
            return
        self._delivered = True
        self._on_result(result)

    def _report_error(self, message):
        if self._delivered:
            return
        self._delivered = True
        if self._on_error:
            self._on_error(message)
        else:
            logger.error(f"Task failed: {message}")

    def _finish(self, state):
        if self._timer is not None:
            self._timer.stop()
            self._timer = None
        if self._thread is not None:
            self._orphans.append(self._thread)
            self._thread = None
        self.state = state
        self.channel.clear()

    def _poll_progress(self):
        text = self.channel.read()
        if not text or text == self._last_progress:
            return
        now = self.clock()
        if self._last_progress_at is not None and now - self._last_progress_at < self.throttle:
            return
        self._last_progress = text
        self._last_progress_at = now
        if self._on_progress:
            self._on_progress(text)

    def cancel(self):
        """Cancel the running workload; its result is discarded.

        Returns:
            bool - True if a running, cancellable workload was cancelled
        """
        if self.state != RUNNING or not self._cancellable:
            return False
        if self._thread is not None:
            self._thread.cancel()
        self._finish(CANCELLED)
        logger.info("Task cancelled by user")
        if self._on_cancel:
            self._on_cancel()
        return True

    def _reap_orphans(self):
        self._orphans = [t for t in self._orphans if t.isRunning()]

    def wait_for_threads(self, msecs=5000):
        """Block until background threads exit (used on shutdown)."""
        threads = list(self._orphans)
        if self._thread is not None:
            self._thread.cancel()
            threads.append(self._thread)
        for thread in threads:
            thread.wait(msecs)
        self._reap_orphans()
