"""Poll loop that restarts the command when the tracked files change."""

import logging
import threading
from typing import Optional

from .config import WatchConfig
from .exceptions import ProcessControlError, WatchLoopAlreadyRunningError
from .fingerprint import compute_state
from .models import DirState, WatchState
from .supervisor import ProcessSupervisor


logger = logging.getLogger(__name__)

CHANGE_BANNER = "[FILES CHANGED RESTARTING COMMAND]"


class WatchLoop:
    """
    Main orchestrator for a watch run.

    Polls the fingerprint of the tracked files every ``poll_interval``
    seconds and restarts the command whenever it differs from the
    previous poll. An interrupt (``request_stop``/``stop``) terminates
    the command's whole process group and stops the loop.
    """

    def __init__(
        self,
        config: WatchConfig,
        supervisor: Optional[ProcessSupervisor] = None,
    ):
        """
        Initialize the watch loop.

        Args:
            config: Watch configuration
            supervisor: Process supervisor, created from config if omitted
        """
        self.config = config
        self.supervisor = supervisor or ProcessSupervisor(grace_period=config.grace_period)

        self._state = WatchState.IDLE
        self._last_state: Optional[DirState] = None
        self._restart_count = 0
        self._reported_exit_pid: Optional[int] = None
        self._error: Optional[BaseException] = None

        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._state_lock = threading.Lock()

    @property
    def state(self) -> WatchState:
        return self._state

    @property
    def last_state(self) -> Optional[DirState]:
        """Fingerprint observed by the most recent poll."""
        return self._last_state

    @property
    def restart_count(self) -> int:
        return self._restart_count

    @property
    def is_running(self) -> bool:
        return self._running

    def compute_state(self) -> DirState:
        return compute_state(self.config.root, self.config.matcher, self.config.extra_files)

    def start(self) -> None:
        """
        Start the watch loop (blocking).

        Blocks until ``request_stop()`` or ``stop()`` is called or a
        KeyboardInterrupt arrives, then shuts down.

        Raises:
            WatchLoopAlreadyRunningError: If already running
            ProcessControlError: If the command could not be terminated
        """
        self.start_async()

        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=0.5)
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            self._shutdown()

        self._raise_error()

    def start_async(self) -> None:
        """
        Start the watch loop in the background.

        Computes the baseline fingerprint, starts the command and returns
        while polling continues in a background thread.

        Raises:
            WatchLoopAlreadyRunningError: If already running
        """
        with self._lock:
            if self._running:
                raise WatchLoopAlreadyRunningError("Watch loop is already running")

            self._running = True
            self._stop_event.clear()

        self._last_state = self.compute_state()
        logger.debug(f"Baseline: {self._last_state}")

        self.supervisor.replace(self.config.command_line)
        self._set_state(WatchState.RUNNING)

        self._thread = threading.Thread(target=self._poll_loop, name="PollLoop", daemon=True)
        self._thread.start()

    def request_stop(self) -> None:
        """
        Ask the loop to stop.

        Only sets an event, so it is safe to call from a signal handler.
        """
        self._stop_event.set()

    def stop(self) -> None:
        """
        Stop the watch loop and terminate the command.

        Raises:
            ProcessControlError: If the command could not be terminated
        """
        self._stop_event.set()
        self._shutdown()
        self._raise_error()

    def poll_once(self) -> bool:
        """
        Recompute the fingerprint and restart the command if it changed.

        The new fingerprint always becomes the comparison point for the
        next poll.

        Returns:
            True if the command was restarted
        """
        current = self.compute_state()
        previous = self._last_state
        self._last_state = current

        if current == previous:
            self._report_exit()
            return False

        logger.debug(f"Fingerprint changed: {previous} -> {current}")
        self.supervisor.echo(CHANGE_BANNER)
        self._set_state(WatchState.RESTARTING)
        self.supervisor.replace(self.config.command_line)
        self._restart_count += 1
        self._set_state(WatchState.RUNNING)
        return True

    def _set_state(self, state: WatchState) -> None:
        """Move to a running state unless shutdown has already begun."""
        with self._state_lock:
            if self._state in (WatchState.SHUTTING_DOWN, WatchState.STOPPED):
                return
            self._state = state

    def _report_exit(self) -> None:
        process = self.supervisor.current
        if process is None or process.pid == self._reported_exit_pid:
            return
        returncode = process.returncode
        if returncode is not None:
            self._reported_exit_pid = process.pid
            logger.info(f"Command exited with status {returncode}, waiting for changes")

    def _poll_loop(self) -> None:
        """Worker loop that polls the fingerprint at a fixed interval."""
        interval = self.config.poll_interval
        logger.debug(f"Poll loop started, interval={interval}s")

        while not self._stop_event.wait(timeout=interval):
            try:
                self.poll_once()
            except ProcessControlError as e:
                logger.error(f"Lost control of the command: {e}")
                self._error = e
                self._stop_event.set()
            except Exception as e:
                logger.exception(f"Poll failed: {e}")

    def _shutdown(self) -> None:
        """Internal shutdown procedure."""
        with self._lock:
            if not self._running:
                return

            self._running = False

        with self._state_lock:
            self._state = WatchState.SHUTTING_DOWN
        try:
            self.supervisor.shutdown()
        except ProcessControlError as e:
            logger.error(f"Failed to terminate the command: {e}")
            self._error = self._error or e

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
        with self._state_lock:
            self._state = WatchState.STOPPED

    def _raise_error(self) -> None:
        if self._error is not None:
            error, self._error = self._error, None
            raise error

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
