"""Lifecycle management of the supervised command."""

import logging
import os
import signal
import subprocess
import sys
import threading
import time
from datetime import datetime
from typing import BinaryIO, List, Optional

from .exceptions import ProcessControlError, SpawnError


logger = logging.getLogger(__name__)

OUTPUT_CHUNK_SIZE = 4096
GROUP_POLL_INTERVAL = 0.05


def split_command(command_line: str) -> List[str]:
    """
    Split a command line on whitespace.

    No quoting or escaping is supported.

    Raises:
        SpawnError: If the command line is empty
    """
    argv = command_line.split()
    if not argv:
        raise SpawnError("Command line is empty")
    return argv


class OutputPump(threading.Thread):
    """Forwards a child's output stream to a sink as it arrives."""

    def __init__(self, stream: BinaryIO, sink: BinaryIO, sink_lock: threading.Lock, name: str):
        super().__init__(name=name, daemon=True)
        self._stream = stream
        self._sink = sink
        self._sink_lock = sink_lock

    def run(self) -> None:
        try:
            while True:
                try:
                    chunk = self._stream.read1(OUTPUT_CHUNK_SIZE)
                except (OSError, ValueError) as e:
                    logger.debug(f"{self.name}: read failed: {e}")
                    break
                if not chunk:
                    break
                try:
                    with self._sink_lock:
                        self._sink.write(chunk)
                        self._sink.flush()
                except (OSError, ValueError) as e:
                    logger.debug(f"{self.name}: write failed: {e}")
                    break
        finally:
            self._stream.close()


class ManagedProcess:
    """
    A running command started by the supervisor.

    The process leads its own session, so its process group id equals
    its pid and every descendant can be signaled together.
    """

    def __init__(self, popen: subprocess.Popen, command_line: str, pump: Optional[OutputPump] = None):
        self.popen = popen
        self.command_line = command_line
        self.pgid = popen.pid
        self._pump = pump

    @property
    def pid(self) -> int:
        return self.popen.pid

    @property
    def returncode(self) -> Optional[int]:
        """Exit status, or None while the process is running."""
        return self.popen.poll()

    def has_exited(self) -> bool:
        return self.popen.poll() is not None

    def wait(self, timeout: Optional[float] = None) -> int:
        return self.popen.wait(timeout=timeout)

    def join_output(self, timeout: Optional[float] = None) -> None:
        """Wait for the output pump to drain."""
        if self._pump is not None:
            self._pump.join(timeout=timeout)

    def __repr__(self) -> str:
        return f"ManagedProcess(pid={self.pid}, command_line={self.command_line!r})"


class ProcessSupervisor:
    """
    Owns the single command process of a watch run.

    The current process lives in a lock-guarded slot. ``replace`` and
    ``shutdown`` both take the lock, so a restart triggered by the poll
    thread can never interleave with the termination triggered by an
    interrupt, and at most one process is alive at any time.
    """

    def __init__(self, output: Optional[BinaryIO] = None, grace_period: Optional[float] = 5.0):
        """
        Initialize the supervisor.

        Args:
            output: Binary sink for command output, defaults to stdout
            grace_period: Seconds between SIGTERM and SIGKILL,
                None to wait for the process indefinitely
        """
        self.output = output if output is not None else sys.stdout.buffer
        self.grace_period = grace_period
        self._output_lock = threading.Lock()
        self._lock = threading.Lock()
        self._current: Optional[ManagedProcess] = None
        self._closed = False

    def echo(self, line: str) -> None:
        """Write a line to the output sink."""
        with self._output_lock:
            self.output.write(line.encode("utf-8") + b"\n")
            self.output.flush()

    def spawn(self, command_line: str) -> ManagedProcess:
        """
        Start a command in its own process group.

        Stderr is merged into stdout and forwarded to the output sink by
        a background pump. Returns as soon as the process has started.

        Raises:
            SpawnError: If the command is empty or cannot be executed
        """
        argv = split_command(command_line)
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        self.echo(f'{timestamp} cmd = "{command_line}"')

        try:
            popen = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnError(f"Failed to start {command_line!r}: {e}") from e

        pump = OutputPump(popen.stdout, self.output, self._output_lock, name=f"OutputPump-{popen.pid}")
        pump.start()
        logger.debug(f"Started pid {popen.pid}: {argv}")
        return ManagedProcess(popen, command_line, pump)

    def terminate(self, process: ManagedProcess) -> None:
        """
        Terminate a process and every member of its process group.

        Does nothing if the process has already exited, including leaving
        any group members it left behind alone. Sends SIGTERM to
        the group, escalates to SIGKILL once the grace period expires and
        reaps the process before returning.

        Raises:
            ProcessControlError: If the group cannot be looked up or signaled
                for a reason other than the process being gone
        """
        if process.has_exited():
            return

        try:
            pgid = os.getpgid(process.pid)
        except ProcessLookupError:
            return
        except OSError as e:
            raise ProcessControlError(f"Cannot look up process group of pid {process.pid}: {e}") from e

        logger.debug(f"Sending SIGTERM to process group {pgid}")
        self._signal_group(pgid, signal.SIGTERM)

        try:
            process.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            logger.warning(f"pid {process.pid} still running after {self.grace_period}s, sending SIGKILL")
            self._signal_group(pgid, signal.SIGKILL)
            process.wait()

        if self.grace_period is not None:
            self._reap_group(pgid)
        process.join_output(timeout=1.0)
        logger.debug(f"pid {process.pid} exited with status {process.returncode}")

    def restart(self, process: Optional[ManagedProcess], command_line: str) -> ManagedProcess:
        """
        Terminate ``process`` (if any) and spawn ``command_line``.

        Raises:
            SpawnError: If the new command cannot be started
            ProcessControlError: If the old process cannot be terminated
        """
        if process is not None:
            self.terminate(process)
        return self.spawn(command_line)

    def _signal_group(self, pgid: int, sig: int) -> None:
        try:
            os.killpg(pgid, sig)
        except ProcessLookupError:
            pass
        except OSError as e:
            raise ProcessControlError(f"Cannot signal process group {pgid}: {e}") from e

    def _group_alive(self, pgid: int) -> bool:
        try:
            os.killpg(pgid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def _reap_group(self, pgid: int) -> None:
        """Give descendants left in the group the same grace, then SIGKILL them."""
        deadline = time.monotonic() + self.grace_period
        while self._group_alive(pgid):
            if time.monotonic() >= deadline:
                logger.warning(f"Process group {pgid} still has members, sending SIGKILL")
                self._signal_group(pgid, signal.SIGKILL)
                return
            time.sleep(GROUP_POLL_INTERVAL)

    @property
    def current(self) -> Optional[ManagedProcess]:
        """The process currently under supervision, if any."""
        with self._lock:
            return self._current

    @property
    def closed(self) -> bool:
        return self._closed

    def replace(self, command_line: str) -> Optional[ManagedProcess]:
        """
        Swap the supervised process for a fresh run of ``command_line``.

        The old process is fully terminated before the new one is
        spawned. A spawn failure is logged and leaves the slot empty so
        the next change retries. After ``shutdown`` this does nothing.

        Returns:
            The process that was replaced, or None

        Raises:
            ProcessControlError: If the old process cannot be terminated
        """
        with self._lock:
            if self._closed:
                logger.warning(f"Supervisor is shut down, not starting {command_line!r}")
                return None

            old = self._current
            if old is not None:
                self.terminate(old)
                self._current = None

            try:
                self._current = self.spawn(command_line)
            except SpawnError as e:
                logger.error(str(e))
            return old

    def shutdown(self) -> None:
        """
        Terminate the supervised process and refuse further spawns.

        Safe to call more than once.

        Raises:
            ProcessControlError: If the process cannot be terminated
        """
        with self._lock:
            self._closed = True
            process, self._current = self._current, None
            if process is not None:
                self.terminate(process)
