"""Tests for supervisor module."""

import io
import os
import signal
import threading
import time

import psutil
import pytest

from fmon.supervisor import ProcessSupervisor, ManagedProcess, split_command
from fmon.exceptions import ProcessControlError, SpawnError


def _script(path, body):
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return str(path)


def _gone(pid):
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


@pytest.fixture
def supervisor():
    sup = ProcessSupervisor(output=io.BytesIO(), grace_period=2.0)
    yield sup
    sup.shutdown()


class TestSplitCommand:
    """Tests for split_command function."""

    def test_whitespace_split(self):
        assert split_command("go   run  .") == ["go", "run", "."]

    def test_no_quoting(self):
        assert split_command('echo "a b"') == ["echo", '"a', 'b"']

    def test_empty(self):
        with pytest.raises(SpawnError):
            split_command("   ")


class TestSpawn:
    """Tests for ProcessSupervisor.spawn."""

    def test_spawn_returns_running_process(self, supervisor):
        process = supervisor.spawn("sleep 100")

        assert isinstance(process, ManagedProcess)
        assert process.has_exited() is False
        assert process.returncode is None

        supervisor.terminate(process)

    def test_own_process_group(self, supervisor):
        process = supervisor.spawn("sleep 100")

        assert os.getpgid(process.pid) == process.pid
        assert process.pgid == process.pid
        assert os.getpgid(process.pid) != os.getpgid(0)

        supervisor.terminate(process)

    def test_output_forwarded(self, supervisor):
        process = supervisor.spawn("echo hello world")
        process.wait(timeout=5)
        process.join_output(timeout=5)

        output = supervisor.output.getvalue()
        assert b"hello world\n" in output

    def test_stderr_merged(self, supervisor, tmp_path):
        command = _script(tmp_path / "err.sh", "echo to-stderr 1>&2\n")

        process = supervisor.spawn(command)
        process.wait(timeout=5)
        process.join_output(timeout=5)

        assert b"to-stderr\n" in supervisor.output.getvalue()

    def test_cmd_line_logged(self, supervisor):
        process = supervisor.spawn("echo hi")
        process.wait(timeout=5)
        process.join_output(timeout=5)

        first_line = supervisor.output.getvalue().splitlines()[0]
        assert first_line.endswith(b'cmd = "echo hi"')

    def test_large_output_forwarded_exactly(self, supervisor, tmp_path):
        command = _script(tmp_path / "big.sh", "i=0\nwhile [ $i -lt 2000 ]; do echo line-$i; i=$((i+1)); done\n")

        process = supervisor.spawn(command)
        process.wait(timeout=10)
        process.join_output(timeout=5)

        lines = supervisor.output.getvalue().splitlines()[1:]
        assert lines == [f"line-{i}".encode() for i in range(2000)]

    def test_missing_executable(self, supervisor, tmp_path):
        with pytest.raises(SpawnError, match="Failed to start"):
            supervisor.spawn(str(tmp_path / "does-not-exist"))

    def test_not_executable(self, supervisor, tmp_path):
        target = tmp_path / "plain.txt"
        target.write_text("not a program")

        with pytest.raises(SpawnError):
            supervisor.spawn(str(target))


class TestTerminate:
    """Tests for ProcessSupervisor.terminate."""

    def test_terminate_running(self, supervisor):
        process = supervisor.spawn("sleep 100")

        supervisor.terminate(process)

        assert process.has_exited()
        assert process.returncode == -signal.SIGTERM

    def test_terminate_idempotent(self, supervisor):
        process = supervisor.spawn("sleep 100")

        supervisor.terminate(process)
        supervisor.terminate(process)  # Should not raise

        assert process.returncode == -signal.SIGTERM

    def test_terminate_already_exited(self, supervisor):
        process = supervisor.spawn("true")
        process.wait(timeout=5)

        supervisor.terminate(process)
        supervisor.terminate(process)

        assert process.returncode == 0

    def test_terminate_kills_descendants(self, supervisor, tmp_path):
        command = _script(tmp_path / "tree.sh", "sleep 100 &\nsleep 100 &\nwait\n")
        process = supervisor.spawn(command)

        parent = psutil.Process(process.pid)
        assert _wait_for(lambda: len(parent.children(recursive=True)) == 2)
        children = [p.pid for p in parent.children(recursive=True)]

        supervisor.terminate(process)

        assert _gone(process.pid)
        assert _wait_for(lambda: all(_gone(pid) for pid in children))

    def test_escalates_to_sigkill(self, tmp_path):
        supervisor = ProcessSupervisor(output=io.BytesIO(), grace_period=0.3)
        command = _script(tmp_path / "stubborn.sh", "trap '' TERM\nwhile true; do sleep 0.1; done\n")
        process = supervisor.spawn(command)
        time.sleep(0.2)

        start = time.monotonic()
        supervisor.terminate(process)

        assert process.returncode == -signal.SIGKILL
        assert time.monotonic() - start < 5.0

    def test_lingering_group_member_killed(self, tmp_path):
        supervisor = ProcessSupervisor(output=io.BytesIO(), grace_period=0.3)
        command = _script(
            tmp_path / "orphan.sh",
            "sh -c \"trap '' TERM; while true; do sleep 0.1; done\" &\nsleep 100\n",
        )
        process = supervisor.spawn(command)
        parent = psutil.Process(process.pid)
        assert _wait_for(lambda: len(parent.children()) >= 2)
        descendants = [p.pid for p in parent.children(recursive=True)]

        supervisor.terminate(process)

        assert _wait_for(lambda: all(_gone(pid) for pid in descendants))

    def test_exited_leader_leaves_group_alone(self, supervisor, tmp_path):
        pid_file = tmp_path / "daemon.pid"
        command = _script(tmp_path / "daemon.sh", f"sleep 100 &\necho $! > {pid_file}\n")
        process = supervisor.spawn(command)
        process.wait(timeout=5)
        daemon = int(pid_file.read_text())

        try:
            supervisor.terminate(process)

            assert process.returncode == 0
            assert not _gone(daemon)
            assert os.getpgid(daemon) == process.pgid
        finally:
            os.killpg(process.pgid, signal.SIGKILL)
        assert _wait_for(lambda: _gone(daemon))

    def test_lookup_failure_is_fatal(self, supervisor, monkeypatch):
        process = supervisor.spawn("sleep 100")

        def broken_getpgid(pid):
            raise PermissionError(1, "Operation not permitted")

        monkeypatch.setattr(os, "getpgid", broken_getpgid)
        with pytest.raises(ProcessControlError):
            supervisor.terminate(process)
        monkeypatch.undo()

        supervisor.terminate(process)

    def test_lookup_no_such_process_is_success(self, supervisor, monkeypatch):
        process = supervisor.spawn("sleep 100")

        def vanished(pid):
            raise ProcessLookupError(3, "No such process")

        monkeypatch.setattr(os, "getpgid", vanished)
        supervisor.terminate(process)  # Should not raise
        monkeypatch.undo()

        supervisor.terminate(process)


class TestRestart:
    """Tests for ProcessSupervisor.restart."""

    def test_restart_replaces_process(self, supervisor):
        first = supervisor.spawn("sleep 100")

        second = supervisor.restart(first, "sleep 100")

        assert first.has_exited()
        assert second.has_exited() is False
        assert second.pid != first.pid

        supervisor.terminate(second)

    def test_restart_without_process(self, supervisor):
        process = supervisor.restart(None, "sleep 100")

        assert process.has_exited() is False

        supervisor.terminate(process)


class TestSlot:
    """Tests for the supervised process slot."""

    def test_replace_starts_process(self, supervisor):
        old = supervisor.replace("sleep 100")

        assert old is None
        assert supervisor.current is not None
        assert supervisor.current.has_exited() is False

    def test_at_most_one_live_process(self, supervisor):
        seen = []
        for _ in range(5):
            supervisor.replace("sleep 100")
            seen.append(supervisor.current)

        alive = [p for p in seen if not p.has_exited()]
        assert alive == [supervisor.current]

    def test_replace_returns_old_terminated(self, supervisor):
        supervisor.replace("sleep 100")
        first = supervisor.current

        old = supervisor.replace("sleep 100")

        assert old is first
        assert old.has_exited()

    def test_spawn_failure_leaves_slot_empty(self, supervisor, tmp_path):
        supervisor.replace("sleep 100")
        first = supervisor.current

        supervisor.replace(str(tmp_path / "missing"))

        assert first.has_exited()
        assert supervisor.current is None

        supervisor.replace("sleep 100")
        assert supervisor.current is not None

    def test_shutdown_terminates_and_closes(self, supervisor):
        supervisor.replace("sleep 100")
        process = supervisor.current

        supervisor.shutdown()

        assert process.has_exited()
        assert supervisor.current is None
        assert supervisor.closed is True

    def test_replace_after_shutdown_refused(self, supervisor):
        supervisor.shutdown()

        assert supervisor.replace("sleep 100") is None
        assert supervisor.current is None

    def test_shutdown_idempotent(self, supervisor):
        supervisor.replace("sleep 100")

        supervisor.shutdown()
        supervisor.shutdown()  # Should not raise

    def test_concurrent_replace_and_shutdown(self, supervisor):
        supervisor.replace("sleep 100")
        spawned = []
        lock = threading.Lock()

        def restarter():
            for _ in range(5):
                supervisor.replace("sleep 100")
                process = supervisor.current
                if process is not None:
                    with lock:
                        spawned.append(process)

        thread = threading.Thread(target=restarter)
        thread.start()
        time.sleep(0.1)
        supervisor.shutdown()
        thread.join(timeout=30)

        assert supervisor.current is None
        assert _wait_for(lambda: all(p.has_exited() for p in spawned))

    def test_echo(self, supervisor):
        supervisor.echo("[BANNER]")
        assert supervisor.output.getvalue() == b"[BANNER]\n"
