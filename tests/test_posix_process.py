from __future__ import annotations

import errno
import json
import os
import signal
import sys
import time
from collections.abc import Iterator
from pathlib import Path

import pytest

from pipeproc import (
    WAIT_DEADLINE,
    WAIT_INFINITE,
    BrokenPipe,
    Process,
    ProcessError,
    ProcessRegistry,
    ProcessTimeout,
    Stream,
)

pytestmark = pytest.mark.skipif(os.name == "nt", reason="needs POSIX pipes and signals")


def python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def read_all(proc: Process, stream: Stream = Stream.OUT, timeout: float = 10.0) -> bytes:
    chunks = []
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            data = proc.read(stream)
        except BrokenPipe:
            return b"".join(chunks)
        if data:
            chunks.append(data)
        else:
            time.sleep(0.01)
    pytest.fail("stream did not reach end of file")


@pytest.fixture
def registry() -> Iterator[ProcessRegistry]:
    registry = ProcessRegistry()
    yield registry
    registry.shutdown()


def test_read_stdout(registry: ProcessRegistry) -> None:
    with registry.spawn(python("print('hello')"), stdout="pipe") as proc:
        assert read_all(proc) == b"hello\n"
        assert proc.wait(WAIT_INFINITE) == 0
        assert proc.returncode == 0


def test_nonblocking_read_returns_empty(registry: ProcessRegistry) -> None:
    with registry.spawn(python("import time; time.sleep(5)")) as proc:
        assert proc.read_stdout() == b""
        assert proc.read_stderr() == b""
        assert proc.running()


def test_exit_code(registry: ProcessRegistry) -> None:
    proc = registry.spawn(python("import sys; sys.exit(7)"))

    assert proc.wait(WAIT_INFINITE) == 7
    assert not proc.running()


def test_environment_overlay(registry: ProcessRegistry) -> None:
    code = "import json, os; print(json.dumps(dict(os.environ)))"
    with registry.spawn(python(code), env={"FOO": "bar"}) as proc:
        child_env = json.loads(read_all(proc))
        proc.wait(WAIT_INFINITE)

    assert child_env["FOO"] == "bar"
    assert set(os.environ) <= set(child_env)


def test_environment_unset(registry: ProcessRegistry, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PIPEPROC_TEST_VAR", "inherited")
    code = "import os; print(os.environ.get('PIPEPROC_TEST_VAR', '<unset>'))"

    with registry.spawn(python(code), env={"PIPEPROC_TEST_VAR": None}) as proc:
        assert read_all(proc) == b"<unset>\n"


def test_working_directory(registry: ProcessRegistry, tmp_path: Path) -> None:
    with registry.spawn(python("import os; print(os.getcwd())"), cwd=tmp_path) as proc:
        assert Path(read_all(proc).decode().strip()).resolve() == tmp_path.resolve()


def test_write_then_close(registry: ProcessRegistry) -> None:
    code = "import sys; sys.stdout.write(sys.stdin.read())"
    with registry.spawn(python(code), stdin="pipe", stdout="pipe") as proc:
        assert proc.write(b"abc") == 3
        proc.close_stream(Stream.IN)
        proc.close_stream(Stream.IN)

        with pytest.raises(BrokenPipe):
            proc.write(b"more")

        assert read_all(proc) == b"abc"
        assert proc.wait(WAIT_INFINITE) == 0


def test_merge_stderr(registry: ProcessRegistry) -> None:
    code = "import sys; sys.stderr.write('to stderr'); sys.stderr.flush()"
    with registry.spawn(python(code), stderr="stdout") as proc:
        assert read_all(proc) == b"to stderr"
        with pytest.raises(BrokenPipe):
            proc.read_stderr()


def test_discard_and_parent_are_not_readable(registry: ProcessRegistry) -> None:
    with registry.spawn(python("print('x')"), stdout="discard", stderr="parent") as proc:
        with pytest.raises(BrokenPipe):
            proc.read_stdout()
        with pytest.raises(BrokenPipe):
            proc.read_stderr()
        assert proc.wait(WAIT_INFINITE) == 0


def test_wait_timeout_then_kill(registry: ProcessRegistry) -> None:
    proc = registry.spawn(python("import time; time.sleep(30)"))

    with pytest.raises(ProcessTimeout):
        proc.wait(50)
    assert proc.running()
    assert proc.returncode is None

    assert proc.kill() is True
    assert proc.wait(WAIT_INFINITE) == -signal.SIGKILL
    assert proc.returncode == -signal.SIGKILL


def test_terminate(registry: ProcessRegistry) -> None:
    proc = registry.spawn(python("import time; time.sleep(30)"))

    assert proc.terminate() is True
    assert proc.wait(WAIT_INFINITE) == -signal.SIGTERM


def test_wait_until_deadline(registry: ProcessRegistry) -> None:
    proc = registry.spawn(python("import time; time.sleep(30)"), timeout=100)

    started = time.monotonic()
    with pytest.raises(ProcessTimeout):
        proc.wait(WAIT_DEADLINE)
    assert time.monotonic() - started < 5


def test_missing_executable(registry: ProcessRegistry, tmp_path: Path) -> None:
    with pytest.raises(ProcessError) as exc_info:
        registry.spawn([str(tmp_path / "does-not-exist")])

    assert exc_info.value.code == -errno.ENOENT
    assert len(registry) == 0


def test_destroy_reaps_running_child(registry: ProcessRegistry) -> None:
    proc = registry.spawn(python("import time; time.sleep(30)"))
    pid = proc.pid

    proc.destroy()

    assert not proc.running()
    assert proc.returncode == -signal.SIGKILL

    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


@pytest.mark.skipif(not Path("/proc/self/fd").is_dir(), reason="needs /proc")
def test_create_destroy_cycles_leak_nothing(registry: ProcessRegistry) -> None:
    def open_fds() -> int:
        return len(os.listdir("/proc/self/fd"))

    before = open_fds()
    for _ in range(20):
        with registry.spawn(python("import time; time.sleep(30)"), stdin="pipe") as proc:
            assert proc.running()

    assert open_fds() == before


def test_shutdown_destroys_live_processes(registry: ProcessRegistry) -> None:
    procs = [registry.spawn(python("import time; time.sleep(30)")) for _ in range(3)]
    pids = [proc.pid for proc in procs]

    registry.shutdown()

    for proc, pid in zip(procs, pids):
        assert repr(proc) != "<Process running>"
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)
