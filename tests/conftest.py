from __future__ import annotations

import errno
from collections import Counter
from collections.abc import Sequence

import pytest

from pipeproc import ProcessRegistry, Stream
from pipeproc.native import NativeOptions
from pipeproc.native._base import SubprocessProcess


class StubNative:
    """Scripted stand-in for the process primitives that counts every call."""

    def __init__(self) -> None:
        self.calls: Counter[str] = Counter()
        self.wait_timeouts: list[int] = []
        self.argv: Sequence[str] | None = None
        self.options: NativeOptions | None = None
        self.start_error: OSError | None = None
        self.signal_error: OSError | None = None
        self.exit_code: int | None = None
        self.terminate_code: int | None = None
        self.kill_code: int | None = None
        self.reap_code: int | None = None
        self.chunks: dict[Stream, list[bytes]] = {Stream.OUT: [], Stream.ERR: []}
        self.closed: set[Stream] = set()
        self.stdin = bytearray()

    def start(self, argv: Sequence[str], options: NativeOptions) -> None:
        self.calls["start"] += 1
        self.argv = argv
        self.options = options
        if self.start_error is not None:
            raise self.start_error

    def pid(self) -> int:
        return 4242

    def read(self, stream: Stream, size: int) -> bytes:
        self.calls["read"] += 1
        if self.chunks.get(stream):
            return self.chunks[stream].pop(0)[:size]
        if stream in self.closed:
            raise BrokenPipeError(errno.EPIPE, "Broken pipe")
        raise BlockingIOError(errno.EAGAIN, "Resource temporarily unavailable")

    def write(self, data: bytes) -> int:
        self.calls["write"] += 1
        if Stream.IN in self.closed:
            raise BrokenPipeError(errno.EPIPE, "Broken pipe")
        self.stdin += data
        return len(data)

    def close(self, stream: Stream) -> None:
        self.calls["close"] += 1
        self.closed.add(stream)

    def wait(self, timeout: int) -> int:
        self.calls["wait"] += 1
        self.wait_timeouts.append(timeout)
        if self.exit_code is None:
            raise TimeoutError(errno.ETIMEDOUT, "Connection timed out")
        return self.exit_code

    def terminate(self) -> None:
        self.calls["terminate"] += 1
        if self.signal_error is not None:
            raise self.signal_error
        if self.terminate_code is not None:
            self.exit_code = self.terminate_code

    def kill(self) -> None:
        self.calls["kill"] += 1
        if self.signal_error is not None:
            raise self.signal_error
        if self.kill_code is not None:
            self.exit_code = self.kill_code

    stop = SubprocessProcess.stop

    def destroy(self) -> int | None:
        self.calls["destroy"] += 1
        return self.reap_code


@pytest.fixture
def native() -> StubNative:
    return StubNative()


@pytest.fixture
def registry(native: StubNative) -> ProcessRegistry:
    return ProcessRegistry(create_native=lambda: native)
