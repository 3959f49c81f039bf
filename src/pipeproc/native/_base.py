from __future__ import annotations

import abc
import enum
import errno
import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING, Any

from pipeproc.constants import WAIT_DEADLINE, WAIT_INFINITE, Redirect, StopAction, Stream

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


class EnvBehavior(enum.Enum):
    EXTEND = "extend"
    EMPTY = "empty"


@dataclass(frozen=True)
class StopStep:
    action: StopAction
    timeout: int = 0


@dataclass(frozen=True, kw_only=True)
class NativeOptions:
    working_directory: str | None = None
    deadline: int = 0
    nonblocking: bool = True
    env_behavior: EnvBehavior = EnvBehavior.EXTEND
    env_extra: Sequence[str] = ()
    redirect_in: Redirect = Redirect.DEFAULT
    redirect_out: Redirect = Redirect.DEFAULT
    redirect_err: Redirect = Redirect.DEFAULT


def oserror(code: int, message: str | None = None) -> OSError:
    return OSError(code, message or os.strerror(code))


def build_env(behavior: EnvBehavior, extra: Sequence[str]) -> dict[str, str]:
    env = dict(os.environ) if behavior is EnvBehavior.EXTEND else {}
    for entry in extra:
        key, sep, value = entry.partition("=")
        if sep:
            env[key] = value
        else:
            env.pop(key, None)
    return env


def redirect_target(redirect: Redirect, stream: Stream) -> Any:
    if redirect in (Redirect.DEFAULT, Redirect.PIPE):
        return subprocess.PIPE
    if redirect is Redirect.PARENT:
        return None
    if redirect is Redirect.DISCARD:
        return subprocess.DEVNULL
    if redirect is Redirect.STDOUT and stream is Stream.ERR:
        return subprocess.STDOUT
    raise oserror(errno.EINVAL, f"unsupported redirect {redirect.name} for {stream.name}")


class SubprocessProcess(abc.ABC):
    """Process primitives on top of :class:`subprocess.Popen`.

    Errors are reported as :class:`OSError` subclasses carrying ``errno``:
    ``TimeoutError`` from :meth:`wait`, ``BlockingIOError`` when a
    non-blocking read or write cannot make progress and ``BrokenPipeError``
    for a closed or finished stream.
    """

    def __init__(self) -> None:
        self._popen: subprocess.Popen[bytes] | None = None
        self._streams: dict[Stream, IO[bytes] | None] = {}
        self._deadline: float | None = None
        self._nonblocking = False

    def start(self, argv: Sequence[str], options: NativeOptions) -> None:
        if self._popen is not None:
            raise oserror(errno.EINVAL, "process already started")
        if not argv:
            raise oserror(errno.EINVAL, "empty argv")

        self._popen = popen = subprocess.Popen(  # noqa: S603
            list(argv),
            cwd=options.working_directory,
            env=build_env(options.env_behavior, options.env_extra),
            stdin=redirect_target(options.redirect_in, Stream.IN),
            stdout=redirect_target(options.redirect_out, Stream.OUT),
            stderr=redirect_target(options.redirect_err, Stream.ERR),
            bufsize=0,
        )
        if options.deadline > 0:
            self._deadline = time.monotonic() + options.deadline / 1000
        self._streams = {
            Stream.IN: popen.stdin,
            Stream.OUT: popen.stdout,
            Stream.ERR: popen.stderr,
        }
        self._nonblocking = options.nonblocking
        if options.nonblocking:
            for pipe in self._streams.values():
                if pipe is not None:
                    self._set_nonblocking(pipe)

    @abc.abstractmethod
    def _set_nonblocking(self, pipe: IO[bytes]) -> None: ...

    def _require(self) -> subprocess.Popen[bytes]:
        if self._popen is None:
            raise oserror(errno.EINVAL, "process not started")
        return self._popen

    def _pipe(self, stream: Stream) -> IO[bytes]:
        self._require()
        pipe = self._streams.get(stream)
        if pipe is None:
            raise oserror(errno.EPIPE)
        return pipe

    def _read_pipe(self, stream: Stream, size: int) -> IO[bytes]:
        if stream is Stream.IN:
            raise oserror(errno.EINVAL, "cannot read from stdin")
        if size <= 0:
            raise oserror(errno.EINVAL, "read size must be positive")
        return self._pipe(stream)

    def pid(self) -> int:
        return self._require().pid

    @abc.abstractmethod
    def read(self, stream: Stream, size: int) -> bytes: ...

    @abc.abstractmethod
    def write(self, data: bytes) -> int: ...

    def close(self, stream: Stream) -> None:
        self._require()
        pipe = self._streams.get(stream)
        if pipe is not None:
            self._streams[stream] = None
            pipe.close()

    def _resolve_timeout(self, timeout: int) -> int:
        if timeout == WAIT_DEADLINE:
            if self._deadline is None:
                return WAIT_INFINITE
            return max(0, int((self._deadline - time.monotonic()) * 1000))
        if timeout < WAIT_DEADLINE:
            raise oserror(errno.EINVAL, f"invalid timeout {timeout}")
        return timeout

    def wait(self, timeout: int) -> int:
        popen = self._require()
        timeout = self._resolve_timeout(timeout)
        if timeout == 0:
            code = popen.poll()
        else:
            try:
                code = popen.wait(None if timeout == WAIT_INFINITE else timeout / 1000)
            except subprocess.TimeoutExpired:
                code = None
        if code is None:
            raise TimeoutError(errno.ETIMEDOUT, os.strerror(errno.ETIMEDOUT))
        return code

    def terminate(self) -> None:
        self._require().terminate()

    def kill(self) -> None:
        self._require().kill()

    def stop(self, steps: Sequence[StopStep]) -> int:
        """Run each step in order until the process is observed to exit."""
        for step in steps:
            if step.action is StopAction.NOOP:
                continue
            if step.action is StopAction.TERMINATE:
                self.terminate()
            elif step.action is StopAction.KILL:
                self.kill()
            try:
                return self.wait(step.timeout)
            except TimeoutError:
                logger.debug("stop step %s timed out", step.action.name)
        raise TimeoutError(errno.ETIMEDOUT, os.strerror(errno.ETIMEDOUT))

    def destroy(self) -> int | None:
        """Close the pipes and reap the child, returning its exit code.

        Returns ``None`` if the process was never started.
        """
        popen, self._popen = self._popen, None
        streams, self._streams = self._streams, {}
        for pipe in streams.values():
            if pipe is not None:
                pipe.close()
        if popen is not None and popen.poll() is None:
            # Reap the child so no zombie outlives the handle.
            popen.kill()
            popen.wait()
        return None if popen is None else popen.returncode
