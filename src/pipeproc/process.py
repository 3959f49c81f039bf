"""The process handle.

A :class:`Process` owns exactly one native process. Status is tracked by
polling: once an exit code has been observed it is cached and the native
layer is never asked about that process again.
"""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING, Any

from typing_extensions import Self

from .config import StartConfig, StartOptions, build_config
from .constants import READ_BUF_SIZE, Stream
from .errors import ErrorCode, ProcessError, ProcessTimeout

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from types import TracebackType

    from .native import NativeProcess, StopStep
    from .registry import ProcessRegistry

__all__ = ["Process"]

logger = logging.getLogger(__name__)


def _stream(value: int) -> Stream:
    try:
        return Stream(value)
    except ValueError:
        raise ProcessError(ErrorCode.INVAL, f"invalid stream {value!r}") from None


class Process:
    """Handle to a running child process with non-blocking pipe I/O.

    Example::

        with Process(["cat"], stdin="pipe", stdout="pipe") as proc:
            proc.write(b"hello")
            proc.close_stream(Stream.IN)
            proc.wait(WAIT_INFINITE)
            print(proc.read_stdout())
    """

    _native: NativeProcess | None = None
    _running = False
    _returncode: int | None = None

    def __init__(
        self,
        argv: Sequence[str],
        options: StartOptions | Mapping[str, Any] | None = None,
        *,
        registry: ProcessRegistry | None = None,
        stop_policy: Iterable[StopStep] | None = None,
        **overrides: Any,
    ) -> None:
        config = build_config(argv, options, **overrides)
        self._start(config, registry, stop_policy)

    @classmethod
    def start(
        cls,
        config: StartConfig,
        *,
        registry: ProcessRegistry | None = None,
        stop_policy: Iterable[StopStep] | None = None,
    ) -> Self:
        """Start a process from an already validated configuration."""
        self = cls.__new__(cls)
        self._start(config, registry, stop_policy)
        return self

    def _start(
        self,
        config: StartConfig,
        registry: ProcessRegistry | None,
        stop_policy: Iterable[StopStep] | None,
    ) -> None:
        if registry is None:
            from .registry import default_registry

            registry = default_registry()

        self.stop_policy: tuple[StopStep, ...] = (
            registry.stop_policy if stop_policy is None else tuple(stop_policy)
        )

        native = registry.create_native()
        try:
            native.start(config.argv, config.native_options())
        except OSError as e:
            native.destroy()
            raise ProcessError.from_oserror(e) from None
        except MemoryError:
            native.destroy()
            raise ProcessError(ErrorCode.NOMEM) from None

        self._native = native
        self._running = True
        registry.track(self)
        logger.debug(
            "Started process pid=%d argv=%s cwd=%s",
            native.pid(),
            config.argv[0],
            config.cwd,
        )

    def _require(self) -> NativeProcess:
        if self._native is None:
            raise ProcessError.destroyed()
        return self._native

    def _set_exited(self, code: int) -> None:
        self._running, self._returncode = False, code
        logger.debug("Process exited returncode=%d", code)

    @property
    def pid(self) -> int:
        return self._require().pid()

    def poll(self, timeout: int = 0) -> int:
        """Return the exit code, waiting up to ``timeout`` milliseconds.

        Raises :class:`ProcessTimeout` if the process is still running when
        the timeout expires.
        """
        if self._returncode is not None:
            return self._returncode

        native = self._require()
        try:
            code = native.wait(timeout)
        except OSError as e:
            raise ProcessError.from_oserror(e) from None
        self._set_exited(code)
        return code

    def wait(self, timeout: int = 0) -> int:
        return self.poll(timeout)

    def running(self) -> bool:
        if self._running and self._native is not None:
            with contextlib.suppress(ProcessTimeout):
                self.poll(0)
        return self._running and self._native is not None

    @property
    def returncode(self) -> int | None:
        if self._running and self._native is not None:
            with contextlib.suppress(ProcessTimeout):
                self.poll(0)
        return None if self._running else self._returncode

    def read(self, stream: int = Stream.OUT, size: int = READ_BUF_SIZE) -> bytes:
        """Read up to ``size`` bytes without blocking.

        Returns ``b""`` when no data is available yet and raises
        :class:`BrokenPipe` once the stream has reached its end.
        """
        native = self._require()
        try:
            return native.read(_stream(stream), size)
        except BlockingIOError:
            return b""
        except OSError as e:
            raise ProcessError.from_oserror(e) from None

    def read_stdout(self, size: int = READ_BUF_SIZE) -> bytes:
        return self.read(Stream.OUT, size)

    def read_stderr(self, size: int = READ_BUF_SIZE) -> bytes:
        return self.read(Stream.ERR, size)

    def write(self, data: bytes) -> int:
        native = self._require()
        try:
            return native.write(data)
        except BlockingIOError:
            return 0
        except OSError as e:
            raise ProcessError.from_oserror(e) from None

    def close_stream(self, stream: int) -> None:
        native = self._require()
        try:
            native.close(_stream(stream))
        except OSError as e:
            raise ProcessError.from_oserror(e) from None

    def _signal(self, request: str) -> bool:
        native = self._require()
        try:
            getattr(native, request)()
        except OSError as e:
            raise ProcessError.from_oserror(e) from None
        with contextlib.suppress(ProcessTimeout):
            self.poll(0)
        return True

    def terminate(self) -> bool:
        return self._signal("terminate")

    def kill(self) -> bool:
        return self._signal("kill")

    def stop(self, policy: Iterable[StopStep] | None = None) -> int | None:
        """Run a stop sequence, returning the exit code or ``None`` if the
        process outlived every step."""
        native = self._require()
        if not self._running:
            return self._returncode
        steps = self.stop_policy if policy is None else tuple(policy)
        try:
            code = native.stop(steps)
        except TimeoutError:
            return None
        except OSError as e:
            raise ProcessError.from_oserror(e) from None
        self._set_exited(code)
        return code

    def destroy(self) -> None:
        native, self._native = self._native, None
        if native is None:
            return
        try:
            if self._running:
                with contextlib.suppress(TimeoutError):
                    self._set_exited(native.stop(self.stop_policy))
        finally:
            reaped = native.destroy()
            if self._running and reaped is not None:
                self._set_exited(reaped)
            logger.debug("Destroyed process returncode=%s", self._returncode)

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.destroy()

    def __del__(self) -> None:
        try:
            self.destroy()
        except Exception:
            logger.warning("Failed to destroy process handle", exc_info=True)

    def __repr__(self) -> str:
        if self._native is None:
            state = "destroyed"
        elif self._running:
            state = "running"
        else:
            state = f"returncode={self._returncode}"
        return f"<{type(self).__name__} {state}>"
