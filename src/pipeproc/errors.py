"""Error codes and the exception hierarchy.

Codes follow the negated-errno convention of the process primitives: a
negative integer is an error, zero or positive is a success value.
"""

from __future__ import annotations

import enum
import errno
import os

from typing_extensions import Self

__all__ = [
    "BrokenPipe",
    "EmptyCommand",
    "ErrorCode",
    "PipeprocError",
    "ProcessError",
    "ProcessTimeout",
    "UnsupportedRedirect",
    "ValidationError",
    "strerror",
]


class ErrorCode(enum.IntEnum):
    INVAL = -errno.EINVAL
    TIMEDOUT = -errno.ETIMEDOUT
    PIPE = -errno.EPIPE
    NOMEM = -errno.ENOMEM
    WOULDBLOCK = -errno.EWOULDBLOCK


def strerror(code: int) -> str | None:
    if code >= 0:
        return None
    return os.strerror(-code)


class PipeprocError(Exception):
    def __init__(self, message: str, code: int) -> None:
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(PipeprocError):
    """Bad start configuration, raised before any native resource exists."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCode.INVAL)


class EmptyCommand(ValidationError):
    def __init__(self) -> None:
        super().__init__("argv must contain at least the executable")


class UnsupportedRedirect(ValidationError):
    def __init__(self, stream: str, value: object) -> None:
        self.stream = stream
        self.value = value
        super().__init__(
            f"unsupported {stream} redirect {value!r}: "
            "redirect to handles, FILE* and paths are not supported"
        )


class ProcessError(PipeprocError):
    def __init__(self, code: int, message: str | None = None) -> None:
        super().__init__(message or strerror(code) or f"error {code}", code)

    @classmethod
    def from_oserror(cls, exc: OSError) -> ProcessError:
        if isinstance(exc, TimeoutError):
            return ProcessTimeout()
        if isinstance(exc, BrokenPipeError):
            return BrokenPipe()
        code = -(exc.errno or errno.EINVAL)
        return cls(code, exc.strerror or strerror(code))

    @classmethod
    def destroyed(cls) -> Self:
        return cls(ErrorCode.INVAL, "process handle destroyed")


class ProcessTimeout(ProcessError):
    def __init__(self) -> None:
        super().__init__(ErrorCode.TIMEDOUT)


class BrokenPipe(ProcessError):
    def __init__(self) -> None:
        super().__init__(ErrorCode.PIPE)
