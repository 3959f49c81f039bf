from __future__ import annotations

import os
from typing import TYPE_CHECKING, Protocol

from ._base import EnvBehavior, NativeOptions, StopStep

if os.name == "nt":
    from ._windows import WindowsProcess as _Process
else:
    from ._posix import PosixProcess as _Process


__all__ = [
    "EnvBehavior",
    "NativeOptions",
    "NativeProcess",
    "StopStep",
    "create_native",
]


class NativeProcess(Protocol):
    def start(self, argv: Sequence[str], options: NativeOptions) -> None: ...
    def pid(self) -> int: ...
    def read(self, stream: Stream, size: int) -> bytes: ...
    def write(self, data: bytes) -> int: ...
    def close(self, stream: Stream) -> None: ...
    def wait(self, timeout: int) -> int: ...
    def terminate(self) -> None: ...
    def kill(self) -> None: ...
    def stop(self, steps: Sequence[StopStep]) -> int: ...
    def destroy(self) -> int | None: ...


if TYPE_CHECKING:
    from collections.abc import Sequence

    from pipeproc.constants import Stream

    def create_native() -> NativeProcess: ...
else:
    create_native = _Process
