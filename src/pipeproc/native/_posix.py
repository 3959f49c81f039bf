from __future__ import annotations

import errno
import os
from typing import IO

from pipeproc.constants import Stream

from ._base import SubprocessProcess, oserror


class PosixProcess(SubprocessProcess):
    def _set_nonblocking(self, pipe: IO[bytes]) -> None:
        os.set_blocking(pipe.fileno(), False)

    def read(self, stream: Stream, size: int) -> bytes:
        pipe = self._read_pipe(stream, size)
        data = os.read(pipe.fileno(), size)
        if not data:
            raise oserror(errno.EPIPE)
        return data

    def write(self, data: bytes) -> int:
        pipe = self._pipe(Stream.IN)
        if not data:
            return 0
        return os.write(pipe.fileno(), data)
