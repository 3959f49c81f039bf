from __future__ import annotations

import errno
import os
from typing import IO

from pipeproc.constants import Stream

from ._base import SubprocessProcess, oserror

if os.name == "nt":
    import _winapi
    import msvcrt
else:
    msg = f"{os.name} is not supported"
    raise ImportError(msg) from None

# winbase.h; not exported by _winapi
PIPE_NOWAIT = 0x00000001


class WindowsProcess(SubprocessProcess):
    # Reads peek first, so only the stdin end is switched to PIPE_NOWAIT.
    # A nowait pipe with no room completes the write with zero bytes.
    def _set_nonblocking(self, pipe: IO[bytes]) -> None:
        if pipe.writable():
            handle = msvcrt.get_osfhandle(pipe.fileno())
            _winapi.SetNamedPipeHandleState(handle, PIPE_NOWAIT, None, None)

    def read(self, stream: Stream, size: int) -> bytes:
        pipe = self._read_pipe(stream, size)
        if self._nonblocking:
            handle = msvcrt.get_osfhandle(pipe.fileno())
            available, _ = _winapi.PeekNamedPipe(handle, 0)
            if not available:
                raise oserror(errno.EWOULDBLOCK)
            size = min(size, available)
        data = os.read(pipe.fileno(), size)
        if not data:
            raise oserror(errno.EPIPE)
        return data

    def write(self, data: bytes) -> int:
        pipe = self._pipe(Stream.IN)
        if not data:
            return 0
        written = os.write(pipe.fileno(), data)
        if not written and self._nonblocking:
            raise oserror(errno.EWOULDBLOCK)
        return written
