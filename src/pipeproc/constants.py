from __future__ import annotations

import enum

__all__ = [
    "READ_BUF_SIZE",
    "WAIT_DEADLINE",
    "WAIT_INFINITE",
    "Redirect",
    "StopAction",
    "Stream",
]

READ_BUF_SIZE = 4096

WAIT_INFINITE = -1
WAIT_DEADLINE = -2


class Stream(enum.IntEnum):
    IN = 0
    OUT = 1
    ERR = 2


class Redirect(enum.IntEnum):
    DEFAULT = 0
    PIPE = 1
    PARENT = 2
    DISCARD = 3
    STDOUT = 4
    # Accepted by name so they can be rejected with a precise error.
    HANDLE = 5
    FILE = 6
    PATH = 7


SUPPORTED_REDIRECTS = frozenset(
    {Redirect.DEFAULT, Redirect.PIPE, Redirect.PARENT, Redirect.DISCARD}
)


class StopAction(enum.IntEnum):
    NOOP = 0
    WAIT = 1
    TERMINATE = 2
    KILL = 3
