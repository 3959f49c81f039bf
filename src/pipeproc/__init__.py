from __future__ import annotations

from .config import StartConfig, StartOptions, build_config, load_config
from .constants import (
    READ_BUF_SIZE,
    WAIT_DEADLINE,
    WAIT_INFINITE,
    Redirect,
    StopAction,
    Stream,
)
from .errors import (
    BrokenPipe,
    EmptyCommand,
    ErrorCode,
    PipeprocError,
    ProcessError,
    ProcessTimeout,
    UnsupportedRedirect,
    ValidationError,
    strerror,
)
from .native import StopStep
from .process import Process
from .registry import DEFAULT_STOP_POLICY, ProcessRegistry, default_registry

__all__ = [
    "DEFAULT_STOP_POLICY",
    "READ_BUF_SIZE",
    "WAIT_DEADLINE",
    "WAIT_INFINITE",
    "BrokenPipe",
    "EmptyCommand",
    "ErrorCode",
    "PipeprocError",
    "Process",
    "ProcessError",
    "ProcessRegistry",
    "ProcessTimeout",
    "Redirect",
    "StartConfig",
    "StartOptions",
    "StopAction",
    "StopStep",
    "Stream",
    "UnsupportedRedirect",
    "ValidationError",
    "build_config",
    "default_registry",
    "load_config",
    "strerror",
]
