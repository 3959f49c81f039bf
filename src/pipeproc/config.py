from __future__ import annotations

import dataclasses
import os
import sys
from collections import OrderedDict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Optional, Union

import dotenv
from typing_extensions import TypeAlias

from .constants import SUPPORTED_REDIRECTS, Redirect, Stream
from .errors import EmptyCommand, UnsupportedRedirect, ValidationError
from .native import EnvBehavior, NativeOptions, StopStep
from .typecast import typecast

if sys.version_info < (3, 11):
    import tomli as tomllib
else:
    import tomllib

__all__ = [
    "ProcessFile",
    "StartConfig",
    "StartOptions",
    "build_config",
    "load_config",
    "resolve_redirect",
]

RedirectSpec: TypeAlias = "Redirect | int | str"

_STREAM_OPTIONS = {Stream.IN: "stdin", Stream.OUT: "stdout", Stream.ERR: "stderr"}


@dataclass(kw_only=True)
class StartOptions:
    timeout: int = 0
    cwd: Optional[Union[str, os.PathLike[str]]] = None
    stdin: RedirectSpec = Redirect.DEFAULT
    stdout: RedirectSpec = Redirect.DEFAULT
    stderr: RedirectSpec = Redirect.DEFAULT
    env: Mapping[str, Optional[str]] = field(default_factory=dict)
    env_file: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class StartConfig:
    argv: tuple[str, ...]
    cwd: Optional[str] = None
    deadline: int = 0
    stdin: Redirect = Redirect.DEFAULT
    stdout: Redirect = Redirect.DEFAULT
    stderr: Redirect = Redirect.DEFAULT
    env: Mapping[str, Optional[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def env_entries(self) -> list[str]:
        """Serialize the overlay; a bare ``KEY`` unsets an inherited variable."""
        return [
            key if value is None else f"{key}={value}"
            for key, value in self.env.items()
        ]

    def native_options(self) -> NativeOptions:
        return NativeOptions(
            working_directory=self.cwd,
            deadline=self.deadline,
            nonblocking=True,
            env_behavior=EnvBehavior.EXTEND,
            env_extra=self.env_entries(),
            redirect_in=self.stdin,
            redirect_out=self.stdout,
            redirect_err=self.stderr,
        )


# spellings accepted in addition to the member names
_REDIRECT_ALIASES = {
    "merge-to-stdout": Redirect.STDOUT,
    "merge_to_stdout": Redirect.STDOUT,
}


def _lookup_redirect(value: object) -> Redirect | None:
    if isinstance(value, Redirect):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        try:
            return Redirect(value)
        except ValueError:
            return None
    if isinstance(value, str):
        member = Redirect.__members__.get(value.upper())
        return _REDIRECT_ALIASES.get(value.lower(), member)
    return None


def resolve_redirect(stream: Stream, value: object) -> Redirect:
    redirect = _lookup_redirect(value)
    if redirect in SUPPORTED_REDIRECTS:
        return redirect
    if redirect is Redirect.STDOUT and stream is Stream.ERR:
        return redirect
    raise UnsupportedRedirect(_STREAM_OPTIONS[stream], value)


def _merge_options(
    options: StartOptions | Mapping[str, object] | None, overrides: dict[str, object]
) -> StartOptions:
    try:
        if options is None:
            return StartOptions(**overrides)  # type: ignore[arg-type]
        if isinstance(options, StartOptions):
            return dataclasses.replace(options, **overrides)
        return StartOptions(**{**options, **overrides})  # type: ignore[arg-type]
    except TypeError as e:
        raise ValidationError(f"invalid options: {e}") from None


def _resolve_argv(argv: Sequence[str]) -> tuple[str, ...]:
    if isinstance(argv, (str, bytes)):
        raise ValidationError("argv must be a sequence of strings, not a string")
    args = tuple(argv)
    if not args:
        raise EmptyCommand
    for index, arg in enumerate(args):
        if not isinstance(arg, str):
            msg = f"argv[{index}] is {type(arg).__name__}, expected str"
            raise ValidationError(msg)
        if "\0" in arg:
            raise ValidationError(f"argv[{index}] contains a NUL character")
    return args


def _read_env(opts: StartOptions, cwd: str | None) -> dict[str, Optional[str]]:
    env: dict[str, Optional[str]] = {}

    if opts.env_file:
        env_file = Path(cwd or ".") / opts.env_file
        if not env_file.is_file():
            raise ValidationError(f"env file not found: {env_file}")
        env.update(dotenv.dotenv_values(env_file, interpolate=False))
        env.update(opts.env)
        env = OrderedDict(dotenv.main.resolve_variables(env.items(), override=True))
    else:
        env.update(opts.env)

    for key, value in env.items():
        if not isinstance(key, str) or not key or "=" in key or "\0" in key:
            raise ValidationError(f"invalid environment variable name {key!r}")
        if value is not None and (not isinstance(value, str) or "\0" in value):
            raise ValidationError(f"invalid value for environment variable {key!r}")
    return env


def build_config(
    argv: Sequence[str],
    options: StartOptions | Mapping[str, object] | None = None,
    **overrides: object,
) -> StartConfig:
    """Validate start parameters and normalize them into a :class:`StartConfig`.

    Keyword ``overrides`` take precedence over ``options``. Redirects are
    checked first so an unsupported one fails before anything else is read.
    """
    opts = _merge_options(options, overrides)

    stdin = resolve_redirect(Stream.IN, opts.stdin)
    stdout = resolve_redirect(Stream.OUT, opts.stdout)
    stderr = resolve_redirect(Stream.ERR, opts.stderr)

    args = _resolve_argv(argv)

    if isinstance(opts.timeout, bool) or not isinstance(opts.timeout, int):
        raise ValidationError(f"timeout must be an integer, got {opts.timeout!r}")
    if opts.timeout < 0:
        raise ValidationError(f"timeout must not be negative, got {opts.timeout}")

    cwd = os.fspath(opts.cwd) if opts.cwd is not None else None

    return StartConfig(
        argv=args,
        cwd=cwd,
        deadline=opts.timeout,
        stdin=stdin,
        stdout=stdout,
        stderr=stderr,
        env=MappingProxyType(_read_env(opts, cwd)),
    )


@dataclass(kw_only=True)
class ProcessFile:
    argv: list[str] = field(default_factory=list)
    cwd: Optional[str] = None
    timeout: int = 0
    stdin: Union[str, int] = "default"
    stdout: Union[str, int] = "default"
    stderr: Union[str, int] = "default"
    env: dict[str, str] = field(default_factory=dict)
    env_file: Optional[str] = None
    stop: list[StopStep] = field(default_factory=list)

    def start_options(self) -> StartOptions:
        return StartOptions(
            timeout=self.timeout,
            cwd=self.cwd,
            stdin=self.stdin,
            stdout=self.stdout,
            stderr=self.stderr,
            env=dict(self.env),
            env_file=self.env_file,
        )

    def stop_policy(self) -> tuple[StopStep, ...] | None:
        return tuple(self.stop) if self.stop else None


def load_config(path: Path) -> ProcessFile:
    data = tomllib.loads(path.read_text())
    return typecast(ProcessFile, data)
