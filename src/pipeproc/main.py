from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import IO, TYPE_CHECKING, Optional

import click
from click.exceptions import Exit
from rich.console import Console
from rich.logging import RichHandler

from .config import ProcessFile, build_config, load_config
from .constants import WAIT_INFINITE, Redirect, StopAction, Stream
from .errors import BrokenPipe, ProcessError, ProcessTimeout, ValidationError
from .native import StopStep
from .registry import DEFAULT_STOP_POLICY, ProcessRegistry
from .typecast import TypeCastError
from .utils import default_config_path, describe_returncode, exit_status, parse_env_assignments

if TYPE_CHECKING:
    from .process import Process

logger = logging.getLogger(__name__)
err = Console(stderr=True)

POLL_INTERVAL = 0.01
TIMEOUT_EXIT_STATUS = 124

# give the child a second to exit after SIGTERM before killing it
TIMEOUT_STOP_POLICY = (
    StopStep(StopAction.TERMINATE, 1000),
    StopStep(StopAction.KILL, WAIT_INFINITE),
)

_PIPED = (Redirect.DEFAULT, Redirect.PIPE)


def _fail(message: object, status: int = 2) -> Exit:
    err.print(str(message), style="red", markup=False, soft_wrap=True)
    return Exit(status)


def _pump(
    proc: Process,
    sinks: dict[Stream, IO[bytes]],
    stdin_data: bytes | None,
    wait_ms: int,
) -> int:
    deadline = None if wait_ms < 0 else time.monotonic() + wait_ms / 1000
    pending = stdin_data

    while sinks or pending is not None:
        idle = True

        if pending is not None:
            try:
                written = proc.write(pending)
            except BrokenPipe:
                written = len(pending)
            pending = pending[written:]
            if written:
                idle = False
            if not pending:
                proc.close_stream(Stream.IN)
                pending = None

        for stream, sink in list(sinks.items()):
            try:
                data = proc.read(stream)
            except BrokenPipe:
                del sinks[stream]
                continue
            if data:
                idle = False
                sink.write(data)
                sink.flush()

        if deadline is not None and time.monotonic() >= deadline:
            raise ProcessTimeout
        if idle:
            time.sleep(POLL_INTERVAL)

    if deadline is None:
        return proc.wait(WAIT_INFINITE)
    return proc.wait(max(0, int((deadline - time.monotonic()) * 1000)))


@click.command(context_settings={"ignore_unknown_options": True})
@click.argument("argv", nargs=-1, type=click.UNPROCESSED)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="TOML file with start options.",
)
@click.option("--cwd", type=str, help="Working directory of the child.")
@click.option("--timeout", type=int, help="Start deadline in milliseconds.")
@click.option(
    "--wait",
    "wait_ms",
    type=int,
    default=WAIT_INFINITE,
    show_default=True,
    help="Milliseconds to wait for the child before terminating it.",
)
@click.option("-e", "--env", multiple=True, help="KEY=VALUE added to the environment.")
@click.option("--env-file", type=str, help="dotenv file added to the environment.")
@click.option("--stdin", "stdin_redirect", type=str)
@click.option("--stdout", "stdout_redirect", type=str)
@click.option("--stderr", "stderr_redirect", type=str)
@click.option(
    "--input",
    "input_file",
    type=click.File("rb"),
    help="File whose contents are written to the child's stdin.",
)
@click.option("-v", "--verbose", is_flag=True)
@click.version_option(package_name="pipeproc")
def main(
    argv: tuple[str, ...],
    *,
    config_path: Optional[Path],
    cwd: Optional[str],
    timeout: Optional[int],
    wait_ms: int,
    env: tuple[str, ...],
    env_file: Optional[str],
    stdin_redirect: Optional[str],
    stdout_redirect: Optional[str],
    stderr_redirect: Optional[str],
    input_file: Optional[IO[bytes]],
    verbose: bool,
) -> None:
    """Run ARGV with non-blocking pipes and exit with its exit status."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err, show_path=False)],
    )

    try:
        config_path = config_path or default_config_path()
        process_file = load_config(config_path) if config_path else ProcessFile()
        options = process_file.start_options()
        options.env = {**options.env, **parse_env_assignments(env)}
        overrides = {
            key: value
            for key, value in {
                "cwd": cwd,
                "timeout": timeout,
                "env_file": env_file,
                "stdin": stdin_redirect,
                "stdout": stdout_redirect,
                "stderr": stderr_redirect,
            }.items()
            if value is not None
        }
        if input_file is not None and "stdin" not in overrides:
            overrides["stdin"] = Redirect.PIPE
        config = build_config(argv or process_file.argv, options, **overrides)
    except (TypeCastError, ValidationError, ValueError) as e:
        raise _fail(e) from None

    stdin_data = input_file.read() if input_file is not None else None
    if stdin_data is not None and config.stdin not in _PIPED:
        raise _fail("--input requires a piped stdin")

    sinks: dict[Stream, IO[bytes]] = {}
    if config.stdout in _PIPED:
        sinks[Stream.OUT] = click.get_binary_stream("stdout")
    if config.stderr in _PIPED:
        sinks[Stream.ERR] = click.get_binary_stream("stderr")

    registry = ProcessRegistry(stop_policy=process_file.stop_policy() or DEFAULT_STOP_POLICY)
    try:
        try:
            proc = registry.start(config)
        except ProcessError as e:
            raise _fail(f"{config.argv[0]}: {e.message}", 127) from None

        with proc:
            if config.stdin in _PIPED and stdin_data is None:
                proc.close_stream(Stream.IN)
            try:
                returncode = _pump(proc, sinks, stdin_data, wait_ms)
            except ProcessTimeout:
                proc.stop(TIMEOUT_STOP_POLICY)
                raise _fail(
                    f"{config.argv[0]} did not exit within {wait_ms}ms",
                    TIMEOUT_EXIT_STATUS,
                ) from None
    finally:
        registry.shutdown()

    logger.debug("%s %s", config.argv[0], describe_returncode(returncode))
    if returncode:
        raise Exit(exit_status(returncode))


if __name__ == "__main__":
    main()
