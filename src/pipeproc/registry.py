from __future__ import annotations

import functools
import logging
import weakref
from typing import TYPE_CHECKING, Any

from .constants import StopAction
from .errors import strerror
from .native import StopStep, create_native
from .process import Process

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence

    from .config import StartConfig, StartOptions
    from .native import NativeProcess

__all__ = ["DEFAULT_STOP_POLICY", "ProcessRegistry", "default_registry"]

logger = logging.getLogger(__name__)

DEFAULT_STOP_POLICY: tuple[StopStep, ...] = (
    StopStep(StopAction.KILL, 0),
    StopStep(StopAction.KILL, 0),
    StopStep(StopAction.TERMINATE, 0),
)


class ProcessRegistry:
    """Owns the native process factory and the handles spawned through it.

    The host creates one registry and passes it to every handle it starts;
    :meth:`shutdown` destroys whatever is still alive.
    """

    strerror = staticmethod(strerror)

    def __init__(
        self,
        create_native: Callable[[], NativeProcess] = create_native,
        stop_policy: Iterable[StopStep] = DEFAULT_STOP_POLICY,
    ) -> None:
        self.create_native = create_native
        self.stop_policy = tuple(stop_policy)
        self._processes: weakref.WeakSet[Process] = weakref.WeakSet()

    def track(self, process: Process) -> None:
        self._processes.add(process)

    def spawn(
        self,
        argv: Sequence[str],
        options: StartOptions | Mapping[str, Any] | None = None,
        *,
        stop_policy: Iterable[StopStep] | None = None,
        **overrides: Any,
    ) -> Process:
        return Process(
            argv, options, registry=self, stop_policy=stop_policy, **overrides
        )

    def start(
        self, config: StartConfig, *, stop_policy: Iterable[StopStep] | None = None
    ) -> Process:
        return Process.start(config, registry=self, stop_policy=stop_policy)

    def __iter__(self) -> Iterator[Process]:
        return iter(list(self._processes))

    def __len__(self) -> int:
        return len(self._processes)

    def shutdown(self) -> None:
        for process in self:
            logger.debug("Shutting down %r", process)
            process.destroy()
        self._processes.clear()


@functools.cache
def default_registry() -> ProcessRegistry:
    """Return the shared registry used when no registry is passed to :class:`Process`.

    It is created on first use and lives for the rest of the interpreter.
    Handles started through it stay tracked (weakly) until they are
    destroyed or collected. Pass an explicit :class:`ProcessRegistry` to keep
    handles isolated, e.g. in tests or in libraries that call
    :meth:`ProcessRegistry.shutdown`.
    """
    return ProcessRegistry()
