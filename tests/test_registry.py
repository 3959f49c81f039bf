from __future__ import annotations

import pytest

from pipeproc import (
    DEFAULT_STOP_POLICY,
    Process,
    ProcessRegistry,
    StopAction,
    StopStep,
    ValidationError,
    build_config,
    default_registry,
)
from pipeproc.native import create_native

from .conftest import StubNative


def test_default_stop_policy() -> None:
    assert DEFAULT_STOP_POLICY == (
        StopStep(StopAction.KILL, 0),
        StopStep(StopAction.KILL, 0),
        StopStep(StopAction.TERMINATE, 0),
    )


def test_default_registry_is_shared() -> None:
    registry = default_registry()

    assert registry is default_registry()
    assert registry.create_native is create_native
    assert registry.stop_policy == DEFAULT_STOP_POLICY


def test_spawn_tracks_process(registry: ProcessRegistry) -> None:
    proc = registry.spawn(["prog"])

    assert isinstance(proc, Process)
    assert list(registry) == [proc]
    assert len(registry) == 1


def test_registry_stop_policy_is_inherited() -> None:
    policy = (StopStep(StopAction.TERMINATE, 10),)
    registry = ProcessRegistry(create_native=StubNative, stop_policy=policy)

    assert registry.spawn(["prog"]).stop_policy == policy
    assert registry.start(build_config(["prog"]), stop_policy=()).stop_policy == ()


def test_shutdown_destroys_every_process() -> None:
    natives: list[StubNative] = []

    def factory() -> StubNative:
        natives.append(StubNative())
        return natives[-1]

    registry = ProcessRegistry(create_native=factory)
    procs = [registry.spawn(["prog", str(i)]) for i in range(3)]

    registry.shutdown()

    assert len(registry) == 0
    assert [n.calls["destroy"] for n in natives] == [1, 1, 1]
    assert [n.calls["kill"] for n in natives] == [2, 2, 2]
    for proc in procs:
        assert not proc.running()


@pytest.mark.parametrize("argv", [[], ["prog", None]])
def test_spawn_validation_errors_leave_registry_empty(
    registry: ProcessRegistry, argv: list[object]
) -> None:
    with pytest.raises(ValidationError):
        registry.spawn(argv)  # type: ignore[arg-type]

    assert len(registry) == 0


def test_explicit_registry_bypasses_default() -> None:
    before = len(default_registry())
    registry = ProcessRegistry(create_native=StubNative)

    proc = Process(["prog"], registry=registry)

    assert list(registry) == [proc]
    assert proc not in set(default_registry())
    assert len(default_registry()) == before
