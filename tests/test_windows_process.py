from __future__ import annotations

import os
import sys
import time
from collections.abc import Iterator

import pytest

from pipeproc import ProcessRegistry

pytestmark = pytest.mark.skipif(os.name != "nt", reason="needs Windows named pipes")


@pytest.fixture
def registry() -> Iterator[ProcessRegistry]:
    registry = ProcessRegistry()
    yield registry
    registry.shutdown()


def test_write_to_full_pipe_does_not_block(registry: ProcessRegistry) -> None:
    # the child never reads stdin, so the pipe buffer fills up
    argv = [sys.executable, "-c", "import time; time.sleep(30)"]
    chunk = b"x" * 65536

    with registry.spawn(argv, stdin="pipe") as proc:
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            start = time.monotonic()
            written = proc.write(chunk)
            assert time.monotonic() - start < 1
            if written == 0:
                break
        else:
            pytest.fail("pipe never reported would-block")

        assert proc.running()
