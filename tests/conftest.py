from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    project_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(project_root))


@pytest.fixture
def run():
    """Run source text against a string input; return (interpreter, output)."""
    from console import BufferSink, StringSource
    from interpreter import Interpreter

    def _run(source: str, stdin: str = "", **kwargs):
        sink = BufferSink()
        interp = Interpreter.from_source(source, input_source=StringSource(stdin), output_sink=sink, **kwargs)
        interp.run()
        return interp, sink.getvalue()

    return _run
