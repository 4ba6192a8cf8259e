"""Pytest configuration for the yal test suite."""

from typing import Callable, Optional

import pytest

from ext import static_server
from interpreter import Interpreter, Value
from natives import NativeModuleAPI, NativeRegistry


@pytest.fixture
def run() -> Callable[..., Value]:
    """Parse and execute a source string, returning main's result."""

    def _run(source: str, natives: Optional[NativeRegistry] = None, verbose: bool = False) -> Value:
        return Interpreter(source=source, verbose=verbose, natives=natives).run()

    return _run


@pytest.fixture
def fake_registry() -> NativeRegistry:
    """A registry holding a small "math" module instead of the built-ins."""
    registry = NativeRegistry()
    api = NativeModuleAPI(registry=registry, module_name="math")

    @api.function("double", ["x"])
    def _double(x):
        return x * 2

    @api.function("pair", ["a", "b"])
    def _pair(a, b):
        return f"{a}:{b}"

    return registry


@pytest.fixture(autouse=True)
def stop_servers():
    yield
    static_server.shutdown_servers()
