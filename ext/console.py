"""yal native module "io": console output."""

from __future__ import annotations

import sys
from typing import Any

from natives import NativeModuleAPI, render

YAL_NATIVE_MODULE = "io"
YAL_NATIVE_API_VERSION = 1


def _print(val: Any) -> None:
    sys.stdout.write(render(val) + "\n")
    sys.stdout.flush()


def yal_register(api: NativeModuleAPI) -> None:
    api.metadata(version="1.0.0")
    api.register_function("print", ["val"], _print, doc="print(val) -> void")
