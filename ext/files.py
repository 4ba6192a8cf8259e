"""yal native module "fs": text file access (UTF-8)."""

from __future__ import annotations

import os
from typing import Any

from natives import NativeModuleAPI, YalExtensionError

YAL_NATIVE_MODULE = "fs"
YAL_NATIVE_API_VERSION = 1


def _expect_path(path: Any, rule: str) -> str:
    if not isinstance(path, str):
        raise YalExtensionError(f"{rule} expects a string path", rule=rule)
    return path


def _read_file(path: Any) -> str:
    path = _expect_path(path, "fs.readFile")
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read()
    except OSError as exc:
        raise YalExtensionError(f"Failed to read '{path}': {exc}", rule="fs.readFile")


def _write_file(path: Any, data: Any) -> None:
    path = _expect_path(path, "fs.writeFile")
    if not isinstance(data, str):
        raise YalExtensionError("fs.writeFile expects string data", rule="fs.writeFile")
    try:
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(data)
    except OSError as exc:
        raise YalExtensionError(f"Failed to write '{path}': {exc}", rule="fs.writeFile")


def _exists(path: Any) -> bool:
    return os.path.exists(_expect_path(path, "fs.exists"))


def yal_register(api: NativeModuleAPI) -> None:
    api.metadata(version="1.0.0")
    api.register_function("readFile", ["path"], _read_file, doc="readFile(path) -> string")
    api.register_function("writeFile", ["path", "data"], _write_file, doc="writeFile(path, data) -> void")
    api.register_function("exists", ["path"], _exists, doc="exists(path) -> bool")
