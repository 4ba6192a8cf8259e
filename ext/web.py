"""yal native module "http": HTTP client.

``get`` is a coroutine; the interpreter awaits it at the call site, so the
request runs on a worker thread while the script is suspended.
"""

from __future__ import annotations

import asyncio
import urllib.error
import urllib.request
from typing import Any

from natives import NativeModuleAPI, YalExtensionError

YAL_NATIVE_MODULE = "http"
YAL_NATIVE_API_VERSION = 1

DEFAULT_TIMEOUT = 30.0


def _fetch(url: str, timeout: float) -> str:
    try:
        with urllib.request.urlopen(url, timeout=timeout) as response:
            charset = response.headers.get_content_charset() or "utf-8"
            return response.read().decode(charset, errors="replace")
    except (urllib.error.URLError, ValueError, OSError) as exc:
        raise YalExtensionError(f"GET {url} failed: {exc}", rule="http.get")


async def _get(url: Any) -> str:
    if not isinstance(url, str):
        raise YalExtensionError("http.get expects a string url", rule="http.get")
    return await asyncio.to_thread(_fetch, url, DEFAULT_TIMEOUT)


def yal_register(api: NativeModuleAPI) -> None:
    api.metadata(version="1.0.0")
    api.register_function("get", ["url"], _get, doc="get(url) -> string body")
