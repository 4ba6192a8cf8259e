"""yal native module "server": static file serving.

``serveStatic`` returns as soon as the socket is bound. The server runs on a
non-daemon thread, so the hosting process stays alive until
``shutdown_servers`` is called.
"""

from __future__ import annotations

import functools
import logging
import os
import threading
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, List

from natives import NativeModuleAPI, YalExtensionError

YAL_NATIVE_MODULE = "server"
YAL_NATIVE_API_VERSION = 1

logger = logging.getLogger("yal.server")
logger.addHandler(logging.NullHandler())

_servers: List[ThreadingHTTPServer] = []
_threads: List[threading.Thread] = []
_lock = threading.Lock()


class _QuietHandler(SimpleHTTPRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)


def _serve_static(path: Any, port: Any) -> None:
    if not isinstance(path, str):
        raise YalExtensionError("server.serveStatic expects a string path", rule="server.serveStatic")
    if not isinstance(port, float) or not port.is_integer() or not 0 <= port <= 65535:
        raise YalExtensionError(f"server.serveStatic expects a port number, got {port!r}", rule="server.serveStatic")
    if not os.path.isdir(path):
        raise YalExtensionError(f"Cannot serve '{path}': not a directory", rule="server.serveStatic")

    handler = functools.partial(_QuietHandler, directory=os.path.abspath(path))
    try:
        server = ThreadingHTTPServer(("localhost", int(port)), handler)
    except OSError as exc:
        raise YalExtensionError(f"Cannot listen on port {int(port)}: {exc}", rule="server.serveStatic")

    thread = threading.Thread(target=server.serve_forever, name=f"yal-static-{server.server_address[1]}")
    with _lock:
        _servers.append(server)
        _threads.append(thread)
    thread.start()
    logger.info("Serving %s at http://localhost:%d", path, server.server_address[1])


def running_servers() -> List[ThreadingHTTPServer]:
    with _lock:
        return list(_servers)


def wait_for_servers() -> None:
    with _lock:
        threads = list(_threads)
    for thread in threads:
        thread.join()


def shutdown_servers() -> None:
    with _lock:
        servers, threads = list(_servers), list(_threads)
        _servers.clear()
        _threads.clear()
    for server in servers:
        server.shutdown()
        server.server_close()
    for thread in threads:
        thread.join()


def yal_register(api: NativeModuleAPI) -> None:
    api.metadata(version="1.0.0")
    api.register_function("serveStatic", ["path", "port"], _serve_static, doc="serveStatic(path, port) -> void")
