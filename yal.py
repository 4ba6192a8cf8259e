"""yal entry point."""

from __future__ import annotations
import argparse
import logging
import sys
from typing import List, Optional

from ext import static_server
from interpreter import TYPE_VOID, Interpreter, TracebackFormatter, YalRuntimeError
from natives import YalExtensionError, load_native_registry
from parser import YalBindingError, YalParseError
from scanner import YalLexError


def _list_natives(ext_paths: List[str]) -> int:
    try:
        registry = load_native_registry(ext_paths)
    except YalExtensionError as error:
        print(f"ExtensionError: {error}", file=sys.stderr)
        return 1
    current = None
    for module_name, name, params, doc in registry.describe():
        if module_name != current:
            current = module_name
            print(f"[{module_name} {registry.version(module_name) or 'unversioned'}]")
        line = f"{module_name}.{name}({', '.join(params)})"
        if doc:
            line += f"  {doc}"
        print(line)
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="yal reference interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit env snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--ext", dest="ext", action="append", default=[], metavar="PATH", help="Load a native extension (.py or .yalx); repeatable")
    parser.add_argument("--list-natives", action="store_true", help="List available native functions and exit")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.list_natives:
        return _list_natives(args.ext)

    if args.program is None:
        print("A program path (or -source text) is required", file=sys.stderr)
        return 1

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    try:
        natives = load_native_registry(args.ext)
    except YalExtensionError as error:
        print(f"ExtensionError: {error}", file=sys.stderr)
        return 1

    interpreter = Interpreter(source=source_text, filename=filename, verbose=args.verbose, natives=natives)
    try:
        program = interpreter.parse()
    except YalLexError as error:
        print(f"LexError: {error}", file=sys.stderr)
        return 1
    except YalParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1
    except YalBindingError as error:
        print(f"BindingError: {error}", file=sys.stderr)
        return 1

    try:
        result = interpreter.execute(program)
    except (YalRuntimeError, YalBindingError) as error:
        static_server.shutdown_servers()
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1

    if result.type != TYPE_VOID:
        print(result)
    try:
        static_server.wait_for_servers()
    except KeyboardInterrupt:
        static_server.shutdown_servers()
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
