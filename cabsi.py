"""Cabsi entry point."""

from __future__ import annotations
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from extensions import CabsiExtensionError, RuntimeServices, load_runtime_services
from interpreter import Interpreter, TracebackFormatter
from lexer import CabsiError


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        stream=sys.stderr,
    )


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Cabsi line-numbered stack machine")
    parser.add_argument("program", help="Source file path, or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Log every step and include stacks in tracebacks")
    parser.add_argument("--delay", type=float, default=None, metavar="SECONDS", help="Run cooperatively, pausing between steps")
    parser.add_argument("--ext", action="append", default=[], metavar="PATH", help="Load an extension module or .cabx list (repeatable)")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

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

    services: Optional[RuntimeServices] = None
    if args.ext:
        try:
            services = load_runtime_services(args.ext)
        except CabsiExtensionError as error:
            print(f"ExtensionError: {error}", file=sys.stderr)
            return 1

    interpreter = Interpreter.from_source(source_text, filename=filename, services=services, verbose=args.verbose)
    try:
        if args.delay is None:
            interpreter.run()
        else:
            asyncio.run(interpreter.run_cooperatively(args.delay))
    except KeyboardInterrupt:
        return 130
    except CabsiError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 1 if interpreter.diagnostics else 0


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
