"""Command line query tool, in the spirit of ``postmap -q``."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Iterable, Sequence, TextIO

from . import __version__
from .models import ErrorKind, LookupResult
from .resolver import MongoResolver, SurrogateResolver, open_table

EX_OK = 0
EX_NOTFOUND = 1
EX_NOPERM = 77
EX_TEMPFAIL = 75
EX_CONFIG = 78

_EXIT_CODES = {
    ErrorKind.CONFIG: EX_CONFIG,
    ErrorKind.AUTH: EX_NOPERM,
    ErrorKind.UNAVAILABLE: EX_TEMPFAIL,
    ErrorKind.QUERY: EX_TEMPFAIL,
}


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="mongodict", description=__doc__)
    parser.add_argument("config", help="Path to the MongoDB table file.")
    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument("-q", "--query", metavar="KEY", help="Key to look up; '-' reads keys from stdin.")
    action.add_argument("--check", action="store_true", help="Connect and ping the server, then exit.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None, *, stdin: TextIO | None = None, stdout: TextIO | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    with open_table(args.config) as table:
        if isinstance(table, SurrogateResolver):
            print(f"mongodict: {table.reason}", file=sys.stderr)
            return EX_CONFIG
        if args.check:
            return _check(table, stdout)
        if args.query == "-":
            return _query_many(table, _read_keys(stdin), stdout)
        return _query_one(table, args.query, stdout)


def _check(table: MongoResolver, stdout: TextIO) -> int:
    problem = table.check()
    if problem is not None:
        print(f"mongodict: {table.config.display_target}: {problem.value}", file=sys.stderr)
        return _EXIT_CODES[problem]
    print(f"{table.config.display_target}: ok", file=stdout)
    return EX_OK


def _query_one(table: MongoResolver, key: str, stdout: TextIO) -> int:
    result = table.lookup(key)
    if result.found:
        print(result.value, file=stdout)
        return EX_OK
    return _exit_code(result)


def _query_many(table: MongoResolver, keys: Iterable[str], stdout: TextIO) -> int:
    status = EX_OK
    for key in keys:
        result = table.lookup(key)
        if result.found:
            print(f"{key}\t{result.value}", file=stdout)
            continue
        if result.failed:
            return _exit_code(result)
        status = EX_NOTFOUND
    return status


def _exit_code(result: LookupResult) -> int:
    if result.error is None:
        return EX_NOTFOUND
    print(f"mongodict: lookup failed: {result.detail or result.error.value}", file=sys.stderr)
    return _EXIT_CODES[result.error]


def _read_keys(stream: TextIO) -> Iterable[str]:
    for line in stream:
        key = line.strip()
        if key:
            yield key


__all__ = ["main", "parse_args"]
