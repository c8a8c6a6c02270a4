"""Launcher script executed by the test interpreter.

Usage::

    python launcher.py -m <module> -t <Class>.<method> [-s <secret> -p <port>]

Runs exactly one ``unittest`` test from the current working directory.
Exits 0 when the test passes and 1 when it fails, errors or cannot be
loaded. The debug arguments belong to the debugger transport; they are
exported as ``TESTLAUNCH_DEBUG_PORT`` / ``TESTLAUNCH_DEBUG_SECRET`` for it.

This file runs as a standalone script inside the target interpreter and must
not import ``testlaunch``.
"""

from __future__ import annotations

import argparse
import os
import sys
import unittest


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="launcher", description="Run a single unittest test.")
    parser.add_argument("-m", "--module", required=True, help="Module containing the test.")
    parser.add_argument("-t", "--test", required=True, help="Test as Class.method.")
    parser.add_argument("-s", "--secret", default=None, help="Debugger handshake secret.")
    parser.add_argument("-p", "--port", type=int, default=None, help="Debugger handshake port.")
    return parser


def _fix_sys_path() -> None:
    # The launcher's own directory must not shadow modules under test.
    here = os.path.dirname(os.path.abspath(__file__))
    sys.path[:] = [p for p in sys.path if os.path.abspath(p or os.curdir) != here]
    sys.path.insert(0, os.getcwd())


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    _fix_sys_path()

    if args.port is not None:
        os.environ["TESTLAUNCH_DEBUG_PORT"] = str(args.port)
    if args.secret is not None:
        os.environ["TESTLAUNCH_DEBUG_SECRET"] = args.secret

    name = f"{args.module}.{args.test}"
    suite = unittest.defaultTestLoader.loadTestsFromName(name)
    result = unittest.TextTestRunner(stream=sys.stderr, verbosity=2).run(suite)
    return 0 if result.wasSuccessful() and result.testsRun > 0 else 1


if __name__ == "__main__":
    sys.exit(main())
