from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import BinaryIO, Optional

from .instructions import DEFAULT_TAPE_SIZE, MachineState
from .machine import BoundsError, StepLimitExceeded, VirtualMachine
from .parser import ParseError, parse

logger = logging.getLogger(__name__)


def _read_source(path: str) -> bytes:
    return Path(path).read_bytes()


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(
    argv: Optional[list[str]] = None,
    *,
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[BinaryIO] = None,
) -> int:
    parser = argparse.ArgumentParser(description="Run a Brainfuck program")
    parser.add_argument("source", help="Path to Brainfuck source file")
    parser.add_argument(
        "--tape-size",
        type=int,
        default=DEFAULT_TAPE_SIZE,
        help=f"Initial number of tape cells (default: {DEFAULT_TAPE_SIZE}); "
        "the tape grows when the pointer runs off the right end",
    )
    parser.add_argument(
        "--max-steps",
        type=int,
        default=None,
        help="Abort after this many instructions (default: unlimited)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log parser and machine diagnostics to stderr",
    )
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.tape_size < 1:
        parser.error("--tape-size must be positive")
    if args.max_steps is not None and args.max_steps < 1:
        parser.error("--max-steps must be positive")

    try:
        source = _read_source(args.source)
    except OSError as exc:
        print(f"Cannot read source file: {exc}", file=sys.stderr)
        return 1

    try:
        programme = parse(source)
    except ParseError as exc:
        print(f"Syntax error: {exc}", file=sys.stderr)
        return 1

    logger.debug("Loaded %s (%d bytes)", args.source, len(source))
    machine = VirtualMachine(stdin=stdin, stdout=stdout, max_steps=args.max_steps)
    state = MachineState.zeroed(args.tape_size)
    try:
        machine.execute(programme, state)
    except (BoundsError, StepLimitExceeded) as exc:
        print(f"Runtime error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
