from __future__ import annotations

import argparse
import io
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from .cli import configure_logging
from .instructions import DEFAULT_TAPE_SIZE, MachineState
from .machine import (
    BoundsError,
    ExecutionState,
    StepLimitExceeded,
    VirtualMachine,
    snapshot,
)
from .parser import ParseError, parse


def _to_input_bytes(data: str) -> bytes:
    return data.encode("latin-1")


@dataclass
class VisualizerSession:
    code: str
    input_template: bytes
    tape_window: int = 10
    max_steps: Optional[int] = None
    history_limit: int = 200
    tape_size: int = DEFAULT_TAPE_SIZE

    def __post_init__(self) -> None:
        self.programme = parse(self.code)
        # breakpoints and pc values index into the comment-free instruction string
        self.code = self.programme.to_source()
        self.breakpoints: set[int] = set()
        self.history: List[ExecutionState] = []
        self.hit_breakpoint: Optional[int] = None
        self._init_machine()

    def _init_machine(self) -> None:
        self._stdout = io.BytesIO()
        self.machine = VirtualMachine(
            stdin=io.BytesIO(bytes(self.input_template)),
            stdout=self._stdout,
            max_steps=self.max_steps,
        )
        self.programme.reset()
        self.state = MachineState.zeroed(self.tape_size)
        self.finished = False
        self.last_state: ExecutionState = self._snapshot(None)
        self._record_state(self.last_state)

    def restart(self) -> None:
        self.history.clear()
        self.hit_breakpoint = None
        self._init_machine()

    def _snapshot(self, instruction: Optional[str]) -> ExecutionState:
        return snapshot(
            self.programme,
            self.state,
            step=self.machine.steps,
            instruction=instruction,
            output=self._stdout.getvalue(),
            tape_window=self.tape_window,
        )

    def _record_state(self, state: ExecutionState) -> None:
        self.history.append(state)
        if len(self.history) > self.history_limit:
            self.history.pop(0)
        self.last_state = state

    def _advance(self) -> Optional[ExecutionState]:
        if self.finished:
            return None
        if self.programme.finished:
            # one closing snapshot once END is reached
            self.finished = True
            return self._snapshot(None)
        instruction = str(self.programme.current())
        try:
            self.machine.step(self.programme, self.state)
        except (StepLimitExceeded, BoundsError):
            self.finished = True
            raise
        return self._snapshot(instruction)

    def step_forward(self, count: int = 1) -> Sequence[ExecutionState]:
        states: List[ExecutionState] = []
        if count <= 0:
            return states
        self.hit_breakpoint = None
        for _ in range(count):
            state = self._advance()
            if state is None:
                break
            self._record_state(state)
            states.append(state)
            if self.finished:
                break
            if state.pc in self.breakpoints:
                self.hit_breakpoint = state.pc
                break
        return states

    def run_until_break(self, limit: Optional[int] = None) -> Sequence[ExecutionState]:
        states: List[ExecutionState] = []
        executed = 0
        while limit is None or executed < limit:
            step_states = self.step_forward(1)
            if not step_states:
                break
            states.extend(step_states)
            executed += 1
            if self.hit_breakpoint is not None:
                break
        return states

    def current_state(self) -> ExecutionState:
        return self.last_state

    def add_breakpoint(self, pc: int) -> None:
        self.breakpoints.add(pc)

    def remove_breakpoint(self, pc: int) -> bool:
        if pc in self.breakpoints:
            self.breakpoints.remove(pc)
            return True
        return False

    def clear_breakpoints(self) -> None:
        self.breakpoints.clear()

    def list_breakpoints(self) -> List[int]:
        return sorted(self.breakpoints)

    def is_finished(self) -> bool:
        return self.finished


def format_state(state: ExecutionState, code: str) -> str:
    lines: List[str] = []
    instr_display = state.instruction if state.instruction is not None else "(init)"
    lines.append(
        f"step={state.step} pc={state.pc}/{state.code_length} "
        f"instruction={instr_display!r} pointer={state.pointer}"
    )
    if state.output:
        lines.append(f"output={state.output!r}")
    tape_parts: List[str] = []
    for idx, value in enumerate(state.tape):
        absolute = state.tape_start + idx
        cell_repr = f"{absolute}:{value:03}"
        if absolute == state.pointer:
            tape_parts.append(f"[{cell_repr}]")
        else:
            tape_parts.append(f" {cell_repr} ")
    lines.append("tape=" + " ".join(tape_parts))
    lines.append(f"code={_format_code_window(code, state.pc)}")
    return "\n".join(lines)


def _format_code_window(code: str, pc: int, window: int = 16) -> str:
    if not code:
        return "[END]"
    start = max(0, pc - window)
    end = min(len(code), pc + window + 1)
    pieces: List[str] = []
    for index in range(start, end):
        ch = code[index]
        if index == pc:
            pieces.append(f"[{ch}]")
        else:
            pieces.append(ch)
    if pc >= len(code):
        pieces.append("[END]")
    return "".join(pieces)


def run_repl(session: VisualizerSession) -> None:
    print("bfvm visualizer (type 'help' for commands)")
    _print_state(session.current_state(), session)
    while True:
        try:
            line = input("(viz) ").strip()
        except EOFError:
            print()
            break
        if not line:
            continue
        parts = shlex.split(line)
        command = parts[0].lower()
        args = parts[1:]
        try:
            if command in {"n", "next"}:
                count = max(1, int(args[0])) if args else 1
                states = session.step_forward(count)
                if states:
                    _print_state(states[-1], session)
                elif session.is_finished():
                    print("Program has already finished.")
            elif command in {"r", "run"}:
                limit = int(args[0]) if args else None
                states = session.run_until_break(limit)
                if states:
                    _print_state(states[-1], session)
                    if session.hit_breakpoint is not None:
                        print(f"Hit breakpoint at pc={session.hit_breakpoint}.")
                        session.hit_breakpoint = None
                elif session.is_finished():
                    print("Program finished.")
            elif command == "state":
                _print_state(session.current_state(), session)
            elif command == "history":
                count = int(args[0]) if args else 10
                for state in session.history[-count:]:
                    print("-" * 40)
                    print(format_state(state, session.code))
            elif command == "break":
                if not args:
                    print("Usage: break PC")
                    continue
                pc = int(args[0])
                session.add_breakpoint(pc)
                print(f"Breakpoint set at pc={pc}.")
            elif command == "breaks":
                points = session.list_breakpoints()
                if not points:
                    print("No breakpoints.")
                else:
                    print("Breakpoints:", ", ".join(map(str, points)))
            elif command == "clear":
                if not args:
                    session.clear_breakpoints()
                    print("All breakpoints cleared.")
                else:
                    pc = int(args[0])
                    if session.remove_breakpoint(pc):
                        print(f"Breakpoint at pc={pc} removed.")
                    else:
                        print(f"No breakpoint at pc={pc}.")
            elif command == "restart":
                session.restart()
                print("Session restarted.")
                _print_state(session.current_state(), session)
            elif command in {"quit", "exit"}:
                break
            elif command == "help":
                _print_help()
            else:
                print("Unknown command. Type 'help' for a list.")
        except ValueError:
            print("Invalid number.", file=sys.stderr)
        except StepLimitExceeded:
            print("Step limit reached.", file=sys.stderr)
        except BoundsError as exc:
            print(f"Runtime error: {exc}", file=sys.stderr)


def _print_state(state: ExecutionState, session: VisualizerSession) -> None:
    print("-" * 40)
    print(format_state(state, session.code))


def _print_help() -> None:
    print(
        "Commands:\n"
        "  next [N]    : execute N instructions (default 1)\n"
        "  run [N]     : run until a breakpoint, the end, or N instructions\n"
        "  state       : show the current state\n"
        "  history [N] : show the last N recorded states\n"
        "  break PC    : set a breakpoint at instruction PC\n"
        "  breaks      : list breakpoints\n"
        "  clear [PC]  : remove a breakpoint (all when PC is omitted)\n"
        "  restart     : reset the session\n"
        "  quit/exit   : leave\n"
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="bfvm step debugger")
    parser.add_argument("source", help="Path to Brainfuck source file")
    parser.add_argument(
        "--input",
        default="",
        help="String fed to the program's input (Latin-1)",
    )
    parser.add_argument(
        "--max-steps",
        type=int,
        default=5_000_000,
        help="Step limit (default: 5,000,000)",
    )
    parser.add_argument(
        "--tape-size",
        type=int,
        default=DEFAULT_TAPE_SIZE,
        help=f"Initial number of tape cells (default: {DEFAULT_TAPE_SIZE})",
    )
    parser.add_argument(
        "--tape-window",
        type=int,
        default=10,
        help="Number of cells shown on each side of the pointer",
    )
    parser.add_argument(
        "--history-limit",
        type=int,
        default=200,
        help="Number of states kept in history",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.tape_size < 1:
        parser.error("--tape-size must be positive")
    if args.tape_window < 0:
        parser.error("--tape-window must not be negative")
    if args.max_steps < 1:
        parser.error("--max-steps must be positive")
    if args.history_limit < 1:
        parser.error("--history-limit must be positive")

    try:
        source_text = Path(args.source).read_bytes()
        input_bytes = _to_input_bytes(args.input)
    except OSError as exc:
        print(f"Cannot read source file: {exc}", file=sys.stderr)
        return 1
    except UnicodeEncodeError as exc:
        print(f"Input must be Latin-1 text: {exc}", file=sys.stderr)
        return 1

    try:
        session = VisualizerSession(
            source_text.decode("latin-1"),
            input_template=input_bytes,
            tape_window=args.tape_window,
            max_steps=args.max_steps,
            history_limit=args.history_limit,
            tape_size=args.tape_size,
        )
    except ParseError as exc:
        print(f"Syntax error: {exc}", file=sys.stderr)
        return 1

    run_repl(session)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
