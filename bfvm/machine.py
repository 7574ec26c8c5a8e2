from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional

from .instructions import Instruction, MachineState, Opcode, Programme

logger = logging.getLogger(__name__)


class BoundsError(IndexError):
    """Raised when the tape pointer moves before the first cell."""


class StepLimitExceeded(RuntimeError):
    """Raised when execution exceeds the configured step budget."""


@dataclass
class ExecutionState:
    step: int
    pc: int
    instruction: Optional[str]
    pointer: int
    tape_start: int
    tape: List[int]
    output: bytes
    code_length: int


@dataclass
class VirtualMachine:
    stdin: Optional[BinaryIO] = None
    stdout: Optional[BinaryIO] = None
    max_steps: Optional[int] = None

    steps: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        if self.stdin is None:
            self.stdin = sys.stdin.buffer
        if self.stdout is None:
            self.stdout = sys.stdout.buffer

    def reset_steps(self) -> None:
        self.steps = 0

    def execute(self, programme: Programme, state: MachineState) -> None:
        try:
            while not programme.finished:
                self.step(programme, state)
        finally:
            self.stdout.flush()
        logger.debug("Execution finished after %d steps", self.steps)

    def step(self, programme: Programme, state: MachineState) -> None:
        instr = programme.current()
        if instr.is_end:
            return
        if self.max_steps is not None and self.steps >= self.max_steps:
            raise StepLimitExceeded(
                f"Program exceeded the step limit of {self.max_steps}"
            )
        programme.index = self._execute_instruction(instr, programme.index, state)
        self.steps += 1

    def _execute_instruction(
        self,
        instr: Instruction,
        pc: int,
        state: MachineState,
    ) -> int:
        opcode = instr.opcode
        new_pc = pc + 1
        if opcode is Opcode.MOVE_RIGHT:
            state.index += 1
            if state.index >= len(state.tape):
                state.grow()
                logger.debug("Tape grown to %d cells", len(state.tape))
        elif opcode is Opcode.MOVE_LEFT:
            if state.index == 0:
                raise BoundsError(f"Pointer moved before start of tape at pc={pc}")
            state.index -= 1
        elif opcode is Opcode.INCREMENT:
            state.current = (state.current + 1) & 0xFF
        elif opcode is Opcode.DECREMENT:
            state.current = (state.current - 1) & 0xFF
        elif opcode is Opcode.OUTPUT:
            self.stdout.write(bytes((state.current,)))
        elif opcode is Opcode.INPUT:
            self.stdout.flush()
            data = self.stdin.read(1)
            state.current = data[0] if data else 0
        elif opcode is Opcode.JUMP_IF_ZERO:
            if state.current == 0:
                new_pc = pc + instr.offset + 1
        elif opcode is Opcode.JUMP_IF_NONZERO:
            if state.current != 0:
                new_pc = pc - instr.offset
        return new_pc


def snapshot(
    programme: Programme,
    state: MachineState,
    *,
    step: int,
    instruction: Optional[str] = None,
    output: bytes = b"",
    tape_window: int = 10,
) -> ExecutionState:
    start = max(0, state.index - tape_window)
    end = min(len(state.tape), state.index + tape_window + 1)
    return ExecutionState(
        step=step,
        pc=programme.index,
        instruction=instruction,
        pointer=state.index,
        tape_start=start,
        tape=list(state.tape[start:end]),
        output=output,
        code_length=len(programme) - 1,
    )


__all__ = [
    "BoundsError",
    "ExecutionState",
    "StepLimitExceeded",
    "VirtualMachine",
    "snapshot",
]
