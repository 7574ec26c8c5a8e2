from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Tuple

DEFAULT_TAPE_SIZE = 30000


class Opcode(Enum):
    MOVE_RIGHT = ">"
    MOVE_LEFT = "<"
    INCREMENT = "+"
    DECREMENT = "-"
    OUTPUT = "."
    INPUT = ","
    JUMP_IF_ZERO = "["
    JUMP_IF_NONZERO = "]"
    COMMENT = "#"
    END = ""


_SYMBOLS = {
    opcode.value: opcode
    for opcode in Opcode
    if opcode not in (Opcode.COMMENT, Opcode.END)
}


@dataclass(frozen=True)
class Instruction:
    """One slot of a parsed programme.

    Jumps carry ``offset``, the slot distance to their partner. Comments keep
    the source character in ``char``.
    """

    opcode: Opcode
    offset: int = 0
    char: Optional[str] = None

    @classmethod
    def from_char(cls, ch: str) -> "Instruction":
        opcode = _SYMBOLS.get(ch)
        if opcode is None:
            return cls(Opcode.COMMENT, char=ch)
        return cls(opcode)

    @property
    def is_end(self) -> bool:
        return self.opcode is Opcode.END

    def __str__(self) -> str:
        if self.opcode is Opcode.COMMENT:
            return self.char or ""
        return self.opcode.value


END = Instruction(Opcode.END)


@dataclass
class Programme:
    instructions: Tuple[Instruction, ...]
    index: int = 0

    def __post_init__(self) -> None:
        self.instructions = tuple(self.instructions)
        if not self.instructions or not self.instructions[-1].is_end:
            raise ValueError("Programme must end with an END instruction")
        if any(instr.is_end for instr in self.instructions[:-1]):
            raise ValueError("END may only appear as the last instruction")

    @classmethod
    def from_instructions(cls, instructions: Iterable[Instruction]) -> "Programme":
        return cls(tuple(instructions) + (END,))

    def __len__(self) -> int:
        return len(self.instructions)

    def current(self) -> Instruction:
        return self.instructions[self.index]

    @property
    def finished(self) -> bool:
        return self.current().is_end

    def reset(self) -> None:
        self.index = 0

    def to_source(self) -> str:
        return "".join(str(instr) for instr in self.instructions)


@dataclass
class MachineState:
    tape: bytearray = field(repr=False)
    index: int = 0

    @classmethod
    def zeroed(cls, size: int = DEFAULT_TAPE_SIZE) -> "MachineState":
        if size < 1:
            raise ValueError(f"Tape size must be positive, got {size}")
        return cls(bytearray(size))

    @property
    def current(self) -> int:
        return self.tape[self.index]

    @current.setter
    def current(self, value: int) -> None:
        self.tape[self.index] = value

    def grow(self) -> None:
        self.tape.extend(bytes(max(1, len(self.tape))))


__all__ = [
    "DEFAULT_TAPE_SIZE",
    "END",
    "Instruction",
    "MachineState",
    "Opcode",
    "Programme",
]
