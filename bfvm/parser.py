from __future__ import annotations

import logging
from typing import Iterator, List, Tuple, Union

from .instructions import END, Instruction, Opcode, Programme

logger = logging.getLogger(__name__)


class ParseError(ValueError):
    """Raised when the source contains an unmatched loop bracket."""

    def __init__(self, message: str, position: int) -> None:
        super().__init__(message)
        self.position = position


def _characters(source: Union[str, bytes]) -> Iterator[str]:
    if isinstance(source, (bytes, bytearray)):
        return (chr(byte) for byte in source)
    return iter(source)


def parse(source: Union[str, bytes]) -> Programme:
    instructions: List[Instruction] = []
    # (instruction index, source position) of every open bracket not yet closed
    pending: List[Tuple[int, int]] = []

    for position, ch in enumerate(_characters(source)):
        instr = Instruction.from_char(ch)
        opcode = instr.opcode
        if opcode is Opcode.COMMENT:
            continue

        current = len(instructions)
        if opcode is Opcode.JUMP_IF_ZERO:
            pending.append((current, position))
        elif opcode is Opcode.JUMP_IF_NONZERO:
            if not pending:
                raise ParseError(f"Unmatched ']' at position {position}", position)
            open_index, _ = pending.pop()
            offset = current - open_index
            instructions[open_index] = Instruction(Opcode.JUMP_IF_ZERO, offset)
            instr = Instruction(Opcode.JUMP_IF_NONZERO, offset)
        instructions.append(instr)

    if pending:
        _, position = pending.pop()
        raise ParseError(f"Unmatched '[' at position {position}", position)

    instructions.append(END)
    logger.debug("Parsed %d instructions", len(instructions) - 1)
    return Programme(tuple(instructions))


__all__ = ["ParseError", "parse"]
