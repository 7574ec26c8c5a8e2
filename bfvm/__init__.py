from .instructions import DEFAULT_TAPE_SIZE, Instruction, MachineState, Opcode, Programme
from .machine import BoundsError, ExecutionState, StepLimitExceeded, VirtualMachine
from .parser import ParseError, parse
from .visualizer import VisualizerSession

__all__ = [
    "DEFAULT_TAPE_SIZE",
    "BoundsError",
    "ExecutionState",
    "Instruction",
    "MachineState",
    "Opcode",
    "ParseError",
    "Programme",
    "StepLimitExceeded",
    "VirtualMachine",
    "VisualizerSession",
    "parse",
]
