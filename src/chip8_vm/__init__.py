"""chip8-vm: CHIP-8 Virtual Machine Execution Engine.

This package runs programs written for the classic 8-bit CHIP-8 virtual
machine: 4 KiB of memory, sixteen byte registers, a call stack, two countdown
timers, a 64x32 monochrome framebuffer and a 16-key keypad.

Pipeline:
    fetch -> decode -> key -> registry execute -> timers

Architecture:
    MEMORY -> FETCH -> DECODE -> KEY -> REGISTRY -> EXECUTE -> STATE
               |         |        |        |           |
          [PC += 2] [nibbles] "OP_DRW" [Verified]  [Mutable]
                              {x,y,n}   Handlers  Machine State

Modules:
    state: MachineState dataclass, memory map constants, font
    decode: Decoder, mnemonic formatting, disassembly listing
    registry: Verified instruction handlers (OP_CLS, OP_DRW, etc.)
    cpu: Main Chip8 orchestrator
    screen: Text rendering of the framebuffer
    errors: Load, decode and runtime fault exceptions
"""

__version__ = "0.1.0"
__author__ = "chip8-vm Project"

from .state import MachineState
from .registry import InstructionRegistry
from .decode import Decoder, DecodeResult
from .cpu import Chip8, ExecutionTraceEntry
from .errors import (
    Chip8Error,
    InvalidInstructionError,
    MachineFault,
    ProgramLoadError,
)

__all__ = [
    "MachineState",
    "InstructionRegistry",
    "Decoder",
    "DecodeResult",
    "Chip8",
    "ExecutionTraceEntry",
    "Chip8Error",
    "InvalidInstructionError",
    "MachineFault",
    "ProgramLoadError",
]
