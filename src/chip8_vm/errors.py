"""Exception types raised by the CHIP-8 engine.

Load errors and decode failures propagate straight to the driver. The
MachineFault family covers conditions the historical machine left undefined
(stack overflow/underflow, bad key index, memory access past 4 KiB); this
engine halts on them instead of wrapping.
"""

from typing import Optional


class Chip8Error(Exception):
    """Base class for all engine errors."""


class ProgramLoadError(Chip8Error, ValueError):
    """Program image does not fit in the program region of memory."""


class InvalidInstructionError(Chip8Error, RuntimeError):
    """A fetched word matched no instruction in the baseline set.

    Attributes:
        address: Memory address the word was fetched from
        word: The 16-bit instruction word
    """

    def __init__(self, address: int, word: int, message: Optional[str] = None):
        self.address = address
        self.word = word
        super().__init__(message or f"Invalid instruction {word:#06x} at {address:#05x}")


class MachineFault(Chip8Error, RuntimeError):
    """Runtime condition the machine cannot continue from."""


class StackOverflowError(MachineFault):
    pass


class StackUnderflowError(MachineFault):
    pass


class KeyIndexError(MachineFault):
    pass


class MemoryAccessError(MachineFault):
    pass
