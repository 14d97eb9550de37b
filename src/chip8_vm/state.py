"""MachineState: the single mutable aggregate for one CHIP-8 machine.

This module defines the core state structure for the interpreter along with
the fixed memory map constants and the built-in hex font.

State Components:
    - Memory: 4096 bytes; font at 0x050, programs loaded at 0x200
    - Registers: V0-VF (16 unsigned bytes, VF doubles as the flag register)
    - Index register: I (16-bit, holds a memory address)
    - PC: Program counter
    - Stack: 16 return addresses plus a stack pointer
    - Timers: delay and sound, decremented once per step
    - Keys: 16 pressed/released booleans written by the driver
    - Pixels: 64x32 monochrome framebuffer, row-major
    - Halted / cycle count: run bookkeeping

The state is owned by exactly one Chip8 instance and mutated in place by the
instruction registry, so several machines can coexist in one process.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Union

from .errors import (
    MemoryAccessError,
    ProgramLoadError,
    StackOverflowError,
    StackUnderflowError,
)


MEMORY_SIZE = 4096
PROGRAM_START = 0x200
MAX_PROGRAM_SIZE = MEMORY_SIZE - PROGRAM_START

REGISTER_COUNT = 16
FLAG_REGISTER = 0xF
STACK_SIZE = 16
KEY_COUNT = 16

SCREEN_WIDTH = 64
SCREEN_HEIGHT = 32
PIXEL_COUNT = SCREEN_WIDTH * SCREEN_HEIGHT

FONT_START = 0x50
GLYPH_SIZE = 5

# Hex digit glyphs 0-F, 5 rows of 4 pixels each (high nibble)
FONT = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

REGISTER_NAMES = [f"V{i:X}" for i in range(REGISTER_COUNT)]


def _fresh_memory() -> bytearray:
    memory = bytearray(MEMORY_SIZE)
    memory[FONT_START:FONT_START + len(FONT)] = FONT
    return memory


@dataclass
class MachineState:
    """Mutable machine state.

    Attributes:
        memory: 4096-byte address space (font preloaded)
        registers: V0-VF as unsigned bytes
        index_register: The I register
        pc: Program counter
        stack: Return addresses; slot 0 is never written
        stack_pointer: Index of the current top slot (0 = empty)
        delay_timer: Delay timer, readable by programs
        sound_timer: Sound timer, tone plays while nonzero
        keys: Pressed state of keys 0x0-0xF
        pixels: Framebuffer cells, row-major, SCREEN_WIDTH wide
        program_size: Length in bytes of the loaded program image
        halted: Set when a fatal condition stops the run
        cycle_count: Number of steps executed
    """
    memory: bytearray = field(default_factory=_fresh_memory)
    registers: List[int] = field(default_factory=lambda: [0] * REGISTER_COUNT)
    index_register: int = 0
    pc: int = PROGRAM_START
    stack: List[int] = field(default_factory=lambda: [0] * STACK_SIZE)
    stack_pointer: int = 0
    delay_timer: int = 0
    sound_timer: int = 0
    keys: List[bool] = field(default_factory=lambda: [False] * KEY_COUNT)
    pixels: List[bool] = field(default_factory=lambda: [False] * PIXEL_COUNT)
    program_size: int = 0
    halted: bool = False
    cycle_count: int = 0

    def snapshot(self) -> dict:
        """Copy of the CPU-side state for tracing.

        Memory and pixels are left out; they are large and the trace only
        needs to show register-level changes.
        """
        return {
            "registers": self.dump_registers(),
            "index_register": self.index_register,
            "pc": self.pc,
            "stack_pointer": self.stack_pointer,
            "stack": list(self.stack),
            "delay_timer": self.delay_timer,
            "sound_timer": self.sound_timer,
            "halted": self.halted,
            "cycle_count": self.cycle_count,
        }

    def validate(self) -> bool:
        """Check structural integrity of the state.

        Checks:
            - Memory, register, stack, key and pixel arrays have the right sizes
            - Registers and timers hold unsigned bytes
            - PC, index register and stack pointer are in range

        Returns:
            True if state is valid, False otherwise
        """
        if len(self.memory) != MEMORY_SIZE:
            return False
        if len(self.registers) != REGISTER_COUNT:
            return False
        if len(self.stack) != STACK_SIZE or len(self.keys) != KEY_COUNT:
            return False
        if len(self.pixels) != PIXEL_COUNT:
            return False

        for value in self.registers:
            if not isinstance(value, int) or not 0 <= value <= 0xFF:
                return False
        for timer in (self.delay_timer, self.sound_timer):
            if not 0 <= timer <= 0xFF:
                return False

        if not 0 <= self.pc <= 0xFFFF:
            return False
        if not 0 <= self.index_register <= 0xFFFF:
            return False
        if not 0 <= self.stack_pointer < STACK_SIZE:
            return False
        if not 0 <= self.program_size <= MAX_PROGRAM_SIZE:
            return False
        if self.cycle_count < 0:
            return False

        return True

    # =========================================================================
    # Registers
    # =========================================================================

    def _register_index(self, reg: Union[int, str]) -> int:
        if isinstance(reg, str):
            name = reg.upper()
            if name not in REGISTER_NAMES:
                raise KeyError(f"Invalid register: {reg}")
            return REGISTER_NAMES.index(name)
        if not 0 <= reg < REGISTER_COUNT:
            raise KeyError(f"Invalid register: {reg}")
        return reg

    def get_register(self, reg: Union[int, str]) -> int:
        """Get value of a register.

        Args:
            reg: Register index (0-15) or name (V0-VF, case insensitive)

        Raises:
            KeyError: If register doesn't exist
        """
        return self.registers[self._register_index(reg)]

    def set_register(self, reg: Union[int, str], value: int) -> None:
        """Store a value in a register, wrapped to 8 bits."""
        self.registers[self._register_index(reg)] = value & 0xFF

    def set_flag(self, value: int) -> None:
        """Overwrite VF with a carry/borrow/collision result."""
        self.registers[FLAG_REGISTER] = value & 0xFF

    def dump_registers(self) -> Dict[str, int]:
        """Get a copy of all register values keyed by name."""
        return dict(zip(REGISTER_NAMES, self.registers))

    # =========================================================================
    # Memory
    # =========================================================================

    def _check_address(self, addr: int) -> None:
        if not 0 <= addr < MEMORY_SIZE:
            raise MemoryAccessError(f"Memory access out of range: {addr:#06x}")

    def check_range(self, addr: int, length: int) -> None:
        """Raise MemoryAccessError unless addr..addr+length-1 all lie in memory."""
        self._check_address(addr)
        if length > 0:
            self._check_address(addr + length - 1)

    def read_byte(self, addr: int) -> int:
        self._check_address(addr)
        return self.memory[addr]

    def write_byte(self, addr: int, value: int) -> None:
        self._check_address(addr)
        self.memory[addr] = value & 0xFF

    def read_word(self, addr: int) -> int:
        """Read a big-endian 16-bit word (high byte first)."""
        return (self.read_byte(addr) << 8) | self.read_byte(addr + 1)

    # =========================================================================
    # Stack and timers
    # =========================================================================

    def push(self, addr: int) -> None:
        """Push a return address. The pointer is incremented before writing."""
        if self.stack_pointer >= STACK_SIZE - 1:
            raise StackOverflowError(f"Call stack overflow at depth {self.stack_pointer}")
        self.stack_pointer += 1
        self.stack[self.stack_pointer] = addr

    def pop(self) -> int:
        """Pop the top return address."""
        if self.stack_pointer == 0:
            raise StackUnderflowError("Return with an empty call stack")
        addr = self.stack[self.stack_pointer]
        self.stack_pointer -= 1
        return addr

    def tick_timers(self) -> None:
        if self.delay_timer > 0:
            self.delay_timer -= 1
        if self.sound_timer > 0:
            self.sound_timer -= 1

    # =========================================================================
    # Framebuffer
    # =========================================================================

    def clear_pixels(self) -> None:
        for i in range(PIXEL_COUNT):
            self.pixels[i] = False

    def framebuffer_rows(self) -> List[List[bool]]:
        """Framebuffer as SCREEN_HEIGHT rows of SCREEN_WIDTH cells."""
        return [
            self.pixels[row * SCREEN_WIDTH:(row + 1) * SCREEN_WIDTH]
            for row in range(SCREEN_HEIGHT)
        ]

    def __str__(self) -> str:
        """Human-readable state representation."""
        regs = " ".join(f"{name}={value:02X}" for name, value in self.dump_registers().items())
        return (
            f"[Cycle {self.cycle_count}] PC={self.pc:03X} I={self.index_register:03X} "
            f"SP={self.stack_pointer} DT={self.delay_timer} ST={self.sound_timer} "
            f"{regs} {'HALTED' if self.halted else ''}"
        ).rstrip()


def create_initial_state(program: bytes = b"") -> MachineState:
    """Create a fresh machine with a program image loaded at PROGRAM_START.

    Args:
        program: Raw program bytes

    Returns:
        MachineState with font and program in memory, PC at PROGRAM_START

    Raises:
        ProgramLoadError: If the image exceeds MAX_PROGRAM_SIZE bytes
    """
    if len(program) > MAX_PROGRAM_SIZE:
        raise ProgramLoadError(
            f"Program is {len(program)} bytes; at most {MAX_PROGRAM_SIZE} fit in memory"
        )

    state = MachineState()
    state.memory[PROGRAM_START:PROGRAM_START + len(program)] = program
    state.program_size = len(program)
    return state


def program_from_hex(text: str) -> bytes:
    """Parse hex words or bytes into a program image.

    Tokens may be separated by whitespace or commas and may carry a 0x
    prefix: "6105 6203 8124" and "0x61,0x05" are both accepted.

    Raises:
        ValueError: If the text is not an even number of hex digits
    """
    parts = text.replace(",", " ").split()
    digits = "".join(part[2:] if part.lower().startswith("0x") else part for part in parts)
    return bytes.fromhex(digits)
