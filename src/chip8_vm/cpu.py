"""Chip8: execution engine orchestrator.

This module implements the full execution pipeline for one machine:
    MEMORY → FETCH → DECODE → KEY → REGISTRY → EXECUTE → TIMERS

The driver owns pacing. It writes key state with set_key() before a step,
calls step() (or run_for() per display frame) and then reads the framebuffer
with get_pixels(). The engine has no notion of real time.
"""

import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from .decode import DecodeResult, Decoder, format_instruction
from .errors import Chip8Error
from .registry import InstructionRegistry
from .state import KEY_COUNT, MEMORY_SIZE, PROGRAM_START, MachineState, create_initial_state


logger = logging.getLogger(__name__)


@dataclass
class ExecutionTraceEntry:
    """Single entry in the execution trace.

    Attributes:
        cycle: Cycle number the step started at
        address: Address the word was fetched from
        instruction: Raw 16-bit word
        decode_result: Result from the decoder
        pre_state: Snapshot before execution
        post_state: Snapshot after execution (and timer tick)
        error: Error message if execution failed
    """
    cycle: int
    address: int
    instruction: int
    decode_result: DecodeResult
    pre_state: dict
    post_state: dict
    error: Optional[str] = None

    @property
    def mnemonic(self) -> str:
        return format_instruction(self.decode_result)


class Chip8:
    """CHIP-8 interpreter: fetch, decode, execute plus timers.

    Attributes:
        decoder: Decoder for instruction words
        registry: InstructionRegistry with the instruction handlers
        state: Current machine state
        trace: Execution trace entries (only filled when trace_enabled)
        trace_enabled: Whether step() records trace entries
        max_steps: Default step limit for run()
    """

    DEFAULT_MAX_STEPS = 10000

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        trace_enabled: bool = False,
        max_steps: int = DEFAULT_MAX_STEPS
    ):
        """Initialize the machine with no program loaded.

        Args:
            rng: Random source for the RND instruction (seed it for tests)
            trace_enabled: Record a trace entry for every step
            max_steps: Step limit used by run() when none is given
        """
        self.decoder = Decoder()
        self.registry = InstructionRegistry(rng=rng)
        self.state: MachineState = create_initial_state()
        self.trace: List[ExecutionTraceEntry] = []
        self.trace_enabled = trace_enabled
        self.max_steps = max_steps

    def reset(self) -> None:
        """Recreate the machine state with no program loaded."""
        self.state = create_initial_state()
        self.trace = []

    def load_program(self, data: bytes) -> None:
        """Load a program image at PROGRAM_START on a fresh machine.

        Args:
            data: Program bytes

        Raises:
            ProgramLoadError: If the image does not fit in memory
        """
        self.state = create_initial_state(bytes(data))
        self.trace = []
        logger.info("Loaded %d byte program at %#05x", len(data), PROGRAM_START)

    def load_rom(self, path: Union[str, Path]) -> None:
        """Read a program image from a file and load it.

        Args:
            path: ROM file path

        Raises:
            OSError: If the file cannot be read
            ProgramLoadError: If the image does not fit in memory
        """
        self.load_program(Path(path).read_bytes())

    # =========================================================================
    # Input
    # =========================================================================

    def set_key(self, key: int, pressed: bool) -> None:
        """Set the pressed state of one key.

        Args:
            key: Key index 0x0-0xF
            pressed: True when held down

        Raises:
            ValueError: If key is outside 0-15
        """
        if not 0 <= key < KEY_COUNT:
            raise ValueError(f"Invalid key index: {key}")
        self.state.keys[key] = bool(pressed)

    def clear_keys(self) -> None:
        """Release every key."""
        for key in range(KEY_COUNT):
            self.state.keys[key] = False

    # =========================================================================
    # Execution
    # =========================================================================

    def can_continue(self) -> bool:
        """Whether another step may run.

        The program counter must leave room for a whole word inside memory and
        must not have run past the end of the loaded program.
        """
        if self.state.halted:
            return False
        is_within_memory = self.state.pc + 1 < MEMORY_SIZE
        is_in_program = self.state.pc <= PROGRAM_START + self.state.program_size
        return is_within_memory and is_in_program

    def fetch(self) -> int:
        """Read the big-endian word at PC and advance PC by 2."""
        instruction = self.state.read_word(self.state.pc)
        self.state.pc += 2
        return instruction

    def step(self) -> Optional[ExecutionTraceEntry]:
        """Execute a single instruction slot.

        Performs: FETCH → DECODE → EXECUTE → timer tick

        Returns:
            ExecutionTraceEntry for the step, or None when the machine cannot
            continue (nothing is fetched and the timers are left alone)

        Raises:
            RuntimeError: If the machine halted on an earlier error
            InvalidInstructionError: If the word does not decode
            MachineFault: On stack, key index or memory range violations
        """
        if self.state.halted:
            raise RuntimeError("Machine is halted")

        if not self.can_continue():
            return None

        address = self.state.pc
        cycle = self.state.cycle_count
        pre_state = self.state.snapshot() if self.trace_enabled else {}

        # FETCH + DECODE
        instruction = self.fetch()
        decode_result = self.decoder.decode(instruction)
        logger.debug("pc: %#05x op: %s", address, format_instruction(decode_result))
        logger.debug("registers (before): %s", self.state.registers)

        # EXECUTE
        try:
            self.registry.execute(self.state, decode_result.key, decode_result.params)
        except Chip8Error as e:
            self.state.halted = True
            logger.error("Halting at %#05x: %s", address, e)
            self._record(ExecutionTraceEntry(
                cycle=cycle,
                address=address,
                instruction=instruction,
                decode_result=decode_result,
                pre_state=pre_state,
                post_state=self.state.snapshot() if self.trace_enabled else {},
                error=str(e)
            ))
            raise

        logger.debug("registers (after):  %s", self.state.registers)
        self.state.tick_timers()

        entry = ExecutionTraceEntry(
            cycle=cycle,
            address=address,
            instruction=instruction,
            decode_result=decode_result,
            pre_state=pre_state,
            post_state=self.state.snapshot() if self.trace_enabled else {}
        )
        self._record(entry)
        return entry

    def _record(self, entry: ExecutionTraceEntry) -> None:
        if self.trace_enabled:
            self.trace.append(entry)

    def run_for(self, count: int) -> int:
        """Execute up to count steps, stopping early if the run ends.

        This is the per-frame entry point for drivers that pace execution.

        Returns:
            Number of steps actually executed
        """
        executed = 0
        while executed < count and self.can_continue():
            self.step()
            executed += 1
        return executed

    def run(self, max_steps: Optional[int] = None) -> List[ExecutionTraceEntry]:
        """Run until the program counter leaves the runnable region.

        Args:
            max_steps: Override the step limit (uses instance default if None)

        Returns:
            Execution trace (empty unless trace_enabled)

        Raises:
            RuntimeError: If the step limit is reached first
        """
        limit = max_steps if max_steps is not None else self.max_steps

        executed = self.run_for(limit)
        if executed >= limit and self.can_continue():
            raise RuntimeError(f"Max steps ({limit}) exceeded")

        return self.trace

    # =========================================================================
    # Accessors
    # =========================================================================

    def get_register(self, reg: Union[int, str]) -> int:
        """Get value of a register (index or V0-VF name)."""
        return self.state.get_register(reg)

    def dump_registers(self) -> Dict[str, int]:
        return self.state.dump_registers()

    def get_pc(self) -> int:
        return self.state.pc

    def get_index_register(self) -> int:
        return self.state.index_register

    def get_timers(self) -> Dict[str, int]:
        return {"delay": self.state.delay_timer, "sound": self.state.sound_timer}

    def sound_active(self) -> bool:
        """True while the sound timer is nonzero (the tone should play)."""
        return self.state.sound_timer > 0

    def get_pixels(self) -> List[bool]:
        """Copy of the framebuffer, row-major, 64 cells per row."""
        return list(self.state.pixels)

    def get_cycle_count(self) -> int:
        return self.state.cycle_count

    def is_halted(self) -> bool:
        return self.state.halted

    def get_trace(self) -> List[ExecutionTraceEntry]:
        return self.trace

    def print_trace(self) -> None:
        """Print execution trace in human-readable format."""
        print("=" * 70)
        print("CHIP-8 EXECUTION TRACE")
        print("=" * 70)

        for entry in self.trace:
            status = "OK" if not entry.error else f"ERROR: {entry.error}"
            print(f"\n[Cycle {entry.cycle}] {status}")
            print(f"  Address: {entry.address:#05x}  Word: {entry.instruction:04X}")
            print(f"  Decoded: {entry.mnemonic} ({entry.decode_result.key})")

            # Show register changes
            pre_regs = entry.pre_state.get("registers", {})
            post_regs = entry.post_state.get("registers", {})
            changes = []
            for reg in pre_regs:
                if pre_regs[reg] != post_regs.get(reg, pre_regs[reg]):
                    changes.append(f"{reg}: {pre_regs[reg]:#04x} → {post_regs[reg]:#04x}")
            if changes:
                print(f"  Changes: {', '.join(changes)}")

            pre_i = entry.pre_state.get("index_register", 0)
            post_i = entry.post_state.get("index_register", 0)
            if pre_i != post_i:
                print(f"  I: {pre_i:#05x} → {post_i:#05x}")

        print("\n" + "=" * 70)
        print("FINAL STATE")
        print("=" * 70)
        print(f"  {self.state}")

    def get_summary(self) -> Dict:
        """Get execution summary.

        Returns:
            Dictionary with execution statistics and final state
        """
        return {
            "cycles": self.get_cycle_count(),
            "halted": self.is_halted(),
            "can_continue": self.can_continue(),
            "registers": self.dump_registers(),
            "index_register": self.get_index_register(),
            "pc": self.get_pc(),
            "timers": self.get_timers(),
            "trace_length": len(self.trace),
            "errors": [e.error for e in self.trace if e.error],
        }
