"""InstructionRegistry: verified CHIP-8 instruction primitives.

This module implements the registry pattern for instruction execution, where
each decoded key maps to exactly one handler that mutates the machine state.

Registry Keys:
    OP_CLS, OP_RET, OP_SYS: Screen clear, subroutine return, legacy no-op
    OP_JP, OP_CALL, OP_JP_V0: Jumps and calls
    OP_SE_VX_NN, OP_SNE_VX_NN, OP_SE_VX_VY, OP_SNE_VX_VY: Conditional skips
    OP_LD_VX_NN, OP_ADD_VX_NN: Immediate load/add (add leaves VF alone)
    OP_LD_VX_VY, OP_OR, OP_AND, OP_XOR: Register moves and bitwise ops
    OP_ADD_VX_VY, OP_SUB, OP_SUBN, OP_SHR, OP_SHL: Arithmetic, VF = carry/no-borrow/shifted bit
    OP_LD_I, OP_ADD_I_VX, OP_LD_F_VX: Index register updates
    OP_RND: Random byte masked by an immediate
    OP_DRW: XOR sprite draw, VF = collision
    OP_SKP, OP_SKNP, OP_LD_VX_K: Keypad
    OP_LD_VX_DT, OP_LD_DT_VX, OP_LD_ST_VX: Timers
    OP_LD_B_VX, OP_LD_I_VX, OP_LD_VX_I: BCD store and register dump/load
    OP_INVALID: Fatal, raises InvalidInstructionError

Each handler takes (MachineState, params) and mutates the state in place.
Handlers run after fetch, so state.pc already points past the instruction.
"""

import random
from typing import Any, Callable, Dict, Optional

from .errors import InvalidInstructionError, KeyIndexError
from .state import (
    FONT_START,
    GLYPH_SIZE,
    KEY_COUNT,
    MachineState,
    PIXEL_COUNT,
    SCREEN_WIDTH,
)


Handler = Callable[[MachineState, Dict[str, Any]], None]


class InstructionRegistry:
    """Verified registry of instruction handlers.

    The registry is frozen after initialization to ensure
    no runtime modifications can occur.

    Attributes:
        rng: Source of random bytes for OP_RND (anything with getrandbits)
        _primitives: Dictionary mapping operation keys to handler functions
        _frozen: Whether the registry is locked against modifications
    """

    def __init__(self, rng: Optional[random.Random] = None):
        """Initialize registry with all instruction handlers.

        Args:
            rng: Random source for OP_RND; pass a seeded instance for
                deterministic runs
        """
        self.rng = rng if rng is not None else random.Random()
        self._primitives: Dict[str, Handler] = {}
        self._frozen = False
        self._register_all_primitives()
        self.freeze()

    def _register_all_primitives(self) -> None:
        """Register all instruction handlers."""
        # Flow control
        self.register("OP_CLS", self._op_cls)
        self.register("OP_RET", self._op_ret)
        self.register("OP_SYS", self._op_sys)
        self.register("OP_JP", self._op_jp)
        self.register("OP_CALL", self._op_call)
        self.register("OP_JP_V0", self._op_jp_v0)

        # Conditional skips
        self.register("OP_SE_VX_NN", self._op_se_vx_nn)
        self.register("OP_SNE_VX_NN", self._op_sne_vx_nn)
        self.register("OP_SE_VX_VY", self._op_se_vx_vy)
        self.register("OP_SNE_VX_VY", self._op_sne_vx_vy)

        # Loads and arithmetic
        self.register("OP_LD_VX_NN", self._op_ld_vx_nn)
        self.register("OP_ADD_VX_NN", self._op_add_vx_nn)
        self.register("OP_LD_VX_VY", self._op_ld_vx_vy)
        self.register("OP_OR", self._op_or)
        self.register("OP_AND", self._op_and)
        self.register("OP_XOR", self._op_xor)
        self.register("OP_ADD_VX_VY", self._op_add_vx_vy)
        self.register("OP_SUB", self._op_sub)
        self.register("OP_SHR", self._op_shr)
        self.register("OP_SUBN", self._op_subn)
        self.register("OP_SHL", self._op_shl)

        # Index register, random, drawing
        self.register("OP_LD_I", self._op_ld_i)
        self.register("OP_RND", self._op_rnd)
        self.register("OP_DRW", self._op_drw)

        # Keypad
        self.register("OP_SKP", self._op_skp)
        self.register("OP_SKNP", self._op_sknp)
        self.register("OP_LD_VX_K", self._op_ld_vx_k)

        # Timers and memory
        self.register("OP_LD_VX_DT", self._op_ld_vx_dt)
        self.register("OP_LD_DT_VX", self._op_ld_dt_vx)
        self.register("OP_LD_ST_VX", self._op_ld_st_vx)
        self.register("OP_ADD_I_VX", self._op_add_i_vx)
        self.register("OP_LD_F_VX", self._op_ld_f_vx)
        self.register("OP_LD_B_VX", self._op_ld_b_vx)
        self.register("OP_LD_I_VX", self._op_ld_i_vx)
        self.register("OP_LD_VX_I", self._op_ld_vx_i)

        # Special
        self.register("OP_INVALID", self._op_invalid)

    def register(self, key: str, handler: Handler) -> None:
        """Register an instruction handler.

        Args:
            key: Operation key (e.g., "OP_DRW")
            handler: Function that takes (state, params) and mutates state

        Raises:
            RuntimeError: If registry is frozen
            ValueError: If key already registered
        """
        if self._frozen:
            raise RuntimeError("Cannot register primitives: registry is frozen")
        if key in self._primitives:
            raise ValueError(f"Primitive already registered: {key}")
        self._primitives[key] = handler

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if registry is frozen."""
        return self._frozen

    def get_valid_keys(self) -> set:
        """Get set of all valid operation keys."""
        return set(self._primitives.keys())

    def execute(self, state: MachineState, key: str, params: Dict[str, Any]) -> None:
        """Execute a registered handler against the state.

        Args:
            state: Machine state, mutated in place
            key: Operation key
            params: Operand fields from decode

        Raises:
            KeyError: If key not in registry
            Chip8Error: Whatever the handler raises (invalid word, faults)
        """
        if key not in self._primitives:
            raise KeyError(f"Unknown operation key: {key}")

        self._primitives[key](state, params)
        state.cycle_count += 1

    # =========================================================================
    # Flow Control
    # =========================================================================

    def _op_cls(self, state: MachineState, params: Dict[str, Any]) -> None:
        """CLS - Set every framebuffer cell to unlit."""
        state.clear_pixels()

    def _op_ret(self, state: MachineState, params: Dict[str, Any]) -> None:
        """RET - Pop the top stack address into the program counter.

        Raises:
            StackUnderflowError: If the stack is empty
        """
        state.pc = state.pop()

    def _op_sys(self, state: MachineState, params: Dict[str, Any]) -> None:
        """SYS nnn - Legacy machine-code call; inert."""

    def _op_jp(self, state: MachineState, params: Dict[str, Any]) -> None:
        """JP nnn - Unconditional jump."""
        state.pc = params["nnn"]

    def _op_call(self, state: MachineState, params: Dict[str, Any]) -> None:
        """CALL nnn - Push the return address, then jump.

        Raises:
            StackOverflowError: If no stack slot is left
        """
        state.push(state.pc)
        state.pc = params["nnn"]

    def _op_jp_v0(self, state: MachineState, params: Dict[str, Any]) -> None:
        """JP V0, nnn - Jump to nnn + V0."""
        state.pc = params["nnn"] + state.registers[0]

    # =========================================================================
    # Conditional Skips
    # =========================================================================

    def _op_se_vx_nn(self, state: MachineState, params: Dict[str, Any]) -> None:
        """SE Vx, nn - Skip the next instruction if Vx == nn."""
        if state.registers[params["x"]] == params["nn"]:
            state.pc += 2

    def _op_sne_vx_nn(self, state: MachineState, params: Dict[str, Any]) -> None:
        """SNE Vx, nn - Skip the next instruction if Vx != nn."""
        if state.registers[params["x"]] != params["nn"]:
            state.pc += 2

    def _op_se_vx_vy(self, state: MachineState, params: Dict[str, Any]) -> None:
        """SE Vx, Vy - Skip the next instruction if Vx == Vy."""
        if state.registers[params["x"]] == state.registers[params["y"]]:
            state.pc += 2

    def _op_sne_vx_vy(self, state: MachineState, params: Dict[str, Any]) -> None:
        """SNE Vx, Vy - Skip the next instruction if Vx != Vy."""
        if state.registers[params["x"]] != state.registers[params["y"]]:
            state.pc += 2

    # =========================================================================
    # Loads and Arithmetic
    # =========================================================================

    def _op_ld_vx_nn(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LD Vx, nn - Vx = nn."""
        state.set_register(params["x"], params["nn"])

    def _op_add_vx_nn(self, state: MachineState, params: Dict[str, Any]) -> None:
        """ADD Vx, nn - 8-bit wrapping add. VF is not touched."""
        x = params["x"]
        state.set_register(x, state.registers[x] + params["nn"])

    def _op_ld_vx_vy(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LD Vx, Vy - Vx = Vy."""
        state.set_register(params["x"], state.registers[params["y"]])

    def _op_or(self, state: MachineState, params: Dict[str, Any]) -> None:
        """OR Vx, Vy - Vx = Vx | Vy. VF is not touched."""
        x = params["x"]
        state.set_register(x, state.registers[x] | state.registers[params["y"]])

    def _op_and(self, state: MachineState, params: Dict[str, Any]) -> None:
        """AND Vx, Vy - Vx = Vx & Vy. VF is not touched."""
        x = params["x"]
        state.set_register(x, state.registers[x] & state.registers[params["y"]])

    def _op_xor(self, state: MachineState, params: Dict[str, Any]) -> None:
        """XOR Vx, Vy - Vx = Vx ^ Vy. VF is not touched."""
        x = params["x"]
        state.set_register(x, state.registers[x] ^ state.registers[params["y"]])

    def _op_add_vx_vy(self, state: MachineState, params: Dict[str, Any]) -> None:
        """ADD Vx, Vy - Vx = (Vx + Vy) mod 256.

        Overwrites VF: 1 if the unsigned sum exceeded 255, else 0. The flag is
        written before the sum, so ADD VF, Vy leaves the sum in VF.
        """
        x = params["x"]
        total = state.registers[x] + state.registers[params["y"]]
        state.set_flag(1 if total > 0xFF else 0)
        state.set_register(x, total)

    def _op_sub(self, state: MachineState, params: Dict[str, Any]) -> None:
        """SUB Vx, Vy - Vx = (Vx - Vy) mod 256.

        Overwrites VF: 1 when there was no borrow (Vx >= Vy), 0 otherwise.
        """
        x = params["x"]
        vx = state.registers[x]
        vy = state.registers[params["y"]]
        state.set_register(x, vx - vy)
        state.set_flag(1 if vx >= vy else 0)

    def _op_subn(self, state: MachineState, params: Dict[str, Any]) -> None:
        """SUBN Vx, Vy - Vx = (Vy - Vx) mod 256.

        Overwrites VF: 1 when there was no borrow (Vy >= Vx), 0 otherwise.
        """
        x = params["x"]
        vx = state.registers[x]
        vy = state.registers[params["y"]]
        state.set_register(x, vy - vx)
        state.set_flag(1 if vy >= vx else 0)

    def _op_shr(self, state: MachineState, params: Dict[str, Any]) -> None:
        """SHR Vx - Shift Vx right by one; y is decoded but unused.

        Overwrites VF with the bit shifted out (old lsb).
        """
        x = params["x"]
        vx = state.registers[x]
        state.set_register(x, vx >> 1)
        state.set_flag(vx & 0x01)

    def _op_shl(self, state: MachineState, params: Dict[str, Any]) -> None:
        """SHL Vx - Shift Vx left by one; y is decoded but unused.

        Overwrites VF with the bit shifted out (old msb).
        """
        x = params["x"]
        vx = state.registers[x]
        state.set_register(x, vx << 1)
        state.set_flag((vx & 0x80) >> 7)

    # =========================================================================
    # Index Register, Random, Drawing
    # =========================================================================

    def _op_ld_i(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LD I, nnn - I = nnn."""
        state.index_register = params["nnn"]

    def _op_rnd(self, state: MachineState, params: Dict[str, Any]) -> None:
        """RND Vx, nn - Vx = random byte AND nn."""
        state.set_register(params["x"], self.rng.getrandbits(8) & params["nn"])

    def _op_drw(self, state: MachineState, params: Dict[str, Any]) -> None:
        """DRW Vx, Vy, n - XOR an n-byte sprite from memory[I] onto the screen.

        Bits are drawn most-significant first. A cell's position is the
        flattened row-major index modulo the cell count, so a sprite running
        off the right edge continues on the next row and one running off the
        bottom continues at the top.

        Overwrites VF: 1 if any lit cell received a set bit, else 0.

        Raises:
            MemoryAccessError: If the sprite bytes run past the end of memory
        """
        vx = state.registers[params["x"]]
        vy = state.registers[params["y"]]
        sprite = [state.read_byte(state.index_register + i) for i in range(params["n"])]

        collision = False
        for row, byte in enumerate(sprite):
            for col in range(8):
                bit = bool((byte >> (7 - col)) & 0x1)
                pos = ((vy + row) * SCREEN_WIDTH + vx + col) % PIXEL_COUNT
                old = state.pixels[pos]
                if old and bit:
                    collision = True
                state.pixels[pos] = old ^ bit

        state.set_flag(1 if collision else 0)

    # =========================================================================
    # Keypad
    # =========================================================================

    def _key_pressed(self, state: MachineState, x: int) -> bool:
        key = state.registers[x]
        if key >= KEY_COUNT:
            raise KeyIndexError(f"V{x:X} holds {key:#04x}, not a key index")
        return state.keys[key]

    def _op_skp(self, state: MachineState, params: Dict[str, Any]) -> None:
        """SKP Vx - Skip the next instruction if key Vx is down.

        Raises:
            KeyIndexError: If Vx is not a key index
        """
        if self._key_pressed(state, params["x"]):
            state.pc += 2

    def _op_sknp(self, state: MachineState, params: Dict[str, Any]) -> None:
        """SKNP Vx - Skip the next instruction if key Vx is up."""
        if not self._key_pressed(state, params["x"]):
            state.pc += 2

    def _op_ld_vx_k(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LD Vx, K - Wait for a key press.

        With no key down the program counter is rewound so the next step
        executes this instruction again. Otherwise the lowest pressed key
        index is stored in Vx.
        """
        for key, pressed in enumerate(state.keys):
            if pressed:
                state.set_register(params["x"], key)
                return
        state.pc -= 2

    # =========================================================================
    # Timers and Memory
    # =========================================================================

    def _op_ld_vx_dt(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LD Vx, DT - Vx = delay timer."""
        state.set_register(params["x"], state.delay_timer)

    def _op_ld_dt_vx(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LD DT, Vx - delay timer = Vx."""
        state.delay_timer = state.registers[params["x"]]

    def _op_ld_st_vx(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LD ST, Vx - sound timer = Vx."""
        state.sound_timer = state.registers[params["x"]]

    def _op_add_i_vx(self, state: MachineState, params: Dict[str, Any]) -> None:
        """ADD I, Vx - No flag is defined for this add."""
        state.index_register = (state.index_register + state.registers[params["x"]]) & 0xFFFF

    def _op_ld_f_vx(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LD F, Vx - Point I at the font glyph for the digit in Vx."""
        state.index_register = FONT_START + GLYPH_SIZE * state.registers[params["x"]]

    def _op_ld_b_vx(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LD B, Vx - Store hundreds, tens and ones digits of Vx at I, I+1, I+2.

        Raises:
            MemoryAccessError: If I+2 is past the end of memory; nothing is written
        """
        vx = state.registers[params["x"]]
        base = state.index_register
        state.check_range(base, 3)
        state.write_byte(base, vx // 100)
        state.write_byte(base + 1, (vx // 10) % 10)
        state.write_byte(base + 2, vx % 10)

    def _op_ld_i_vx(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LD [I], Vx - Store V0..Vx at I onwards, then I += x + 1.

        Raises:
            MemoryAccessError: If I+x is past the end of memory; nothing is written
        """
        x = params["x"]
        state.check_range(state.index_register, x + 1)
        for idx in range(x + 1):
            state.write_byte(state.index_register + idx, state.registers[idx])
        state.index_register = (state.index_register + x + 1) & 0xFFFF

    def _op_ld_vx_i(self, state: MachineState, params: Dict[str, Any]) -> None:
        """LD Vx, [I] - Load V0..Vx from I onwards, then I += x + 1."""
        x = params["x"]
        state.check_range(state.index_register, x + 1)
        for idx in range(x + 1):
            state.set_register(idx, state.read_byte(state.index_register + idx))
        state.index_register = (state.index_register + x + 1) & 0xFFFF

    # =========================================================================
    # Special
    # =========================================================================

    def _op_invalid(self, state: MachineState, params: Dict[str, Any]) -> None:
        """INVALID - Undecodable word; the run cannot continue."""
        raise InvalidInstructionError(state.pc - 2, params.get("raw", 0))
