"""Decoder: instruction word to registry key for the CHIP-8 engine.

This module turns a fetched 16-bit word into a DecodeResult naming exactly one
registry key plus only the operand fields that instruction needs.

Architecture:
    word -> nibbles -> family -> (operation_key, params) -> Registry -> Execute

Operand fields:
    x   second nibble, register index
    y   third nibble, register index
    n   low nibble, 4-bit immediate
    nn  low byte, 8-bit immediate
    nnn low 12 bits, address

Families 0, 8, 9, E and F use a further discriminator (full word, low nibble
or low byte). Anything outside the baseline table decodes to OP_INVALID,
which the engine treats as fatal. Decoding never raises.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional, Set


logger = logging.getLogger(__name__)


@dataclass
class DecodeResult:
    """Result of instruction decode operation.

    Attributes:
        key: Operation key (e.g., "OP_ADD_VX_VY")
        params: Operand fields for that key
        valid: Whether decode succeeded
        error: Error message if decode failed
        raw_instruction: The 16-bit word that was decoded
    """
    key: str
    params: Dict
    valid: bool
    error: Optional[str] = None
    raw_instruction: int = 0


# Family 8 (register-register ALU) keyed by low nibble
_ALU_KEYS = {
    0x0: "OP_LD_VX_VY",
    0x1: "OP_OR",
    0x2: "OP_AND",
    0x3: "OP_XOR",
    0x4: "OP_ADD_VX_VY",
    0x5: "OP_SUB",
    0x6: "OP_SHR",
    0x7: "OP_SUBN",
    0xE: "OP_SHL",
}

# Family E keyed by low byte
_KEY_SKIP_KEYS = {
    0x9E: "OP_SKP",
    0xA1: "OP_SKNP",
}

# Family F keyed by low byte
_MISC_KEYS = {
    0x07: "OP_LD_VX_DT",
    0x0A: "OP_LD_VX_K",
    0x15: "OP_LD_DT_VX",
    0x18: "OP_LD_ST_VX",
    0x1E: "OP_ADD_I_VX",
    0x29: "OP_LD_F_VX",
    0x33: "OP_LD_B_VX",
    0x55: "OP_LD_I_VX",
    0x65: "OP_LD_VX_I",
}


class Decoder:
    """Bit-pattern decoder for the baseline 35-instruction set.

    Attributes:
        VALID_KEYS: Every key decode can emit, OP_INVALID included
    """

    VALID_KEYS: Set[str] = {
        "OP_CLS",
        "OP_RET",
        "OP_SYS",
        "OP_JP",
        "OP_CALL",
        "OP_SE_VX_NN",
        "OP_SNE_VX_NN",
        "OP_SE_VX_VY",
        "OP_LD_VX_NN",
        "OP_ADD_VX_NN",
        "OP_SNE_VX_VY",
        "OP_LD_I",
        "OP_JP_V0",
        "OP_RND",
        "OP_DRW",
        "OP_INVALID",
    } | set(_ALU_KEYS.values()) | set(_KEY_SKIP_KEYS.values()) | set(_MISC_KEYS.values())

    def decode(self, instruction: int) -> DecodeResult:
        """Decode an instruction word to operation key and parameters.

        Args:
            instruction: 16-bit instruction word (e.g., 0x8124)

        Returns:
            DecodeResult with operation key and parameters
        """
        instruction &= 0xFFFF

        family = (instruction & 0xF000) >> 12
        x = (instruction & 0x0F00) >> 8
        y = (instruction & 0x00F0) >> 4
        n = instruction & 0x000F
        nn = instruction & 0x00FF
        nnn = instruction & 0x0FFF

        logger.debug(
            "instruction: %#06x, nibbles: %x %x %x %x, nn: %#04x, nnn: %#05x",
            instruction, family, x, y, n, nn, nnn
        )

        if family == 0x0:
            if instruction == 0x00E0:
                return self._result("OP_CLS", {}, instruction)
            if instruction == 0x00EE:
                return self._result("OP_RET", {}, instruction)
            return self._result("OP_SYS", {"nnn": nnn}, instruction)

        if family == 0x1:
            return self._result("OP_JP", {"nnn": nnn}, instruction)
        if family == 0x2:
            return self._result("OP_CALL", {"nnn": nnn}, instruction)
        if family == 0x3:
            return self._result("OP_SE_VX_NN", {"x": x, "nn": nn}, instruction)
        if family == 0x4:
            return self._result("OP_SNE_VX_NN", {"x": x, "nn": nn}, instruction)

        if family == 0x5:
            if n != 0:
                return self._invalid(instruction, "5xy_ requires a low nibble of 0")
            return self._result("OP_SE_VX_VY", {"x": x, "y": y}, instruction)

        if family == 0x6:
            return self._result("OP_LD_VX_NN", {"x": x, "nn": nn}, instruction)
        if family == 0x7:
            return self._result("OP_ADD_VX_NN", {"x": x, "nn": nn}, instruction)

        if family == 0x8:
            key = _ALU_KEYS.get(n)
            if key is None:
                return self._invalid(instruction, f"Unknown ALU operation {n:#x}")
            return self._result(key, {"x": x, "y": y}, instruction)

        if family == 0x9:
            if n != 0:
                return self._invalid(instruction, "9xy_ requires a low nibble of 0")
            return self._result("OP_SNE_VX_VY", {"x": x, "y": y}, instruction)

        if family == 0xA:
            return self._result("OP_LD_I", {"nnn": nnn}, instruction)
        if family == 0xB:
            return self._result("OP_JP_V0", {"nnn": nnn}, instruction)
        if family == 0xC:
            return self._result("OP_RND", {"x": x, "nn": nn}, instruction)
        if family == 0xD:
            return self._result("OP_DRW", {"x": x, "y": y, "n": n}, instruction)

        if family == 0xE:
            key = _KEY_SKIP_KEYS.get(nn)
            if key is None:
                return self._invalid(instruction, f"Unknown key operation {nn:#04x}")
            return self._result(key, {"x": x}, instruction)

        key = _MISC_KEYS.get(nn)
        if key is None:
            return self._invalid(instruction, f"Unknown Fx operation {nn:#04x}")
        return self._result(key, {"x": x}, instruction)

    def _result(self, key: str, params: Dict, instruction: int) -> DecodeResult:
        return DecodeResult(key, params, True, raw_instruction=instruction)

    def _invalid(self, instruction: int, reason: str) -> DecodeResult:
        return DecodeResult(
            "OP_INVALID",
            {"raw": instruction},
            False,
            error=f"{reason}: {instruction:#06x}",
            raw_instruction=instruction
        )


# =============================================================================
# Mnemonics
# =============================================================================

_MNEMONICS = {
    "OP_CLS": "CLS",
    "OP_RET": "RET",
    "OP_SYS": "SYS {nnn:#05x}",
    "OP_JP": "JP {nnn:#05x}",
    "OP_CALL": "CALL {nnn:#05x}",
    "OP_SE_VX_NN": "SE V{x:X}, {nn:#04x}",
    "OP_SNE_VX_NN": "SNE V{x:X}, {nn:#04x}",
    "OP_SE_VX_VY": "SE V{x:X}, V{y:X}",
    "OP_LD_VX_NN": "LD V{x:X}, {nn:#04x}",
    "OP_ADD_VX_NN": "ADD V{x:X}, {nn:#04x}",
    "OP_LD_VX_VY": "LD V{x:X}, V{y:X}",
    "OP_OR": "OR V{x:X}, V{y:X}",
    "OP_AND": "AND V{x:X}, V{y:X}",
    "OP_XOR": "XOR V{x:X}, V{y:X}",
    "OP_ADD_VX_VY": "ADD V{x:X}, V{y:X}",
    "OP_SUB": "SUB V{x:X}, V{y:X}",
    "OP_SHR": "SHR V{x:X}",
    "OP_SUBN": "SUBN V{x:X}, V{y:X}",
    "OP_SHL": "SHL V{x:X}",
    "OP_SNE_VX_VY": "SNE V{x:X}, V{y:X}",
    "OP_LD_I": "LD I, {nnn:#05x}",
    "OP_JP_V0": "JP V0, {nnn:#05x}",
    "OP_RND": "RND V{x:X}, {nn:#04x}",
    "OP_DRW": "DRW V{x:X}, V{y:X}, {n}",
    "OP_SKP": "SKP V{x:X}",
    "OP_SKNP": "SKNP V{x:X}",
    "OP_LD_VX_DT": "LD V{x:X}, DT",
    "OP_LD_VX_K": "LD V{x:X}, K",
    "OP_LD_DT_VX": "LD DT, V{x:X}",
    "OP_LD_ST_VX": "LD ST, V{x:X}",
    "OP_ADD_I_VX": "ADD I, V{x:X}",
    "OP_LD_F_VX": "LD F, V{x:X}",
    "OP_LD_B_VX": "LD B, V{x:X}",
    "OP_LD_I_VX": "LD [I], V{x:X}",
    "OP_LD_VX_I": "LD V{x:X}, [I]",
}


def format_instruction(result: DecodeResult) -> str:
    """Render a decode result as assembly text (e.g. "LD V1, 0x05").

    Invalid words are shown as a raw data word: "DW 0x5121".
    """
    if not result.valid:
        return f"DW {result.raw_instruction:#06x}"
    return _MNEMONICS[result.key].format(**result.params)


class ListingEntry(NamedTuple):
    address: int
    word: int
    result: DecodeResult

    def __str__(self) -> str:
        return f"{self.address:#05x}  {self.word:04X}  {format_instruction(self.result)}"


def disassemble(memory: bytes, start: int, size: int, decoder: Optional[Decoder] = None) -> List[ListingEntry]:
    """Decode every word of a program region.

    Args:
        memory: Byte buffer (usually the machine's memory)
        start: First address to list
        size: Number of bytes to list; an odd size also reads the byte after the region
        decoder: Decoder to use (a fresh one if omitted)

    Returns:
        One ListingEntry per 2-byte word
    """
    decoder = decoder or Decoder()
    listing = []
    for addr in range(start, start + size, 2):
        high = memory[addr]
        low = memory[addr + 1] if addr + 1 < len(memory) else 0
        word = (high << 8) | low
        listing.append(ListingEntry(addr, word, decoder.decode(word)))
    return listing
