"""Tests for the instruction Decoder."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from chip8_vm.decode import DecodeResult, Decoder, ListingEntry, disassemble, format_instruction
from chip8_vm.registry import InstructionRegistry


@pytest.fixture
def decoder():
    return Decoder()


class TestDecodeResultDataclass:
    """Test DecodeResult structure."""

    def test_valid_result(self):
        """Valid decode result has key and params."""
        result = DecodeResult("OP_JP", {"nnn": 0x228}, True)
        assert result.key == "OP_JP"
        assert result.params == {"nnn": 0x228}
        assert result.valid is True
        assert result.error is None

    def test_invalid_result(self):
        """Invalid decode result has error message."""
        result = DecodeResult("OP_INVALID", {}, False, error="Unknown")
        assert result.valid is False
        assert result.error == "Unknown"


class TestDecodeFamilyZero:
    """Test family 0: clear, return and legacy machine calls."""

    def test_cls(self, decoder):
        """0x00E0 always decodes to clear-screen."""
        result = decoder.decode(0x00E0)
        assert result.valid is True
        assert result.key == "OP_CLS"
        assert result.params == {}

    def test_ret(self, decoder):
        result = decoder.decode(0x00EE)
        assert result.key == "OP_RET"
        assert result.params == {}

    @pytest.mark.parametrize("word", [0x0000, 0x0123, 0x0FFF, 0x00E1, 0x00EF])
    def test_sys(self, decoder, word):
        """Other family 0 words are inert legacy calls."""
        result = decoder.decode(word)
        assert result.valid is True
        assert result.key == "OP_SYS"
        assert result.params == {"nnn": word & 0x0FFF}


class TestDecodeAddressAndImmediate:
    """Test jumps, calls and immediate forms."""

    def test_jp(self, decoder):
        """0x1228 decodes to a jump to 0x228."""
        result = decoder.decode(0x1228)
        assert result.key == "OP_JP"
        assert result.params == {"nnn": 0x228}

    def test_call(self, decoder):
        result = decoder.decode(0x2ABC)
        assert result.key == "OP_CALL"
        assert result.params == {"nnn": 0xABC}

    def test_se_sne_immediate(self, decoder):
        assert decoder.decode(0x3A42).key == "OP_SE_VX_NN"
        assert decoder.decode(0x3A42).params == {"x": 0xA, "nn": 0x42}
        assert decoder.decode(0x4B07).key == "OP_SNE_VX_NN"
        assert decoder.decode(0x4B07).params == {"x": 0xB, "nn": 0x07}

    def test_ld_add_immediate(self, decoder):
        """6xnn and 7xnn carry x and nn only."""
        assert decoder.decode(0x6105).key == "OP_LD_VX_NN"
        assert decoder.decode(0x6105).params == {"x": 1, "nn": 5}
        assert decoder.decode(0x7FFF).key == "OP_ADD_VX_NN"
        assert decoder.decode(0x7FFF).params == {"x": 0xF, "nn": 0xFF}

    def test_index_jump_random_draw(self, decoder):
        assert decoder.decode(0xA300).params == {"nnn": 0x300}
        assert decoder.decode(0xA300).key == "OP_LD_I"
        assert decoder.decode(0xB210).key == "OP_JP_V0"
        assert decoder.decode(0xC30F).key == "OP_RND"
        assert decoder.decode(0xC30F).params == {"x": 3, "nn": 0x0F}
        assert decoder.decode(0xD125).key == "OP_DRW"
        assert decoder.decode(0xD125).params == {"x": 1, "y": 2, "n": 5}


class TestDecodeRegisterPairs:
    """Test families 5, 8 and 9."""

    def test_se_vx_vy(self, decoder):
        result = decoder.decode(0x5120)
        assert result.key == "OP_SE_VX_VY"
        assert result.params == {"x": 1, "y": 2}

    def test_sne_vx_vy(self, decoder):
        result = decoder.decode(0x9AB0)
        assert result.key == "OP_SNE_VX_VY"
        assert result.params == {"x": 0xA, "y": 0xB}

    @pytest.mark.parametrize("word,key", [
        (0x8120, "OP_LD_VX_VY"),
        (0x8121, "OP_OR"),
        (0x8122, "OP_AND"),
        (0x8123, "OP_XOR"),
        (0x8124, "OP_ADD_VX_VY"),
        (0x8125, "OP_SUB"),
        (0x8126, "OP_SHR"),
        (0x8127, "OP_SUBN"),
        (0x812E, "OP_SHL"),
    ])
    def test_alu(self, decoder, word, key):
        """Family 8 is selected by the low nibble; y is always decoded."""
        result = decoder.decode(word)
        assert result.valid is True
        assert result.key == key
        assert result.params == {"x": 1, "y": 2}


class TestDecodeKeysAndMisc:
    """Test families E and F."""

    def test_skp_sknp(self, decoder):
        assert decoder.decode(0xE39E).key == "OP_SKP"
        assert decoder.decode(0xE3A1).key == "OP_SKNP"
        assert decoder.decode(0xE3A1).params == {"x": 3}

    @pytest.mark.parametrize("low,key", [
        (0x07, "OP_LD_VX_DT"),
        (0x0A, "OP_LD_VX_K"),
        (0x15, "OP_LD_DT_VX"),
        (0x18, "OP_LD_ST_VX"),
        (0x1E, "OP_ADD_I_VX"),
        (0x29, "OP_LD_F_VX"),
        (0x33, "OP_LD_B_VX"),
        (0x55, "OP_LD_I_VX"),
        (0x65, "OP_LD_VX_I"),
    ])
    def test_misc(self, decoder, low, key):
        result = decoder.decode(0xF700 | low)
        assert result.key == key
        assert result.params == {"x": 7}


class TestDecodeInvalid:
    """Test words outside the baseline table."""

    @pytest.mark.parametrize("word", [
        0x5121,  # 5xy_ needs low nibble 0
        0x900F,  # 9xy_ needs low nibble 0
        0x8008, 0x800D, 0x800F,  # unused ALU ops
        0xE000, 0xE09F,  # unknown key ops
        0xF000, 0xF0FF, 0xFFFF,  # unknown Fx ops
    ])
    def test_invalid(self, decoder, word):
        result = decoder.decode(word)
        assert result.valid is False
        assert result.key == "OP_INVALID"
        assert result.params == {"raw": word}
        assert result.raw_instruction == word
        assert result.error

    def test_error_mentions_word(self, decoder):
        assert "0x5121" in decoder.decode(0x5121).error


class TestDecodeTotality:
    """Decode is pure and total over every 16-bit word."""

    def test_every_word_decodes(self, decoder):
        """No word raises and every key is one the registry can execute."""
        registry_keys = InstructionRegistry().get_valid_keys()
        assert Decoder.VALID_KEYS == registry_keys
        for word in range(0x10000):
            result = decoder.decode(word)
            assert result.key in Decoder.VALID_KEYS
            assert result.valid == (result.key != "OP_INVALID")

    def test_decode_is_deterministic(self, decoder):
        for word in (0x00E0, 0x8124, 0xD015, 0x5121, 0xF265):
            assert decoder.decode(word) == decoder.decode(word)

    def test_instruction_count(self):
        """35 instructions plus the invalid marker."""
        assert len(Decoder.VALID_KEYS) == 36


class TestFormatInstruction:
    """Test mnemonic rendering."""

    @pytest.mark.parametrize("word,text", [
        (0x00E0, "CLS"),
        (0x00EE, "RET"),
        (0x1228, "JP 0x228"),
        (0x6105, "LD V1, 0x05"),
        (0x8124, "ADD V1, V2"),
        (0x812E, "SHL V1"),
        (0xA050, "LD I, 0x050"),
        (0xD015, "DRW V0, V1, 5"),
        (0xF20A, "LD V2, K"),
        (0xF265, "LD V2, [I]"),
        (0x5121, "DW 0x5121"),
    ])
    def test_format(self, decoder, word, text):
        assert format_instruction(decoder.decode(word)) == text


class TestDisassemble:
    """Test program listings."""

    def test_listing(self):
        memory = bytes([0x00, 0xE0, 0x12, 0x28])
        listing = disassemble(memory, 0, 4)
        assert len(listing) == 2
        assert listing[0] == ListingEntry(0, 0x00E0, Decoder().decode(0x00E0))
        assert listing[1].word == 0x1228
        assert str(listing[0]) == "0x000  00E0  CLS"

    def test_odd_trailing_byte(self):
        """A final single byte at the end of the buffer pads with zero."""
        listing = disassemble(bytes([0x00, 0xE0, 0x12]), 0, 3)
        assert [entry.word for entry in listing] == [0x00E0, 0x1200]
