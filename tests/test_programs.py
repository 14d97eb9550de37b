"""Integration tests running whole programs through Chip8."""

import logging
import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from chip8_vm import Chip8
from chip8_vm.errors import (
    InvalidInstructionError,
    ProgramLoadError,
    StackOverflowError,
    StackUnderflowError,
)
from chip8_vm.screen import lit_count
from chip8_vm.state import MAX_PROGRAM_SIZE, PIXEL_COUNT, program_from_hex


@pytest.fixture
def cpu():
    return Chip8(rng=random.Random(0))


def load(cpu, words):
    cpu.load_program(program_from_hex(words))
    return cpu


class TestArithmeticPrograms:
    """Test straight-line and looping arithmetic."""

    def test_add_registers(self, cpu):
        """LD V1,5; LD V2,3; ADD V1,V2 leaves V1=8 and no carry."""
        load(cpu, "6105 6203 8124")
        cpu.run()
        assert cpu.get_register("V1") == 8
        assert cpu.get_register("V2") == 3
        assert cpu.get_register("VF") == 0
        # The byte pair just past the program is executed as SYS
        assert cpu.get_cycle_count() == 4
        assert cpu.is_halted() is False
        assert cpu.can_continue() is False

    def test_sum_1_to_10(self, cpu):
        """Loop summing 1..10 into V0."""
        # V0 = 0; V1 = 1; loop: V0 += V1; V1 += 1; skip if V1 == 11; jump loop
        load(cpu, "6000 6101 8014 7101 310B 1204")
        cpu.run()
        assert cpu.get_register(0) == 55
        assert cpu.get_register(1) == 11

    def test_add_into_flag_register(self, cpu):
        """ADD VF, V1 keeps the sum in VF."""
        load(cpu, "6F05 6103 8F14")
        cpu.run()
        assert cpu.get_register("VF") == 8

    def test_bcd_and_load(self, cpu):
        """Store BCD of 234 and read it back into V0-V2."""
        load(cpu, "60EA A300 F033 F265")
        cpu.run()
        assert cpu.get_register(0) == 2
        assert cpu.get_register(1) == 3
        assert cpu.get_register(2) == 4
        assert cpu.get_index_register() == 0x303

    def test_random_is_reproducible(self):
        """Two machines with equally seeded sources agree."""
        a = load(Chip8(rng=random.Random(7)), "C0FF C1FF C20F")
        b = load(Chip8(rng=random.Random(7)), "C0FF C1FF C20F")
        a.run()
        b.run()
        assert a.dump_registers() == b.dump_registers()
        assert a.get_register(2) <= 0x0F


class TestFlowPrograms:
    """Test jumps, subroutines and the call stack."""

    def test_clear_screen(self, cpu):
        """CLS leaves every cell unlit."""
        load(cpu, "00E0")
        for i in range(0, PIXEL_COUNT, 7):
            cpu.state.pixels[i] = True
        cpu.step()
        assert cpu.get_pixels() == [False] * PIXEL_COUNT

    def test_jump(self, cpu):
        """JP 0x228 sets PC, which lies past the program end."""
        load(cpu, "1228")
        cpu.step()
        assert cpu.get_pc() == 0x228
        assert cpu.can_continue() is False

    def test_call_and_return(self, cpu):
        """CALL 0x206 runs the subroutine, RET resumes at 0x202."""
        load(cpu, "2206 6101 120A 6002 00EE")
        cpu.run()
        assert cpu.get_register(0) == 2
        assert cpu.get_register(1) == 1
        assert cpu.state.stack_pointer == 0
        assert cpu.get_cycle_count() == 6

    def test_return_on_empty_stack(self, cpu):
        """RET with nothing to return to halts the machine."""
        load(cpu, "00EE")
        with pytest.raises(StackUnderflowError):
            cpu.step()
        assert cpu.is_halted() is True
        assert cpu.can_continue() is False
        with pytest.raises(RuntimeError, match="halted"):
            cpu.step()
        assert cpu.run_for(5) == 0

    def test_unbounded_recursion(self, cpu):
        """A routine calling itself overflows on the sixteenth call."""
        load(cpu, "2200")
        with pytest.raises(StackOverflowError):
            cpu.run()
        assert cpu.get_cycle_count() == 15
        assert cpu.is_halted() is True

    def test_max_steps(self, cpu):
        """An endless loop trips the step limit."""
        load(cpu, "1200")
        with pytest.raises(RuntimeError, match="Max steps"):
            cpu.run(max_steps=10)
        assert cpu.get_cycle_count() == 10
        assert cpu.is_halted() is False

    def test_default_max_steps(self):
        cpu = load(Chip8(max_steps=25), "1200")
        with pytest.raises(RuntimeError, match=r"Max steps \(25\)"):
            cpu.run()


class TestDrawingPrograms:
    """Test programs that draw to the framebuffer."""

    def test_draw_font_zero(self, cpu):
        """Glyph 0 has 14 lit cells."""
        load(cpu, "A050 6000 6100 D015")
        cpu.run()
        pixels = cpu.get_pixels()
        assert lit_count(pixels) == 14
        assert pixels[0] and pixels[3] and not pixels[1 * 64 + 1]
        assert cpu.get_register("VF") == 0

    def test_draw_twice_erases(self, cpu):
        """Redrawing a sprite erases it and reports a collision."""
        load(cpu, "6000 6100 F029 D015 D015")
        cpu.run()
        assert lit_count(cpu.get_pixels()) == 0
        assert cpu.get_register("VF") == 1

    def test_get_pixels_is_copy(self, cpu):
        load(cpu, "A050 D015")
        cpu.run()
        pixels = cpu.get_pixels()
        pixels[0] = False
        assert cpu.state.pixels[0] is True


class TestInputAndTimers:
    """Test the driver-facing key and timer interface."""

    def test_wait_without_key_blocks(self, cpu):
        """LD V0, K re-executes while no key is held."""
        load(cpu, "F00A")
        assert cpu.run_for(5) == 5
        assert cpu.get_pc() == 0x200
        assert cpu.get_register(0) == 0

    def test_wait_with_keys(self, cpu):
        """The lowest held key wins."""
        load(cpu, "F00A")
        cpu.set_key(5, True)
        cpu.set_key(3, True)
        cpu.step()
        assert cpu.get_register(0) == 3
        assert cpu.get_pc() == 0x202

    def test_release_keys(self, cpu):
        load(cpu, "F00A")
        cpu.set_key(3, True)
        cpu.clear_keys()
        cpu.step()
        assert cpu.get_pc() == 0x200

    @pytest.mark.parametrize("key", [-1, 16, 0x20])
    def test_set_key_out_of_range(self, cpu, key):
        with pytest.raises(ValueError):
            cpu.set_key(key, True)

    def test_skip_on_key(self, cpu):
        """SKP V0 skips the load when key 0 is held."""
        load(cpu, "E09E 6101 6202")
        cpu.set_key(0, True)
        cpu.run()
        assert cpu.get_register(1) == 0
        assert cpu.get_register(2) == 2

    def test_delay_timer_counts_down(self, cpu):
        """The delay timer drops by one after every step, floored at zero."""
        load(cpu, "6005 F015 1204")
        cpu.step()
        assert cpu.get_timers()["delay"] == 0
        seen = []
        for _ in range(6):
            cpu.step()
            seen.append(cpu.get_timers()["delay"])
        assert seen == [4, 3, 2, 1, 0, 0]

    def test_sound_timer(self, cpu):
        load(cpu, "6003 F018 1204")
        cpu.run_for(2)
        assert cpu.sound_active() is True
        cpu.run_for(1)
        assert cpu.sound_active() is True
        cpu.run_for(1)
        assert cpu.sound_active() is False

    def test_step_past_end_is_noop(self, cpu):
        """A step that cannot run returns None and leaves timers alone."""
        load(cpu, "6105")
        cpu.run()
        cpu.state.delay_timer = 3
        assert cpu.step() is None
        assert cpu.get_timers()["delay"] == 3


class TestErrors:
    """Test invalid words and load failures."""

    def test_invalid_instruction(self):
        cpu = load(Chip8(trace_enabled=True), "5121")
        with pytest.raises(InvalidInstructionError) as excinfo:
            cpu.step()
        assert excinfo.value.address == 0x200
        assert excinfo.value.word == 0x5121
        assert cpu.is_halted() is True
        assert cpu.get_trace()[-1].error is not None
        assert cpu.get_summary()["errors"] == [str(excinfo.value)]

    def test_invalid_instruction_logged(self, cpu, caplog):
        load(cpu, "FFFF")
        with caplog.at_level(logging.ERROR, logger="chip8_vm.cpu"):
            with pytest.raises(InvalidInstructionError):
                cpu.step()
        assert "0xffff" in caplog.text.lower()

    def test_program_too_large(self, cpu):
        with pytest.raises(ProgramLoadError):
            cpu.load_program(bytes(MAX_PROGRAM_SIZE + 1))

    def test_load_rom(self, cpu, tmp_path):
        rom = tmp_path / "add.ch8"
        rom.write_bytes(bytes([0x61, 0x05, 0x62, 0x03, 0x81, 0x24]))
        cpu.load_rom(rom)
        cpu.run()
        assert cpu.state.program_size == 6
        assert cpu.get_register(1) == 8

    def test_load_rom_missing(self, cpu, tmp_path):
        with pytest.raises(OSError):
            cpu.load_rom(tmp_path / "missing.ch8")


class TestMachineLifecycle:
    """Test reset, independence and the memory-end guard."""

    def test_load_resets_state(self, cpu):
        load(cpu, "6105")
        cpu.run()
        load(cpu, "6203")
        assert cpu.get_register(1) == 0
        assert cpu.get_pc() == 0x200
        assert cpu.get_cycle_count() == 0

    def test_reset(self, cpu):
        load(cpu, "6105")
        cpu.run()
        cpu.reset()
        assert cpu.state.program_size == 0
        assert cpu.get_register(1) == 0

    def test_independent_machines(self):
        a = load(Chip8(), "6105")
        b = load(Chip8(), "6107")
        a.run()
        b.run()
        assert a.get_register(1) == 5
        assert b.get_register(1) == 7

    def test_fetch_at_last_byte_stops(self, cpu):
        """A word cannot be fetched from 0xFFF."""
        cpu.load_program(bytes(MAX_PROGRAM_SIZE))
        cpu.state.pc = 0xFFE
        assert cpu.can_continue() is True
        cpu.state.pc = 0xFFF
        assert cpu.can_continue() is False
        assert cpu.step() is None


class TestTraceAndSummary:
    """Test trace recording and the summary."""

    def test_trace_entries(self):
        cpu = load(Chip8(trace_enabled=True), "6105 6203 8124")
        trace = cpu.run()
        assert len(trace) == 4
        assert trace[0].cycle == 0
        assert trace[0].address == 0x200
        assert trace[0].instruction == 0x6105
        assert trace[2].mnemonic == "ADD V1, V2"
        assert trace[2].pre_state["registers"]["V1"] == 5
        assert trace[2].post_state["registers"]["V1"] == 8
        assert trace[3].decode_result.key == "OP_SYS"

    def test_trace_disabled_by_default(self, cpu):
        load(cpu, "6105")
        entry = cpu.step()
        assert entry.instruction == 0x6105
        assert cpu.get_trace() == []

    def test_summary(self, cpu):
        load(cpu, "6105 A300")
        cpu.run()
        summary = cpu.get_summary()
        assert summary["cycles"] == 3
        assert summary["halted"] is False
        assert summary["can_continue"] is False
        assert summary["registers"]["V1"] == 5
        assert summary["index_register"] == 0x300
        assert summary["timers"] == {"delay": 0, "sound": 0}
        assert summary["errors"] == []
