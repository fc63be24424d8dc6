"""Tests for instruction execution through VirtualMachine.step()."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from chip8_vm import (
    DecodeError,
    ProgramTooLargeError,
    StackOverflowError,
    StackUnderflowError,
    Variant,
    VirtualMachine,
)
from chip8_vm.programs import assemble
from chip8_vm.state import FONT


def run_words(vm, *words, steps=None):
    """Load instruction words at 0x200 and step through them."""
    vm.load(assemble(*words))
    for _ in range(len(words) if steps is None else steps):
        vm.step()
    return vm


def keys_with(*pressed):
    keys = [False] * 16
    for k in pressed:
        keys[k] = True
    return keys


@pytest.fixture
def vm():
    return VirtualMachine(seed=1)


class TestLoading:
    """Test ROM loading policies."""

    def test_load_at_program_start(self, vm):
        vm.load(b"\x12\x34")
        assert vm.state.memory[0x200] == 0x12
        assert vm.state.memory[0x201] == 0x34
        assert vm.get_pc() == 0x200

    def test_eti_load(self):
        vm = VirtualMachine(variant=Variant.ETI)
        vm.load(b"\xAB")
        assert vm.state.memory[0x600] == 0xAB
        assert vm.state.memory[0x200] == 0
        assert vm.get_pc() == 0x600

    def test_oversized_rom_truncates(self, vm):
        """Bytes past 0xFFF are dropped; font is untouched."""
        rom = bytes([0x11]) * (4096 - 0x200 + 10)
        loaded = vm.load(rom)
        assert loaded == 4096 - 0x200
        assert vm.state.memory[0xFFF] == 0x11
        assert bytes(vm.state.memory[:80]) == FONT

    def test_oversized_rom_strict(self, vm):
        rom = bytes([0x11]) * (4096 - 0x200 + 1)
        with pytest.raises(ProgramTooLargeError):
            vm.load(rom, strict=True)
        assert vm.state.memory[0x200] == 0

    def test_exact_fit_strict(self, vm):
        rom = bytes([0x22]) * (4096 - 0x200)
        assert vm.load(rom, strict=True) == 4096 - 0x200

    def test_load_file(self, vm, tmp_path):
        rom = tmp_path / "test.ch8"
        rom.write_bytes(b"\x00\xE0")
        vm.load_file(rom)
        assert vm.state.fetch() == 0x00E0

    def test_load_file_missing(self, vm, tmp_path):
        with pytest.raises(FileNotFoundError):
            vm.load_file(tmp_path / "missing.ch8")


class TestFlowControl:
    """Test jumps, calls, returns and SYS."""

    def test_sys_is_noop(self, vm):
        run_words(vm, 0x0123)
        assert vm.get_pc() == 0x202

    def test_jump(self, vm):
        run_words(vm, 0x1ABC)
        assert vm.get_pc() == 0xABC

    def test_call_then_ret(self, vm):
        """CALL pushes its own address; RET resumes after it."""
        vm.load(assemble(0x2208, 0x0000, 0x0000, 0x0000, 0x00EE))
        vm.step()
        assert vm.get_pc() == 0x208
        assert vm.state.sp == 1
        assert vm.state.stack[0] == 0x200
        vm.step()
        assert vm.get_pc() == 0x202
        assert vm.state.sp == 0

    def test_jump_plus_v0(self, vm):
        run_words(vm, 0x6004, 0xB300)
        assert vm.get_pc() == 0x304

    def test_jump_plus_v0_wraps_address(self, vm):
        run_words(vm, 0x60FF, 0xBFFF)
        assert vm.get_pc() == 0x0FE

    def test_stack_overflow(self, vm):
        """The 17th nested CALL overflows."""
        vm.load(assemble(0x2200))
        for _ in range(16):
            vm.step()
        assert vm.state.sp == 16
        with pytest.raises(StackOverflowError):
            vm.step()
        assert vm.is_halted()

    def test_stack_underflow(self, vm):
        vm.load(assemble(0x00EE))
        with pytest.raises(StackUnderflowError):
            vm.step()
        assert vm.is_halted()


class TestSkips:
    """Test conditional skips (+4 when taken, +2 otherwise)."""

    @pytest.mark.parametrize("words, pc", [
        ((0x6105, 0x3105), 0x206),
        ((0x6105, 0x3106), 0x204),
        ((0x6105, 0x4106), 0x206),
        ((0x6105, 0x4105), 0x204),
        ((0x6105, 0x6205, 0x5120), 0x208),
        ((0x6105, 0x6206, 0x5120), 0x206),
        ((0x6105, 0x6206, 0x9120), 0x208),
        ((0x6105, 0x6205, 0x9120), 0x206),
        # low nibble is ignored for 5xy_ and 9xy_
        ((0x6105, 0x6205, 0x5121), 0x208),
        ((0x6105, 0x6206, 0x912F), 0x208),
    ])
    def test_skip(self, vm, words, pc):
        run_words(vm, *words)
        assert vm.get_pc() == pc

    def test_skp_pressed(self, vm):
        vm.load(assemble(0x6107, 0xE19E))
        vm.step()
        vm.step(keys_with(7))
        assert vm.get_pc() == 0x206

    def test_skp_not_pressed(self, vm):
        vm.load(assemble(0x6107, 0xE19E))
        vm.step()
        vm.step(keys_with(6))
        assert vm.get_pc() == 0x204

    def test_sknp(self, vm):
        vm.load(assemble(0x6107, 0xE1A1))
        vm.step()
        vm.step(keys_with())
        assert vm.get_pc() == 0x206

    def test_key_uses_low_nibble(self, vm):
        """Vx above 0xF selects key Vx & 0xF."""
        vm.load(assemble(0x6117, 0xE19E))
        vm.step()
        vm.step(keys_with(7))
        assert vm.get_pc() == 0x206


class TestArithmetic:
    """Test register loads and ALU instructions."""

    def test_add_immediate_wraps_without_flag(self, vm):
        run_words(vm, 0x6F55, 0x6AFA, 0x7A0A)
        assert vm.get_register(0xA) == 4
        assert vm.get_register(0xF) == 0x55

    def test_load_register(self, vm):
        run_words(vm, 0x6233, 0x8120)
        assert vm.get_register(1) == 0x33

    def test_bitwise(self, vm):
        run_words(vm, 0x61CC, 0x62AA, 0x8121)
        assert vm.get_register(1) == 0xEE
        run_words(vm, 0x61CC, 0x62AA, 0x8122)
        assert vm.get_register(1) == 0x88
        run_words(vm, 0x61CC, 0x62AA, 0x8123)
        assert vm.get_register(1) == 0x66

    def test_add_with_carry(self, vm):
        run_words(vm, 0x61C8, 0x6264, 0x8124)
        assert vm.get_register(1) == 44
        assert vm.get_register(0xF) == 1

    def test_add_without_carry(self, vm):
        run_words(vm, 0x610A, 0x6205, 0x8124)
        assert vm.get_register(1) == 15
        assert vm.get_register(0xF) == 0

    def test_sub_with_borrow(self, vm):
        run_words(vm, 0x6105, 0x620A, 0x8125)
        assert vm.get_register(1) == 251
        assert vm.get_register(0xF) == 0

    def test_sub_without_borrow(self, vm):
        run_words(vm, 0x610A, 0x6205, 0x8125)
        assert vm.get_register(1) == 5
        assert vm.get_register(0xF) == 1

    def test_sub_equal_clears_flag(self, vm):
        run_words(vm, 0x6F01, 0x6107, 0x6207, 0x8125)
        assert vm.get_register(1) == 0
        assert vm.get_register(0xF) == 0

    def test_subn(self, vm):
        run_words(vm, 0x6105, 0x620A, 0x8127)
        assert vm.get_register(1) == 5
        assert vm.get_register(0xF) == 1
        run_words(vm, 0x610A, 0x6205, 0x8127)
        assert vm.get_register(1) == 251
        assert vm.get_register(0xF) == 0

    def test_shift_right(self, vm):
        run_words(vm, 0x6105, 0x8116)
        assert vm.get_register(1) == 2
        assert vm.get_register(0xF) == 1
        run_words(vm, 0x6104, 0x8116)
        assert vm.get_register(1) == 2
        assert vm.get_register(0xF) == 0

    def test_shift_left(self, vm):
        run_words(vm, 0x6181, 0x811E)
        assert vm.get_register(1) == 0x02
        assert vm.get_register(0xF) == 1
        run_words(vm, 0x6141, 0x811E)
        assert vm.get_register(1) == 0x82
        assert vm.get_register(0xF) == 0

    def test_result_overrides_flag_when_target_is_vf(self, vm):
        run_words(vm, 0x6FC8, 0x6164, 0x8F14)
        assert vm.get_register(0xF) == 44

    def test_random_masked(self):
        vm = VirtualMachine(random_source=lambda: 0xAB)
        run_words(vm, 0xC00F)
        assert vm.get_register(0) == 0x0B

    def test_seeded_random_is_deterministic(self):
        a = run_words(VirtualMachine(seed=42), 0xC0FF, 0xC1FF)
        b = run_words(VirtualMachine(seed=42), 0xC0FF, 0xC1FF)
        assert a.dump_registers() == b.dump_registers()


class TestMemoryInstructions:
    """Test I register and memory transfer instructions."""

    def test_load_index(self, vm):
        run_words(vm, 0xA123)
        assert vm.get_index() == 0x123

    def test_add_index_no_flag(self, vm):
        run_words(vm, 0xAFFF, 0x6002, 0xF01E)
        assert vm.get_index() == 0x1001
        assert vm.get_register(0xF) == 0

    def test_font_address(self, vm):
        run_words(vm, 0x600A, 0xF029)
        assert vm.get_index() == 50

    def test_bcd(self, vm):
        run_words(vm, 0x609C, 0xA300, 0xF033)
        assert list(vm.state.memory[0x300:0x303]) == [1, 5, 6]

    def test_bcd_small_value(self, vm):
        run_words(vm, 0x6007, 0xA300, 0xF033)
        assert list(vm.state.memory[0x300:0x303]) == [0, 0, 7]

    def test_store_registers(self, vm):
        run_words(vm, 0x6011, 0x6122, 0x6233, 0xA300, 0xF155)
        assert list(vm.state.memory[0x300:0x303]) == [0x11, 0x22, 0]
        assert vm.get_index() == 0x300

    def test_load_registers(self, vm):
        vm.state.memory[0x300:0x303] = bytes([7, 8, 9])
        run_words(vm, 0xA300, 0xF265)
        assert [vm.get_register(i) for i in range(4)] == [7, 8, 9, 0]
        assert vm.get_index() == 0x300


class TestTimers:
    """Test delay and sound timers."""

    def test_delay_decays_to_zero(self, vm):
        """Delay of 5 reaches 0 after five more steps and stays there."""
        vm.load(assemble(0x6005, 0xF015))
        vm.step()
        vm.step()
        assert vm.delay_timer == 5
        for _ in range(5):
            vm.step()
        assert vm.delay_timer == 0
        vm.step()
        vm.step()
        assert vm.delay_timer == 0

    def test_read_delay_after_tick(self, vm):
        """Fx07 sees the timer already decremented for this cycle."""
        run_words(vm, 0x600A, 0xF015, 0xF107)
        assert vm.get_register(1) == 9

    def test_sound_timer_and_sink(self):
        events = []
        vm = VirtualMachine(sound_sink=events.append)
        vm.load(assemble(0x6002, 0xF018))
        vm.step()
        vm.step()
        assert vm.sound_timer == 2
        assert vm.sound_active is True
        vm.step()
        vm.step()
        assert vm.sound_timer == 0
        assert vm.sound_active is False
        assert events == [True, False]


class TestKeyWait:
    """Test Fx0A blocking key wait."""

    def test_stalls_without_key(self, vm):
        vm.load(assemble(0xF30A))
        for _ in range(3):
            vm.step(keys_with())
        assert vm.get_pc() == 0x200

    def test_resumes_on_key(self, vm):
        vm.load(assemble(0xF30A))
        vm.step(keys_with())
        vm.step(keys_with(7))
        assert vm.get_register(3) == 7
        assert vm.get_pc() == 0x202

    def test_lowest_key_wins(self, vm):
        vm.load(assemble(0xF30A))
        vm.step(keys_with(9, 3))
        assert vm.get_register(3) == 3

    def test_key_provider_polled(self):
        vm = VirtualMachine(key_provider=lambda: keys_with(0xB))
        vm.load(assemble(0xF30A))
        vm.step()
        assert vm.get_register(3) == 0xB

    def test_explicit_keys_override_provider(self):
        vm = VirtualMachine(key_provider=lambda: keys_with(0xB))
        vm.load(assemble(0xF30A))
        vm.step(keys_with(2))
        assert vm.get_register(3) == 2

    def test_press_and_release(self, vm):
        vm.load(assemble(0xF30A))
        vm.press_key(4)
        vm.release_key(4)
        vm.step()
        assert vm.get_pc() == 0x200

    def test_bad_snapshot_length(self, vm):
        with pytest.raises(ValueError):
            vm.set_keys([True] * 15)

    @pytest.mark.parametrize("key", [-1, 16])
    def test_key_index_out_of_range(self, vm, key):
        with pytest.raises(ValueError):
            vm.press_key(key)
        with pytest.raises(ValueError):
            vm.release_key(key)
        assert not any(vm.state.keys)


class TestDraw:
    """Test sprite drawing and collision."""

    def test_draw_font_glyph(self, vm):
        run_words(vm, 0xA000, 0x6000, 0xD005)
        assert vm.lit_pixel_count() == 14
        assert vm.get_register(0xF) == 0
        assert [vm.get_pixel(x, 0) for x in range(5)] == [True, True, True, True, False]

    def test_draw_twice_restores_and_collides(self, vm):
        """XOR is self-inverse; the second draw reports a collision."""
        run_words(vm, 0xA000, 0x6000, 0xD005)
        vm.load(assemble(0xD005))
        vm.step()
        assert vm.lit_pixel_count() == 0
        assert vm.get_register(0xF) == 1

    def test_collision_sticks_over_later_rows(self, vm):
        """A collision in row 0 is not cleared by non-colliding rows."""
        vm.state.memory[0x300:0x302] = bytes([0x80, 0x40])
        run_words(vm, 0xA300, 0xD001, 0xD002)
        assert vm.get_register(0xF) == 1
        assert vm.get_pixel(0, 0) is False
        assert vm.get_pixel(1, 1) is True

    def test_wraparound(self, vm):
        """An 8-wide sprite at x=60 wraps to columns 0-3."""
        vm.load(assemble(0x603C, 0x6100, 0xA20A, 0xD011, 0x1208, 0xFF00))
        for _ in range(4):
            vm.step()
        lit = [x for x in range(64) if vm.get_pixel(x, 0)]
        assert lit == [0, 1, 2, 3, 60, 61, 62, 63]
        assert vm.lit_pixel_count() == 8

    def test_vertical_wraparound(self, vm):
        vm.state.memory[0x300:0x302] = bytes([0x80, 0x80])
        run_words(vm, 0x6000, 0x611F, 0xA300, 0xD012)
        assert vm.get_pixel(0, 31) is True
        assert vm.get_pixel(0, 0) is True

    def test_clear_screen(self, vm):
        run_words(vm, 0xA000, 0x6000, 0xD005, 0x00E0)
        assert vm.lit_pixel_count() == 0


class TestErrorsAndTrace:
    """Test fatal errors, halting and the execution trace."""

    def test_decode_error_halts(self, vm):
        vm.load(assemble(0x8128))
        with pytest.raises(DecodeError):
            vm.step()
        assert vm.is_halted()
        with pytest.raises(RuntimeError):
            vm.step()

    def test_reset_clears_halt(self, vm):
        vm.load(assemble(0x8128))
        with pytest.raises(DecodeError):
            vm.step()
        vm.reset()
        assert not vm.is_halted()
        assert vm.get_pc() == 0x200
        assert vm.state.memory[0x200] == 0

    def test_trace_records_changes(self):
        vm = VirtualMachine(trace=True)
        run_words(vm, 0x6105, 0x7101)
        assert len(vm.trace) == 2
        entry = vm.trace[1]
        assert entry.cycle == 1
        assert entry.address == 0x202
        assert entry.mnemonic == "ADD V1, 0x01"
        assert entry.pre_state["registers"][1] == 5
        assert entry.post_state["registers"][1] == 6
        assert "V1: 5 -> 6" in vm.format_trace()

    def test_trace_records_error(self):
        vm = VirtualMachine(trace=True)
        vm.load(assemble(0xF1FF))
        with pytest.raises(DecodeError):
            vm.step()
        assert vm.trace[-1].instruction is None
        assert "0xf1ff" in vm.trace[-1].error
        assert vm.get_summary()["errors"] == [vm.trace[-1].error]

    def test_trace_limit(self):
        vm = VirtualMachine(trace=True, trace_limit=3)
        vm.load(assemble(0x1200))
        for _ in range(10):
            vm.step()
        assert len(vm.trace) == 3
        assert vm.trace[-1].cycle == 9

    def test_no_trace_by_default(self, vm):
        run_words(vm, 0x6105)
        assert len(vm.trace) == 0
