"""Fetch/decode/execute tests for every instruction family."""

import random

import pytest

from chip8 import FONT_START, PROGRAM_START, C8Computer

from helpers import run


class TestLifecycle:
    def test_initial_state(self):
        c8 = C8Computer()
        assert c8.PC == 0x200
        assert c8.I == 0
        assert c8.SP == 0
        assert list(c8.V) == [0] * 16
        assert len(c8.RAM) == 4096
        # "0" glyph at the font base, "F" glyph ends the 80-byte table
        assert list(c8.RAM[FONT_START:FONT_START + 5]) == [0xF0, 0x90, 0x90, 0x90, 0xF0]
        assert list(c8.RAM[FONT_START + 75:FONT_START + 80]) == [0xF0, 0x80, 0xF0, 0x80, 0x80]
        assert not c8.waiting_for_key
        assert not c8.screen.needs_draw

    def test_load_and_step_ld_immediate(self):
        c8 = C8Computer()
        c8.load([0x60, 0x05])
        assert c8.RAM[PROGRAM_START] == 0x60
        c8.step()
        assert c8.V[0] == 5
        assert c8.PC == 0x202

    def test_load_does_not_reset_other_state(self):
        c8 = C8Computer()
        c8.V[3] = 9
        c8.PC = 0x300
        c8.load(b"\x12\x34")
        assert c8.V[3] == 9
        assert c8.PC == 0x300

    def test_independent_instances(self, make_c8):
        a = make_c8(0x6A01)
        b = make_c8(0x6A02)
        a.step()
        b.step()
        assert a.V[0xA] == 1
        assert b.V[0xA] == 2


class TestFlowControl:
    def test_jump(self, make_c8):
        c8 = make_c8(0x1456)
        c8.step()
        assert c8.PC == 0x456

    def test_call_then_return(self, make_c8):
        # 0x200: CALL 0x206 / 0x202: LD V1, 7 / 0x204: JP 0x204 / 0x206: RET
        c8 = make_c8(0x2206, 0x6107, 0x1204, 0x00EE)
        c8.step()
        assert c8.PC == 0x206
        assert c8.SP == 1
        assert c8.stack[0] == 0x202
        c8.step()
        assert c8.PC == 0x202
        assert c8.SP == 0
        c8.step()
        assert c8.V[1] == 7

    def test_return_pops_address_without_advancing(self, make_c8):
        c8 = make_c8(0x00EE)
        c8.stack[0] = 0x300
        c8.SP = 1
        c8.step()
        assert c8.PC == 0x300
        assert c8.SP == 0

    def test_jump_plus_v0(self, make_c8):
        c8 = make_c8(0x6010, 0xB300)
        run(c8, 2)
        assert c8.PC == 0x310


class TestSkips:
    @pytest.mark.parametrize("opcode, taken", [
        (0x3042, True),
        (0x3043, False),
        (0x4043, True),
        (0x4042, False),
    ])
    def test_skip_against_immediate(self, make_c8, opcode, taken):
        c8 = make_c8(opcode)
        c8.V[0] = 0x42
        c8.step()
        assert c8.PC == (0x204 if taken else 0x202)

    @pytest.mark.parametrize("opcode, vy, taken", [
        (0x5010, 0x42, True),
        (0x5010, 0x41, False),
        (0x9010, 0x41, True),
        (0x9010, 0x42, False),
    ])
    def test_skip_against_register(self, make_c8, opcode, vy, taken):
        c8 = make_c8(opcode)
        c8.V[0] = 0x42
        c8.V[1] = vy
        c8.step()
        assert c8.PC == (0x204 if taken else 0x202)

    @pytest.mark.parametrize("opcode, expected_pc", [
        (0xE59E, 0x202),
        (0xE5A1, 0x204),
    ])
    def test_key_skips_with_value_beyond_pad(self, make_c8, opcode, expected_pc):
        # No key above 0xF can be held, even with every pad key down
        c8 = make_c8(opcode)
        c8.V[5] = 0x10
        for key in range(16):
            c8.set_key(key)
        c8.step()
        assert c8.PC == expected_pc

    def test_key_skips(self, make_c8):
        c8 = make_c8(0xE59E, 0x0000, 0xE5A1)
        c8.V[5] = 0xB
        c8.set_key(0xB)
        c8.step()
        assert c8.PC == 0x204
        c8.step()
        assert c8.PC == 0x206
        c8.release_key(0xB)
        c8.PC = 0x204
        c8.step()
        assert c8.PC == 0x208


class TestArithmetic:
    def test_add_immediate_wraps_without_flag(self, make_c8):
        c8 = make_c8(0x7310)
        c8.V[3] = 0xF8
        c8.V[0xF] = 0x55
        c8.step()
        assert c8.V[3] == 0x08
        assert c8.V[0xF] == 0x55

    @pytest.mark.parametrize("low, expected", [
        (0x0, 0b1010),
        (0x1, 0b1110),
        (0x2, 0b1000),
        (0x3, 0b0110),
    ])
    def test_logic_ops(self, make_c8, low, expected):
        c8 = make_c8(0x8120 | low)
        c8.V[1] = 0b1100
        c8.V[2] = 0b1010
        c8.V[0xF] = 3
        c8.step()
        assert c8.V[1] == expected
        assert c8.V[0xF] == 3

    def test_logic_ops_reset_vf_with_quirk(self, make_c8):
        c8 = make_c8(0x8121, vf_reset=True)
        c8.V[0xF] = 3
        c8.step()
        assert c8.V[0xF] == 0

    def test_add_carry_law(self, make_c8):
        rng = random.Random(8)
        pairs = [(0, 0), (255, 1), (128, 128), (255, 255), (100, 155), (100, 156)]
        pairs += [(rng.randrange(256), rng.randrange(256)) for _ in range(50)]
        for a, b in pairs:
            c8 = make_c8(0x8124)
            c8.V[1] = a
            c8.V[2] = b
            c8.step()
            assert c8.V[1] == (a + b) % 256
            assert c8.V[0xF] == (1 if a + b > 255 else 0)

    def test_sub_borrow_law(self, make_c8):
        rng = random.Random(5)
        pairs = [(0, 0), (5, 5), (6, 5), (5, 6), (0, 255), (255, 0)]
        pairs += [(rng.randrange(256), rng.randrange(256)) for _ in range(50)]
        for a, b in pairs:
            c8 = make_c8(0x8125)
            c8.V[1] = a
            c8.V[2] = b
            c8.step()
            assert c8.V[1] == (a - b) % 256
            assert c8.V[0xF] == (1 if a > b else 0)

    def test_subn(self, make_c8):
        c8 = make_c8(0x8127, 0x8127)
        c8.V[1] = 3
        c8.V[2] = 10
        c8.step()
        assert c8.V[1] == 7
        assert c8.V[0xF] == 1
        c8.V[2] = 2
        c8.step()
        assert c8.V[1] == 0xFB
        assert c8.V[0xF] == 0

    def test_shift_right(self, make_c8):
        c8 = make_c8(0x8126)
        c8.V[1] = 0b101
        c8.step()
        assert c8.V[1] == 0b10
        assert c8.V[0xF] == 1

    def test_shift_left(self, make_c8):
        c8 = make_c8(0x812E)
        c8.V[1] = 0x81
        c8.step()
        assert c8.V[1] == 0x02
        assert c8.V[0xF] == 1

    def test_shift_uses_vy_with_quirk(self, make_c8):
        c8 = make_c8(0x8126, shift_vy=True)
        c8.V[1] = 0xFF
        c8.V[2] = 0x04
        c8.step()
        assert c8.V[1] == 0x02
        assert c8.V[0xF] == 0

    def test_flag_register_as_destination_keeps_flag(self, make_c8):
        c8 = make_c8(0x8F14)
        c8.V[0xF] = 0xFF
        c8.V[1] = 0x01
        c8.step()
        assert c8.V[0xF] == 1

    def test_random_is_masked(self, make_c8):
        c8 = make_c8(0xC40F, rng=random.Random(1))
        c8.step()
        assert c8.V[4] <= 0x0F
        assert c8.PC == 0x202


class TestIndexAndMemory:
    def test_load_index(self, make_c8):
        c8 = make_c8(0xA123)
        c8.step()
        assert c8.I == 0x123

    def test_add_to_index(self, make_c8):
        c8 = make_c8(0xAFFF, 0x6002, 0xF01E)
        run(c8, 3)
        assert c8.I == 0x1001
        assert c8.V[0xF] == 0

    def test_font_location(self, make_c8):
        c8 = make_c8(0x6A1C, 0xFA29)
        run(c8, 2)
        assert c8.I == FONT_START + 5 * 0xC

    def test_bcd(self, make_c8):
        c8 = make_c8(0x60EA, 0xA300, 0xF033)
        run(c8, 3)
        assert list(c8.RAM[0x300:0x303]) == [2, 3, 4]

    def test_store_and_load_registers(self, make_c8):
        c8 = make_c8(0xA400, 0xF255, 0x6000, 0x6100, 0x6200, 0x6300, 0xF365)
        for i, value in enumerate([1, 2, 3, 4]):
            c8.V[i] = value
        run(c8, 2)
        assert list(c8.RAM[0x400:0x404]) == [1, 2, 3, 0]
        assert c8.I == 0x400
        run(c8, 5)
        assert list(c8.V[0:4]) == [1, 2, 3, 0]
        assert c8.I == 0x400

    def test_store_increments_index_with_quirk(self, make_c8):
        c8 = make_c8(0xA400, 0xF255, increment_i=True)
        run(c8, 2)
        assert c8.I == 0x403


class TestTimers:
    def test_timer_registers(self, make_c8):
        c8 = make_c8(0x6003, 0xF015, 0xF018, 0xF207)
        run(c8, 3)
        assert c8.delay_register == 3
        assert c8.sound_register == 3
        c8.tick_timers()
        c8.step()
        assert c8.V[2] == 2
        assert c8.sound_register == 2

    def test_tick_stops_at_zero(self):
        c8 = C8Computer()
        c8.delay_register = 1
        c8.tick_timers()
        c8.tick_timers()
        assert c8.delay_register == 0
        assert c8.sound_register == 0
