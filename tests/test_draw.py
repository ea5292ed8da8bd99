import numpy as np

import chip8


def draw(machine, x, y, sprite, at=0x300):
    machine.memory[at:at + len(sprite)] = sprite
    machine.index = at
    machine.v[1] = x
    machine.v[2] = y
    machine.pc = 0x200
    machine.execute(0xD120 | len(sprite))
    assert machine.pc == 0x202
    assert machine.index == at


def test_draw_packs_msb_first(machine):
    draw(machine, 0, 0, [0b10100000])
    assert machine.screen[0] == 0b10100000
    assert machine.pixels()[0, :3].tolist() == [1, 0, 1]
    assert machine.v[0xF] == 0


def test_draw_twice_collides_and_clears(machine):
    sprite = [0xF0, 0x90, 0xF0]
    draw(machine, 10, 5, sprite)
    assert machine.v[0xF] == 0
    assert machine.pixels().sum() == 10

    draw(machine, 10, 5, sprite)
    assert machine.v[0xF] == 1
    assert not machine.screen.any()


def test_collision_needs_both_bits_lit(machine):
    draw(machine, 0, 0, [0xF0])
    # lit pixels under unlit sprite bits stay lit and are not collisions
    draw(machine, 4, 0, [0xF0])
    assert machine.v[0xF] == 0
    assert machine.screen[0] == 0xFF


def test_draw_wraps_horizontally(machine):
    draw(machine, 60, 0, [0xFF])
    row = machine.pixels()[0]
    assert row[60:].tolist() == [1, 1, 1, 1]
    assert row[:4].tolist() == [1, 1, 1, 1]
    assert row[4:60].sum() == 0


def test_draw_wraps_each_row_vertically(machine):
    draw(machine, 0, 31, [0x80, 0x80, 0x80])
    column = machine.pixels()[:, 0]
    assert column[31] == 1
    assert column[0] == 1
    assert column[1] == 1
    assert column[2:31].sum() == 0


def test_draw_origin_wraps(machine):
    draw(machine, 64 + 8, 32 + 1, [0x80])
    assert machine.pixels()[1, 8] == 1


def test_draw_font_glyph(machine):
    machine.v[3] = 0xA
    machine.execute(0xF329)
    assert machine.index == chip8.FONT_START + 50
    machine.v[1] = 0
    machine.v[2] = 0
    machine.execute(0xD125)
    expected = np.unpackbits(np.array([0xF0, 0x90, 0xF0, 0x90, 0x90], dtype=np.uint8))
    assert machine.pixels()[:5, :8].ravel().tolist() == expected.tolist()


def test_screen_is_a_read_only_view_of_memory(machine):
    machine.memory[chip8.DISPLAY_START + 3] = 0x55
    screen = machine.screen
    assert len(screen) == chip8.DISPLAY_SIZE
    assert screen[3] == 0x55
    assert not screen.flags.writeable
    assert np.shares_memory(screen, machine.memory)
