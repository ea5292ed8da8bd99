# CHIP-8 Virtual Machine core:
# Input - 16-key keypad state, set and cleared by the host between steps.
# Output - 64x32 monochrome display packed 1 bit per pixel into memory at 0xF00, plus a sound timer.
# CPU - CowGods CHIP8 Technical reference http://devernay.free.fr/hacks/chip8/C8TECH10.HTM#0.0
# Memory - 4096 bytes holding the font (0x50), the ROM (0x200) and the display buffer (0xF00).
#----------------------------------------------------------------------------------------------
# The host calls step() once per interval. Each step either resolves a pending key wait or
# decays the timers and runs exactly one instruction. No window, sound or file handling lives
# here, see chip8_window.py for that.

import logging
import random
import time
from collections import namedtuple

import numpy as np

logger = logging.getLogger("chip8")

# ---- Configuration ----
MEMORY_SIZE = 4096
PROGRAM_START = 0x200
MAX_ROM_SIZE = MEMORY_SIZE - PROGRAM_START
FONT_START = 0x50
DISPLAY_START = 0xF00
DISPLAY_SIZE = 256
width, height = 64, 32
STACK_SIZE = 16
KEY_COUNT = 16
VF = 0xF
timer_HZ = 60
TIMER_PERIOD = 1.0 / timer_HZ

#make it true if you want the per-instruction logs
logs_on = False


def log(*args):
    if logs_on:
        logger.debug(" ".join(str(a) for a in args))


# set fonts (binary pixel patterns)
fontset = [
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
    0xF0, 0x80, 0xF0, 0x80, 0x80   # F
] #notice 80 bytes


class Chip8Error(Exception):
    pass


class RomTooLargeError(Chip8Error):
    pass


class StackOverflowError(Chip8Error):
    pass


class StackUnderflowError(Chip8Error):
    pass


# One decoded 16-bit instruction. family is the top nibble and picks the handler.
Instruction = namedtuple("Instruction", "opcode family x y n nn nnn")


def decode(opcode):
    return Instruction(
        opcode=opcode,
        family=(opcode >> 12) & 0xF,
        x=(opcode >> 8) & 0xF,
        y=(opcode >> 4) & 0xF,
        n=opcode & 0xF,
        nn=opcode & 0xFF,
        nnn=opcode & 0x0FFF,
    )


# Run states. A machine is either RUNNING or blocked in AwaitingKey until a key is held.
RUNNING = "running"
AwaitingKey = namedtuple("AwaitingKey", "target")


class Machine:
    """The whole CHIP-8 system: memory, registers, timers, display and keypad.

    ``rom`` is the raw program image copied to 0x200. ``rng`` returns a random
    byte in [0, 255] and ``clock`` returns seconds as a float; both default to
    the real thing and are injected by tests.
    """

    def __init__(self, rom=b"", rng=None, clock=None):
        rom = bytes(rom)
        if len(rom) > MAX_ROM_SIZE:
            raise RomTooLargeError(
                "ROM is %d bytes, at most %d fit at 0x%03X" % (len(rom), MAX_ROM_SIZE, PROGRAM_START))

        self.rng = rng if rng is not None else (lambda: random.getrandbits(8))
        self.clock = clock if clock is not None else time.monotonic

        # ---- CPU state ----
        self.memory = np.zeros(MEMORY_SIZE, dtype=np.uint8)
        self.v = np.zeros(16, dtype=np.uint8)       # V0..VF, VF doubles as carry/borrow/collision
        self.index = 0                              # I register (memory pointer)
        self.pc = PROGRAM_START
        self.stack = np.zeros(STACK_SIZE, dtype=np.uint16)
        self.sp = 0
        self.delay_timer = 0
        self.sound_timer = 0
        self.keys = np.zeros(KEY_COUNT, dtype=bool)
        self.state = RUNNING
        self.halted = False
        self.last_decay = self.clock()

        # Load fontset and ROM into memory
        self.memory[FONT_START:FONT_START + len(fontset)] = fontset
        self.memory[PROGRAM_START:PROGRAM_START + len(rom)] = np.frombuffer(rom, dtype=np.uint8)

        # Prepare opcode function map
        self.setup_funcmap()

    # ---- Host interface ----
    @property
    def screen(self):
        """Read-only view of the packed 64x32 display buffer (256 bytes, MSB = leftmost pixel)."""
        view = self.memory[DISPLAY_START:DISPLAY_START + DISPLAY_SIZE]
        view.flags.writeable = False
        return view

    def pixels(self):
        # 32 rows of 64 pixels, 0 or 1
        return np.unpackbits(self.memory[DISPLAY_START:]).reshape(height, width)

    @property
    def waiting(self):
        return isinstance(self.state, AwaitingKey)

    @property
    def sounding(self):
        return self.sound_timer > 0

    def key_down(self, key):
        self.keys[self._key_index(key)] = True

    def key_up(self, key):
        self.keys[self._key_index(key)] = False

    @staticmethod
    def _key_index(key):
        if not 0 <= key < KEY_COUNT:
            raise IndexError("No such key: %r" % (key,))
        return key

    # ---- Cycle ----
    def step(self):
        if self.halted:
            return

        if self.waiting:
            pressed = np.flatnonzero(self.keys)
            if pressed.size == 0:
                return
            key = int(pressed[0])
            self.v[self.state.target] = key
            log(f"Key {key:X} pressed, stored in V{self.state.target:X}")
            self.state = RUNNING
            self.pc = (self.pc + 2) & 0xFFF

        self._decay_timers()

        # Fetch opcode (big-endian, addresses wrap at the end of memory)
        opcode = (int(self.memory[self.pc]) << 8) | int(self.memory[(self.pc + 1) & 0xFFF])
        self.execute(opcode)

    def _decay_timers(self):
        if not (self.delay_timer or self.sound_timer):
            return
        now = self.clock()
        if now - self.last_decay >= TIMER_PERIOD:
            if self.delay_timer > 0:
                self.delay_timer -= 1
            if self.sound_timer > 0:
                self.sound_timer -= 1
                if self.sound_timer == 0:
                    log("Sound stops")
            self.last_decay = now

    def execute(self, opcode):
        ins = decode(opcode)
        log(f"{self.pc:03X}: {opcode:04X}")
        self.funcmap[ins.family](ins)

    # ---- Opcode function map ----
    def setup_funcmap(self):
        self.funcmap = {
            0x0: self._0xxx,  # 00E0 / 00EE - Clear the screen / return from a subroutine
            0x1: self._1nnn,  # 1nnn - Jump to a specific memory address
            0x2: self._2nnn,  # 2nnn - Call a function (subroutine) at a memory address
            0x3: self._3xkk,  # 3xkk - Skip next instruction if a register equals a specific number
            0x4: self._4xkk,  # 4xkk - Skip next instruction if a register does NOT equal a number
            0x5: self._5xy0,  # 5xy0 - Skip next instruction if two registers are equal
            0x6: self._6xkk,  # 6xkk - Set a register to a specific number
            0x7: self._7xkk,  # 7xkk - Add a number to a register
            0x8: self._8xxx,  # 8xy0..8xyE - Math and logic operations between two registers
            0x9: self._9xy0,  # 9xy0 - Skip next instruction if two registers are NOT equal
            0xA: self._Annn,  # Annn - Set the memory pointer (I) to a specific address
            0xB: self._Bnnn,  # Bnnn - Jump to an address plus the value of register V0
            0xC: self._Cxkk,  # Cxkk - Set a register to a random number ANDed with a value
            0xD: self._Dxyn,  # Dxyn - Draw a sprite on the screen at VX,VY
            0xE: self._Exxx,  # Ex9E / ExA1 - Skip next instruction if a key is pressed or not pressed
            0xF: self._Fxxx,  # Fx07..Fx65 - timers, memory storage, and waiting for keys
        }

    def _unknown(self, ins):
        logger.warning("Unknown opcode: %04X at %03X", ins.opcode, self.pc)
        self.pc = (self.pc + 2) & 0xFFF

    def _next(self):
        self.pc = (self.pc + 2) & 0xFFF

    def _skip_if(self, condition):
        if condition:
            self.pc = (self.pc + 2) & 0xFFF
        self.pc = (self.pc + 2) & 0xFFF

    # ---- Opcode Handlers ----

    # 00E0 / 00EE - Clear Screen / Return from subroutine. 0nnn SYS calls are not supported.
    def _0xxx(self, ins):
        if ins.opcode == 0x00E0:
            self.memory[DISPLAY_START:DISPLAY_START + DISPLAY_SIZE] = 0
            log("Clear the display (all pixels turned off)")
        elif ins.opcode == 0x00EE:
            if self.sp == 0:
                raise StackUnderflowError("Return with an empty stack at 0x%03X" % self.pc)
            self.sp -= 1
            self.pc = int(self.stack[self.sp])
            log("Return to", hex(self.pc + 2))
        else:
            return self._unknown(ins)
        self._next()

    # 1nnn - Jump to address NNN. Jumping to itself is a dead loop, so the machine halts.
    def _1nnn(self, ins):
        if ins.nnn == self.pc:
            self.halted = True
            logger.info("Processor halted at 0x%03X", self.pc)
        self.pc = ins.nnn
        log("Jump to address", hex(ins.nnn))

    # 2nnn - Call subroutine at NNN
    def _2nnn(self, ins):
        if self.sp >= STACK_SIZE:
            raise StackOverflowError("Call stack full (%d entries) at 0x%03X" % (STACK_SIZE, self.pc))
        self.stack[self.sp] = self.pc
        self.sp += 1
        self.pc = ins.nnn
        log("Call subroutine at", hex(ins.nnn))

    # 3xkk - Skip next instruction if Vx == kk
    def _3xkk(self, ins):
        self._skip_if(self.v[ins.x] == ins.nn)

    # 4xkk - Skip next instruction if Vx != kk
    def _4xkk(self, ins):
        self._skip_if(self.v[ins.x] != ins.nn)

    # 5xy0 - Skip next instruction if Vx == Vy
    def _5xy0(self, ins):
        if ins.n != 0:
            return self._unknown(ins)
        self._skip_if(self.v[ins.x] == self.v[ins.y])

    # 6xkk - Set Vx = kk
    def _6xkk(self, ins):
        self.v[ins.x] = ins.nn
        log(f"Set V{ins.x:X} = {ins.nn}")
        self._next()

    # 7xkk - Add immediate, VF untouched
    def _7xkk(self, ins):
        self.v[ins.x] = (int(self.v[ins.x]) + ins.nn) & 0xFF
        log(f"Add {ins.nn} to V{ins.x:X}: {self.v[ins.x]}")
        self._next()

    # 8xy0..8xyE
    def _8xxx(self, ins):
        x, y = ins.x, ins.y
        vx, vy = int(self.v[x]), int(self.v[y])
        sub = ins.n

        if sub == 0x0:
            result, flag = vy, None
        elif sub == 0x1:
            result, flag = vx | vy, None
        elif sub == 0x2:
            result, flag = vx & vy, None
        elif sub == 0x3:
            result, flag = vx ^ vy, None
        elif sub == 0x4:
            result = vx + vy
            flag = 1 if result > 0xFF else 0
        elif sub == 0x5:
            result = vx - vy
            flag = 1 if vx >= vy else 0
        elif sub == 0x6:
            result, flag = vx >> 1, vx & 1
        elif sub == 0x7:
            result = vy - vx
            flag = 1 if vy >= vx else 0
        elif sub == 0xE:
            result, flag = vx << 1, (vx >> 7) & 1
        else:
            return self._unknown(ins)

        # the flag is written last, so VF as a destination ends up holding the flag
        self.v[x] = result & 0xFF
        if flag is not None:
            self.v[VF] = flag
        log(f"ALU {sub:X}: V{x:X} = {self.v[x]}, VF = {self.v[VF]}")
        self._next()

    # 9xy0 - Skip next instruction if Vx != Vy
    def _9xy0(self, ins):
        if ins.n != 0:
            return self._unknown(ins)
        self._skip_if(self.v[ins.x] != self.v[ins.y])

    # Annn - Set I = NNN
    def _Annn(self, ins):
        self.index = ins.nnn
        log(f"Set I = {self.index:03X}")
        self._next()

    # Bnnn - Jump to address NNN + V0
    def _Bnnn(self, ins):
        self.pc = (ins.nnn + int(self.v[0])) & 0xFFF
        log(f"Jump to address V0 + {ins.nnn:03X} = {self.pc:03X}")

    # Cxkk - RND Vx, byte
    def _Cxkk(self, ins):
        self.v[ins.x] = (self.rng() & 0xFF) & ins.nn
        log(f"Set V{ins.x:X} = random_byte & {ins.nn} -> {self.v[ins.x]}")
        self._next()

    # Dxyn - DRW Vx, Vy, nibble
    # XOR the sprite at I onto the screen, wrapping every pixel around both edges.
    # VF = 1 only when a lit sprite bit lands on an already lit pixel.
    def _Dxyn(self, ins):
        x = int(self.v[ins.x]) % width
        y = int(self.v[ins.y]) % height
        mem = self.memory
        collision = 0
        for row in range(ins.n):
            sprite = int(mem[(self.index + row) & 0xFFF])
            if sprite == 0:
                continue
            base = DISPLAY_START + ((y + row) % height) * (width // 8)
            for bit in range(8):
                if not sprite & (0x80 >> bit):
                    continue
                px = (x + bit) % width
                addr = base + px // 8
                mask = 0x80 >> (px % 8)
                old = int(mem[addr])
                if old & mask:
                    collision = 1
                mem[addr] = old ^ mask
        self.v[VF] = collision
        log(f"Drew sprite at ({x}, {y}), collision={collision}")
        self._next()

    # Ex9E / ExA1 - SKP / SKNP
    def _Exxx(self, ins):
        key = int(self.v[ins.x]) & 0xF
        if ins.nn == 0x9E:
            self._skip_if(self.keys[key])
        elif ins.nn == 0xA1:
            self._skip_if(not self.keys[key])
        else:
            self._unknown(ins)

    # Fx07..Fx65 - timers, memory, I, and key input
    def _Fxxx(self, ins):
        x = ins.x
        kk = ins.nn
        mem = self.memory

        if kk == 0x07:
            self.v[x] = self.delay_timer
        elif kk == 0x0A:
            # LD Vx, K: block until a key is held, step() finishes the instruction
            self.state = AwaitingKey(x)
            log(f"Waiting for a key into V{x:X}")
            return
        elif kk == 0x15:
            self.delay_timer = int(self.v[x])
        elif kk == 0x18:
            self.sound_timer = int(self.v[x])
        elif kk == 0x1E:
            self.index = (self.index + int(self.v[x])) & 0xFFF
        elif kk == 0x29:
            self.index = FONT_START + (int(self.v[x]) & 0xF) * 5
        elif kk == 0x33:
            val = int(self.v[x])
            mem[self.index] = val // 100
            mem[(self.index + 1) & 0xFFF] = (val // 10) % 10
            mem[(self.index + 2) & 0xFFF] = val % 10
        elif kk == 0x55:
            for i in range(x + 1):
                mem[(self.index + i) & 0xFFF] = self.v[i]
        elif kk == 0x65:
            for i in range(x + 1):
                self.v[i] = mem[(self.index + i) & 0xFFF]
        else:
            return self._unknown(ins)
        self._next()
