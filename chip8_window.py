# CHIP-8 host window.
# We're subclassing pyglet (that'll handle graphics, sound output, and keyboard handling)
# and overriding whatever def we need from there. The machine itself lives in chip8.py;
# this file only feeds it keys, steps it every frame and paints its display buffer.
#
# Controls: keypad on 1234/QWER/ASDF/ZXCV, P pause, F5 reload ROM, F1 logs, ESC quit.

import logging
import sys

import numpy as np
import pyglet
from pyglet.window import key
from pyglet.media import synthesis

import chip8

# ---- Configuration ----
scale = 15
width, height = chip8.width, chip8.height
window_width, window_height = width * scale, height * scale
frame_HZ = 60
ticks_per_frame = 15   # machine steps per frame
on_color = (0x2A, 0x9F, 0xD6)
off_color = (0x0B, 0x26, 0x33)

#map binding keys
keymap = {
    key._1: 0x1, key._2: 0x2, key._3: 0x3, key._4: 0xC,
    key.Q: 0x4, key.W: 0x5, key.E: 0x6, key.R: 0xD,
    key.A: 0x7, key.S: 0x8, key.D: 0x9, key.F: 0xE,
    key.Z: 0xA, key.X: 0x0, key.C: 0xB, key.V: 0xF,
}


def load_rom(path):
    chip8.log("Loading ROM:", path)
    with open(path, "rb") as f:
        return f.read()


class Chip8Window(pyglet.window.Window):

    def __init__(self, rom, speed=ticks_per_frame):
        super().__init__(window_width, window_height, caption="CHIP-8 Emulator", resizable=False)
        self.rom = rom
        self.speed = speed
        self.paused = False
        self.sound_playing = False

        # Pre-allocated small framebuffer (64x32 RGBA). We'll upscale on CPU using numpy.repeat
        self._small_framebuf = np.zeros((height, width, 4), dtype=np.uint8)
        self._small_framebuf[..., 3] = 255
        self._palette = np.array([off_color, on_color], dtype=np.uint8)
        self.image = pyglet.image.ImageData(
            window_width,
            window_height,
            'RGBA',
            bytes(window_width * window_height * 4)
        )

        self.reload()
        pyglet.clock.schedule_interval(self._frame, 1.0 / frame_HZ)

    def reload(self):
        self.machine = chip8.Machine(self.rom)
        self.paused = False
        self._update_caption()

    def _update_caption(self):
        if self.machine.halted:
            state = "Halted"
        elif self.paused:
            state = "Paused"
        else:
            state = "Running"
        self.set_caption(f"CHIP-8 Emulator - {state}")

    # ---- Frame: run the CPU, then the beep ----
    def _frame(self, dt):
        if self.paused or self.machine.halted:
            return
        try:
            for _ in range(self.speed):
                self.machine.step()
                if self.machine.halted:
                    break
        except chip8.Chip8Error as e:
            chip8.logger.error("Emulation error: %s", e)
            self.machine.halted = True

        if self.machine.halted:
            self._update_caption()

        if self.machine.sounding:
            if not self.sound_playing:
                self._play_beep()
        else:
            self.sound_playing = False

    def _play_beep(self, frequency=440, duration=0.2):
        wave = synthesis.Sine(duration=duration, frequency=frequency, sample_rate=44100)

        player = pyglet.media.Player()
        player.queue(wave)
        player.play()
        self.sound_playing = True

        def on_eos():
            player.delete()

        player.on_eos = on_eos

    # ---- Input ----
    def on_key_press(self, symbol, modifiers):
        #@Override
        if symbol == key.ESCAPE:
            self.close()
        elif symbol == key.P and not self.machine.halted:
            self.paused = not self.paused
            self._update_caption()
        elif symbol == key.F5:
            self.reload()
        elif symbol == key.F1:
            chip8.logs_on = not chip8.logs_on
            chip8.logger.info("logs_on: %s", chip8.logs_on)
        elif symbol in keymap:
            self.machine.key_down(keymap[symbol])

    def on_key_release(self, symbol, modifiers):
        #@Override
        if symbol in keymap:
            self.machine.key_up(keymap[symbol])

    # ---- Drawing ----
    def on_draw(self):
        self.clear()

        # pyglet draws bottom-up, the machine's row 0 is the top of the screen
        self._small_framebuf[..., :3] = self._palette[self.machine.pixels()[::-1]]
        scaled = np.repeat(np.repeat(self._small_framebuf, scale, axis=0), scale, axis=1)

        #updates existing image without creating new object
        self.image.set_data('RGBA', window_width * 4, scaled.tobytes())
        self.image.blit(0, 0)


# ---- Entry point ----
def main():
    if len(sys.argv) < 2:
        print("Usage: chip8 <rom-file> [ticks-per-frame]")
        sys.exit(1)
    speed = int(sys.argv[2]) if len(sys.argv) > 2 else ticks_per_frame

    logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    try:
        rom = load_rom(sys.argv[1])
        Chip8Window(rom, speed)
    except (OSError, chip8.Chip8Error) as e:
        print("Could not start:", e)
        sys.exit(1)
    pyglet.app.run()


if __name__ == "__main__":
    main()
