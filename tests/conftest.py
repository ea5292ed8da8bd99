import pytest

import chip8


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_machine(clock):
    """Build a machine from a list of 16-bit opcodes with a fake clock and rng."""

    def factory(*opcodes, rng=lambda: 0xAB):
        rom = b"".join(op.to_bytes(2, "big") for op in opcodes)
        return chip8.Machine(rom, rng=rng, clock=clock)

    return factory


@pytest.fixture
def machine(make_machine):
    return make_machine()
