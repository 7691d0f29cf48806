import pytest

from chip8 import C8Computer

from helpers import assemble


@pytest.fixture
def make_c8():
    """Build a C8Computer with the given opcodes loaded at 0x200."""

    def _make(*opcodes, **kwargs):
        c8 = C8Computer(**kwargs)
        c8.load(assemble(*opcodes))
        return c8

    return _make
