"""Colour palette values and register bit flags of the handheld's hardware."""

from __future__ import annotations

from enum import IntFlag

_COMPONENT_MASK = 0x1F
_MAX_COLOR = 0x7FFF


def rgb(r: int, g: int, b: int) -> int:
    """Pack three 5-bit components into a 15-bit palette entry.

    Each component is masked to its low five bits; red takes the low bits,
    then green, then blue.
    """
    return (
        ((b & _COMPONENT_MASK) << 10)
        | ((g & _COMPONENT_MASK) << 5)
        | (r & _COMPONENT_MASK)
    )


def split_rgb(value: int) -> tuple[int, int, int]:
    """Unpack a 15-bit palette entry into its (red, green, blue) components."""
    if not 0 <= value <= _MAX_COLOR:
        raise ValueError(f"palette entry out of range: {value:#x}")
    return (
        value & _COMPONENT_MASK,
        (value >> 5) & _COMPONENT_MASK,
        (value >> 10) & _COMPONENT_MASK,
    )


# Common colours based on the EGA default palette.
RGB_RED = rgb(31, 0, 0)
RGB_DARKRED = rgb(15, 0, 0)
RGB_GREEN = rgb(0, 31, 0)
RGB_DARKGREEN = rgb(0, 15, 0)
RGB_BLUE = rgb(0, 0, 31)
RGB_DARKBLUE = rgb(0, 0, 15)
RGB_YELLOW = rgb(31, 31, 0)
RGB_DARKYELLOW = rgb(21, 21, 0)
RGB_CYAN = rgb(0, 31, 31)
RGB_AQUA = rgb(28, 5, 22)
RGB_PINK = rgb(11, 0, 31)
RGB_PURPLE = rgb(21, 0, 21)
RGB_BLACK = rgb(0, 0, 0)
RGB_DARKGRAY = rgb(10, 10, 10)
RGB_LIGHTGRAY = rgb(21, 21, 21)
RGB_WHITE = rgb(31, 31, 31)

RGB_LIGHTFLESH = rgb(30, 20, 15)
RGB_BROWN = rgb(10, 10, 0)
RGB_ORANGE = rgb(30, 20, 0)
RGB_TEAL = rgb(15, 15, 0)


class Joypad(IntFlag):
    """Joypad button bits as returned by a pad read."""

    RIGHT = 0x01
    LEFT = 0x02
    UP = 0x04
    DOWN = 0x08
    A = 0x10
    B = 0x20
    SELECT = 0x40
    START = 0x80


class SpriteFlag(IntFlag):
    """Sprite property bits."""

    PALETTE = 0x10
    FLIPX = 0x20
    FLIPY = 0x40
    PRIORITY = 0x80


class InterruptFlag(IntFlag):
    """Interrupt enable and request bits."""

    VBL = 0x01
    LCD = 0x02
    TIM = 0x04
    SIO = 0x08
    JOY = 0x10


# Screen limits in pixels.
SCREEN_WIDTH = 0xA0
SCREEN_HEIGHT = 0x90
MIN_WINDOW_X = 0x07
MIN_WINDOW_Y = 0x00
MAX_WINDOW_X = 0xA6
MAX_WINDOW_Y = 0x8F