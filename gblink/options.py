"""Linker options: command-line and link-file directives, bases and globals."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable

from .symbols import AreaSection, SymbolTable, symbols_equal

#: Area base addresses set before any user directive.
DEFAULT_BASES = (
    "_CODE=0x0200",
    "_DATA=0xC0A0",
)

#: Global symbol values set before any user directive.  OAM DMA transfers
#: must start at a multiple of 0x100.
DEFAULT_GLOBALS = (
    ".OAM=0xC000",
    ".STACK=0xE000",
    ".refresh_OAM=0xFF80",
    ".init=0x0000",
)

#: Longest cartridge name stored in the image header.
CART_NAME_LENGTH = 16

_IDENT_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_.$"
)
_BLANKS = " \t"
_PREFIXES = {"x": 16, "h": 16, "o": 8, "q": 8, "d": 10, "b": 2}


class OptionError(Exception):
    """Raised for an invalid linker option or a malformed assignment."""


class OutputFormat(IntEnum):
    """Format of the linked output file."""

    NONE = 0
    IHX = 1
    S19 = 2
    BINARY = 3


class MapRadix(IntEnum):
    """Radix used for values in the map file and in warnings."""

    HEX = 16
    OCTAL = 8
    DECIMAL = 10


@dataclass
class LinkOptions:
    """Everything the link directives set.

    ``files`` holds the file names in the order given; the first names the
    output, the rest are the relocatable inputs.  ``patches`` holds
    (address, value) pairs, the most recently given first.
    """

    output_format: OutputFormat = OutputFormat.NONE
    map_output: int = 0
    symbol_output: int = 0
    listing: bool = False
    radix: MapRadix = MapRadix.HEX
    echo: bool = True
    rom_banks: int = 2
    ram_banks: int = 0
    mbc_type: int = 0
    cart_name: str = ""
    patches: list[tuple[int, int]] = field(default_factory=list)
    base_defs: list[str] = field(default_factory=lambda: list(DEFAULT_BASES))
    global_defs: list[str] = field(default_factory=lambda: list(DEFAULT_GLOBALS))
    library_paths: list[str] = field(default_factory=list)
    libraries: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)

    @property
    def output_name(self) -> str | None:
        """The name the output files are derived from, if any file was given."""
        return self.files[0] if self.files else None

    @property
    def inputs(self) -> list[str]:
        """The relocatable input files."""
        return self.files[1:]


class _Cursor:
    """Character reader over one directive line."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def get(self) -> str:
        if self.pos >= len(self.text):
            return ""
        char = self.text[self.pos]
        self.pos += 1
        return char

    def getnb(self) -> str:
        char = self.get()
        while char and char in _BLANKS:
            char = self.get()
        return char

    def unget(self, char: str) -> None:
        if char:
            self.pos -= 1

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def rest(self) -> str:
        return self.text[self.pos:]


def _digit_value(char: str) -> int:
    return int(char, 36) if char.isalnum() else 99


def _number(cursor: _Cursor, first: str) -> int:
    base = 10
    digits = ""
    if first == "0" and cursor.peek().lower() in _PREFIXES:
        base = _PREFIXES[cursor.get().lower()]
    else:
        digits = first
    while True:
        char = cursor.peek()
        if not char or _digit_value(char) >= base:
            break
        digits += cursor.get()
    if not digits:
        raise OptionError("Missing digits in number")
    return int(digits, base)


def _term(cursor: _Cursor) -> int:
    char = cursor.getnb()
    if char == "-":
        return -_term(cursor)
    if char == "+":
        return _term(cursor)
    if not char.isdigit():
        raise OptionError("Missing expression")
    return _number(cursor, char)


def _expr(cursor: _Cursor) -> int:
    total = _term(cursor)
    while True:
        char = cursor.getnb()
        if char == "+":
            total += _term(cursor)
        elif char == "-":
            total -= _term(cursor)
        else:
            cursor.unget(char)
            return total


def _identifier(cursor: _Cursor) -> str:
    char = cursor.getnb()
    name = ""
    while char and char in _IDENT_CHARS:
        name += char
        char = cursor.get()
    cursor.unget(char)
    if not name:
        raise OptionError("Missing identifier")
    return name


def _cart_name(cursor: _Cursor) -> str:
    if cursor.getnb() != "=" or cursor.getnb() != '"':
        raise OptionError('Syntax error in -YN="name" flag')
    name = ""
    while True:
        char = cursor.get()
        if not char:
            raise OptionError('Syntax error in -YN="name" flag')
        if char == '"':
            return name[:CART_NAME_LENGTH]
        name += char


def _bank_option(cursor: _Cursor, options: LinkOptions) -> None:
    kind = cursor.get().lower()
    if kind == "o":
        options.rom_banks = _expr(cursor)
    elif kind == "a":
        options.ram_banks = _expr(cursor)
    elif kind == "t":
        options.mbc_type = _expr(cursor)
    elif kind == "n":
        options.cart_name = _cart_name(cursor)
    elif kind == "p":
        address = _expr(cursor)
        if cursor.getnb() != "=":
            raise OptionError("Syntax error in -YHaddr=val flag")
        options.patches.insert(0, (address, _expr(cursor)))
    else:
        raise OptionError("Invalid option")


_SIMPLE_FLAGS = {
    "i": lambda o: setattr(o, "output_format", OutputFormat.IHX),
    "s": lambda o: setattr(o, "output_format", OutputFormat.S19),
    "z": lambda o: setattr(o, "output_format", OutputFormat.BINARY),
    "j": lambda o: setattr(o, "symbol_output", o.symbol_output + 1),
    "m": lambda o: setattr(o, "map_output", o.map_output + 1),
    "u": lambda o: setattr(o, "listing", True),
    "x": lambda o: setattr(o, "radix", MapRadix.HEX),
    "q": lambda o: setattr(o, "radix", MapRadix.OCTAL),
    "d": lambda o: setattr(o, "radix", MapRadix.DECIMAL),
    "n": lambda o: setattr(o, "echo", False),
    "p": lambda o: setattr(o, "echo", True),
}

_REST_OF_LINE = {
    "b": "base_defs",
    "g": "global_defs",
    "k": "library_paths",
    "l": "libraries",
}


def _is_illegal(char: str) -> bool:
    return ord(char) < 0x20 or ord(char) == 0x7F


def parse_line(line: str, options: LinkOptions) -> bool:
    """Apply one line of linker directives to ``options``.

    Returns True when the line ends the input: an empty line or ``-e``.
    Options ``-b``, ``-g``, ``-k`` and ``-l`` take the rest of the line.
    """
    line = line.rstrip("\r\n")
    if not line:
        return True
    cursor = _Cursor(line)
    while char := cursor.getnb():
        if char == "-":
            while (char := cursor.get()) and char.isalpha():
                letter = char.lower()
                if letter in _SIMPLE_FLAGS:
                    _SIMPLE_FLAGS[letter](options)
                elif letter == "y":
                    _bank_option(cursor, options)
                elif letter == "e":
                    return True
                elif letter in _REST_OF_LINE:
                    cursor.unget(cursor.getnb())
                    getattr(options, _REST_OF_LINE[letter]).append(cursor.rest())
                    return False
                else:
                    raise OptionError("Invalid option")
        elif not _is_illegal(char):
            name = char
            while (char := cursor.get()) and char not in _BLANKS and not _is_illegal(char):
                name += char
            cursor.unget(char)
            options.files.append(name)
        else:
            raise OptionError("Invalid input")
    return False


def parse_assignment(text: str) -> tuple[str, int]:
    """Split ``name=expression`` into the name and the value of the expression."""
    cursor = _Cursor(text)
    name = _identifier(cursor)
    if cursor.getnb() != "=":
        raise OptionError(f"No '=' in expression: {text}")
    return name, _expr(cursor)


def output_path(name: str, extension: str) -> str:
    """Build a file name from ``name`` up to its first dot and ``extension``.

    With an empty extension the one in ``name`` is kept, or ``rel`` when
    ``name`` has none.
    """
    stem, dot, tail = name.partition(".")
    if not extension:
        extension = tail if dot else "rel"
    return f"{stem}.{extension}"


def _apply(definitions: Iterable[str], assign) -> None:
    problems = []
    for text in definitions:
        try:
            name, value = parse_assignment(text)
        except OptionError as exc:
            problems.append(str(exc))
            continue
        assign(name, value)
    if problems:
        raise OptionError("; ".join(problems))


def apply_bases(options: LinkOptions, sections: Iterable[AreaSection]) -> None:
    """Set the base address of every area named in ``options.base_defs``.

    Names of areas that do not exist are ignored.  Every malformed
    definition is reported together in one OptionError once the valid ones
    have been applied.
    """
    sections = list(sections)

    def assign(name: str, value: int) -> None:
        for section in sections:
            if symbols_equal(name, section.name):
                section.address = value
                return

    _apply(options.base_defs, assign)


def apply_globals(options: LinkOptions, symbols: SymbolTable) -> None:
    """Define every symbol named in ``options.global_defs`` with its value.

    Only symbols already in the table are set; others are ignored.
    Malformed definitions are reported as in apply_bases.
    """

    def assign(name: str, value: int) -> None:
        symbol = symbols.lookup(name, False)
        if symbol is not None:
            symbol.address = value
            symbol.defined = True

    _apply(options.global_defs, assign)