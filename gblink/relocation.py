"""Relocation of text lines using the R and P lines of relocatable object files."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, Mapping, Protocol, Sequence, TextIO

from .symbols import NAME_LENGTH, AreaSection, Symbol

#: Relocation values are unsigned 32-bit address quantities.
ADDRESS_MASK = 0xFFFFFFFF
#: Most values a single T line may hold.
TEXT_LIMIT = 16

_ERROR_MESSAGES = (
    "Unsigned Byte error",
    "Byte PCR relocation error",
    "Page0 relocation error",
    "Page Mode relocation error",
)


class RelocMode(IntFlag):
    """Relocation mode bits of an R or P line entry.

    A clear BYTE bit means word relocation, a clear SYM bit an area reference.
    """

    BYTE = 0x01
    SYM = 0x02
    PCR = 0x04
    BYT2 = 0x08
    USGN = 0x10
    PAG0 = 0x20
    PAG = 0x40
    MSB = 0x80


class LinkError(Exception):
    """Raised when relocation input refers to something that does not exist."""


class _ModuleLike(Protocol):
    name: str
    file_name: str
    sections: Sequence[AreaSection]
    symbols: Sequence[Symbol | None]


@dataclass
class TextLine:
    """The values of one T line, with a flag per value telling whether it is output."""

    values: list[int]
    flags: list[bool] = field(default_factory=list)
    hilo: bool = False

    def __post_init__(self) -> None:
        self.values = [value & ADDRESS_MASK for value in self.values]
        if not self.flags:
            self.flags = [True] * len(self.values)
        if len(self.flags) != len(self.values):
            raise ValueError("values and flags must have the same length")

    def _check(self, index: int, width: int) -> None:
        if index < 0 or index + width > len(self.values):
            raise LinkError(f"relocation index {index} outside the text line")

    def add_byte(self, value: int, index: int) -> int:
        """Add ``value`` to the byte at ``index`` and return the new value."""
        self._check(index, 1)
        self.values[index] = (self.values[index] + value) & ADDRESS_MASK
        return self.values[index]

    def add_word(self, value: int, index: int) -> int:
        """Add ``value`` to the word at ``index`` and return the full sum."""
        self._check(index, 2)
        first, second = self.values[index], self.values[index + 1]
        if self.hilo:
            total = (value + (first << 8) + (second & 0xFF)) & ADDRESS_MASK
            self.values[index] = (total >> 8) & 0xFF
            self.values[index + 1] = total & 0xFF
        else:
            total = (value + (first & 0xFF) + (second << 8)) & ADDRESS_MASK
            self.values[index] = total & 0xFF
            self.values[index + 1] = (total >> 8) & 0xFF
        return total

    def add_byte_lo(self, value: int, index: int) -> int:
        """Relocate a word but output only its low byte."""
        total = self.add_word(value, index)
        self.flags[index if self.hilo else index + 1] = False
        return total

    def add_byte_hi(self, value: int, index: int) -> int:
        """Relocate a word but output only its high byte."""
        total = self.add_word(value, index)
        self.flags[index + 1 if self.hilo else index] = False
        return total

    def add_word_lo(self, value: int, index: int) -> int:
        """Relocate a word and clear its high byte."""
        total = self.add_word(value, index)
        self.values[index if self.hilo else index + 1] = 0
        return total

    def add_word_hi(self, value: int, index: int) -> int:
        """Relocate a word, move its high byte into the low byte and clear the high byte."""
        total = self.add_word(value, index)
        if self.hilo:
            self.values[index + 1] = self.values[index]
            self.values[index] = 0
        else:
            self.values[index] = self.values[index + 1]
            self.values[index + 1] = 0
        return total

    def emitted(self) -> list[int]:
        """Return the bytes that are output, in order."""
        return [value & 0xFF for value, flag in zip(self.values, self.flags) if flag]


def format_value(value: int, radix: int) -> str:
    """Format an address in the map radix: 16, 8 or 10."""
    value &= ADDRESS_MASK
    if radix == 16:
        return f"{value:04X}"
    if radix == 8:
        return f"{value:06o}"
    if radix == 10:
        return f"{value:05d}"
    raise ValueError(f"unsupported radix: {radix}")


class _Reader:
    def __init__(self, values: Sequence[int]) -> None:
        self._values = list(values)
        self._position = 0

    def more(self) -> bool:
        return self._position < len(self._values)

    def byte(self) -> int:
        if not self.more():
            return 0
        value = self._values[self._position]
        self._position += 1
        return value & ADDRESS_MASK

    def word(self, hilo: bool) -> int:
        first = self.byte()
        second = self.byte()
        if hilo:
            return ((first << 8) + second) & ADDRESS_MASK
        return (first + (second << 8)) & ADDRESS_MASK


@dataclass
class _Failure:
    mode: int
    base: int
    rindex: int
    value: int


def _field(text: str) -> str:
    return f"{text[:8]:<8}"


class Relocator:
    """Combines T lines with the R and P lines that follow them.

    ``areas`` maps a section to the whole area it belongs to (a section is
    its own area when missing); ``owners`` maps a section to the module
    that defines it, used in warnings.  Relocation warnings go to
    ``errors`` and, when set, ``map_file``; ``warnings`` counts them.
    """

    def __init__(
        self,
        hilo: bool = False,
        radix: int = 16,
        errors: TextIO | None = None,
        map_file: TextIO | None = None,
        output: Any = None,
        areas: Mapping[AreaSection, AreaSection] | None = None,
        owners: Mapping[AreaSection, Any] | None = None,
    ) -> None:
        self.hilo = hilo
        self.radix = radix
        self.errors = errors if errors is not None else sys.stderr
        self.map_file = map_file
        self.output = output
        self.areas: Mapping[AreaSection, AreaSection] = areas if areas is not None else {}
        self.owners: Mapping[AreaSection, Any] = owners if owners is not None else {}
        self.line: TextLine | None = None
        self.page_section: AreaSection | None = None
        self.page_address = 0
        self.rom_bank = 0
        self.warnings = 0

    # -- helpers -----------------------------------------------------------

    def _area(self, section: AreaSection) -> AreaSection:
        return self.areas.get(section, section)

    def _owner(self, section: AreaSection | None, module: Any) -> Any:
        if section is None:
            return None
        if any(entry is section for entry in module.sections):
            return module
        return self.owners.get(section)

    def _streams(self) -> list[TextIO]:
        return [self.errors] + ([self.map_file] if self.map_file is not None else [])

    def _warn(self, message: str) -> None:
        self.errors.write(message + "\n")
        self.warnings += 1

    def _require_line(self) -> TextLine:
        if self.line is None:
            raise LinkError("relocation without a preceding T line")
        return self.line

    @staticmethod
    def _bank_of(name: str) -> int:
        _, sep, tail = name.rpartition("_")
        if not sep or not tail[:1].isdigit():
            return 0
        digits = ""
        for char in tail:
            if not char.isdigit():
                break
            digits += char
        return int(digits)

    # -- T lines -------------------------------------------------------------

    def text(self, values: Sequence[int]) -> TextLine:
        """Start a new text line from the values of a T line."""
        kept = list(values)[:TEXT_LIMIT]
        self.line = TextLine(kept, [True] * len(kept), self.hilo)
        return self.line

    # -- R lines -------------------------------------------------------------

    def _reference(self, module: _ModuleLike, mode: int, rindex: int, kind: str) -> int:
        if mode & RelocMode.SYM:
            if rindex >= len(module.symbols) or module.symbols[rindex] is None:
                raise LinkError(f"{kind} symbol error")
            return module.symbols[rindex].value()
        if rindex >= len(module.sections):
            raise LinkError(f"{kind} area error")
        return module.sections[rindex].address

    def relocate(self, module: _ModuleLike, values: Sequence[int]) -> TextLine:
        """Apply an R line to the current text line and write it to the output."""
        line = self._require_line()
        line.hilo = self.hilo
        reader = _Reader(values)
        if reader.byte() != 0 or reader.byte():
            self._warn("R input error")
        aindex = reader.word(self.hilo)
        if aindex >= len(module.sections):
            raise LinkError("R area error")
        section = module.sections[aindex]

        rtbase = line.add_word(0, 0)
        rtofst = 2
        pc = line.add_word(section.address, 0)
        self.rom_bank = self._bank_of(self._area(section).name)

        paga = pags = 0
        while reader.more():
            error = 0
            mode = reader.byte()
            rtp = reader.byte()
            rindex = reader.word(self.hilo)
            reli = self._reference(module, mode, rindex, "R")

            if mode & RelocMode.PCR:
                step = 1 if mode & RelocMode.BYTE else 2
                reli -= pc + (rtp - rtofst) + step
            if mode & (RelocMode.PAG0 | RelocMode.PAG):
                if self.page_section is None:
                    raise LinkError("Page relocation without a page definition")
                paga = self._area(self.page_section).address
                pags = self.page_address
                reli -= paga + pags
            reli &= ADDRESS_MASK

            if mode & RelocMode.BYTE:
                if mode & RelocMode.BYT2:
                    adjust = line.add_byte_hi if mode & RelocMode.MSB else line.add_byte_lo
                    relv = adjust(reli, rtp)
                else:
                    relv = line.add_byte(reli, rtp)
            elif mode & RelocMode.BYT2:
                adjust = line.add_word_hi if mode & RelocMode.MSB else line.add_word_lo
                relv = adjust(reli, rtp)
            else:
                relv = line.add_word(reli, rtp)

            if mode & RelocMode.BYTE and mode & RelocMode.BYT2:
                rtofst += 1

            if mode & RelocMode.USGN and mode & RelocMode.BYTE and relv & ~0xFF:
                error = 1
            if mode & RelocMode.PCR and mode & RelocMode.BYTE:
                high = relv & ~0x7F & ADDRESS_MASK
                if high not in (~0x7F & ADDRESS_MASK, 0):
                    error = 2
            if mode & RelocMode.PAG0 and (relv & ~0xFF or paga or pags):
                error = 3
            if mode & RelocMode.PAG and relv & ~0xFF:
                error = 4

            if error:
                failure = _Failure(
                    mode=mode,
                    base=(rtbase + rtp - rtofst - 1) & ADDRESS_MASK,
                    rindex=rindex,
                    value=(relv - reli) & ADDRESS_MASK,
                )
                for stream in self._streams():
                    self._dump(stream, module, aindex, failure, _ERROR_MESSAGES[error - 1])

        if self.output is not None:
            self.output.write_text([value & 0xFF for value in line.values], line.flags, line.hilo)
        return line

    def _dump(
        self, out: TextIO, module: _ModuleLike, aindex: int, failure: _Failure, message: str
    ) -> None:
        self.warnings += 1
        out.write(f"\n?ASlink-Warning-{message}")
        symbol = None
        if failure.mode & RelocMode.SYM:
            symbol = module.symbols[failure.rindex]
            out.write(f" for symbol  {symbol.name[:NAME_LENGTH]}\n")
            defining = symbol.section
        else:
            out.write("\n")
            defining = module.sections[failure.rindex]
        out.write("         file        module      area        offset\n")
        area = self._area(module.sections[aindex])
        out.write(
            f"  Refby  {_field(module.file_name)}    {_field(module.name)}    "
            f"{_field(area.name)}    {format_value(failure.base, self.radix)}\n"
        )
        owner = self._owner(defining, module)
        owner_file = owner.file_name if owner is not None else ""
        owner_name = owner.name if owner is not None else ""
        area_name = self._area(defining).name if defining is not None else ""
        shown = symbol.address if symbol is not None else failure.value
        out.write(
            f"  Defin  {_field(owner_file)}    {_field(owner_name)}    "
            f"{_field(area_name)}    {format_value(shown, self.radix)}\n"
        )

    # -- P lines -------------------------------------------------------------

    def page(self, module: _ModuleLike, values: Sequence[int]) -> None:
        """Apply a P line: set the base page and check its alignment."""
        line = self._require_line()
        line.hilo = self.hilo
        reader = _Reader(values)
        if reader.byte() != 0 or reader.byte():
            self._warn("P input error")
        aindex = reader.word(self.hilo)
        if aindex >= len(module.sections):
            raise LinkError("P area error")

        while reader.more():
            mode = reader.byte()
            rtp = reader.byte()
            rindex = reader.word(self.hilo)
            line.add_word(self._reference(module, mode, rindex, "P"), rtp)

        aindex = line.add_word(0, 2)
        if aindex >= len(module.sections):
            raise LinkError("P area error")
        self.page_section = module.sections[aindex]
        area = self._area(self.page_section)
        self.page_address = line.add_word(0, 4)
        if area.address & 0xFF or self.page_address & 0xFF:
            owner = self._owner(self.page_section, module)
            for stream in self._streams():
                self.warnings += 1
                stream.write("\n?ASlink-Warning-Page Definition Boundary Error\n")
                stream.write("         file        module      pgarea      pgoffset\n")
                stream.write(
                    f"  PgDef  {_field(owner.file_name if owner else '')}    "
                    f"{_field(owner.name if owner else '')}    {_field(area.name)}    "
                    f"{format_value(area.address + self.page_address, self.radix)}\n"
                )