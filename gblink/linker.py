"""Two-pass linker: reads relocatable object files, places areas, relocates code."""

from __future__ import annotations

import dataclasses
import sys
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Iterable, Sequence, TextIO

from .options import (
    LinkOptions,
    OptionError,
    OutputFormat,
    apply_bases,
    apply_globals,
    output_path,
    parse_assignment,
    parse_line,
)
from .relocation import LinkError, Relocator
from .s19 import S19Writer
from .symbols import AreaSection, Symbol, SymbolError, SymbolTable, symbols_equal

SDK_VERSION = "3.0.0"
TARGET = "gbz80"

#: Area flag: every module's section starts at the area base.
OVERLAY = 0x04
#: Area flag: the area is absolute and does not follow the previous one.
ABSOLUTE = 0x08

_RADIX_CODES = {"X": 16, "D": 10, "Q": 8}

_USAGE_LINES = (
    f"Distributed with SDK {SDK_VERSION}",
    f"Compile options: SDK Target {TARGET}\n",
    "Startup:",
    "  --   [Commands]              Non-interactive command line input",
    "  -c                           Command line input",
    "  -f   file[LNK]               File input",
    "  -p   Prompt and echo of file[LNK] to stdout (default)",
    "  -n   No echo of file[LNK] to stdout",
    "Usage: [-Options] outfile file [file ...]",
    "Librarys:",
    "  -k\tLibrary path specification, one per -k",
    "  -l\tLibrary file specification, one per -l",
    "Relocation:",
    "  -b   area base address = expression",
    "  -g   global symbol = expression",
    "  -yo  Number of rom banks (default: 2)",
    "  -ya  Number of ram banks (default: 0)",
    "  -yt  MBC type (default: no MBC)",
    "  -yn  Name of program (default: name of output file)",
    "  -yp# Patch one byte in the output GB file (# is: addr=byte)",
    "Map format:",
    "  -m   Map output generated as file[MAP]",
    "  -j   no$gmb symbol file generated as file[SYM]",
    "  -x   Hexidecimal (default)",
    "  -d   Decimal",
    "  -q   Octal",
    "Output:",
    "  -i   Intel Hex as file[IHX]",
    "  -s   Motorola S19 as file[S19]",
    "  -z   Gameboy image as file[GB]",
    "List:",
    "  -u\tUpdate listing file(s) with link data as file(s)[.RST]",
    "End:",
    "  -e   or null line terminates input",
    "",
)


def usage_text() -> str:
    """Return the usage summary printed for a bad command line."""
    return "\nASxxxx Linker\n\n" + "".join(f"{line}\n" for line in _USAGE_LINES)


@dataclass(eq=False)
class Module:
    """One module of an input file: its sections and its global symbol list."""

    name: str = ""
    file_name: str = ""
    area_count: int = 0
    sections: list[AreaSection] = field(default_factory=list)
    symbols: list[Symbol | None] = field(default_factory=list)


@dataclass(eq=False)
class _Area:
    area: AreaSection
    flags: int = 0
    size: int = 0
    parts: list[tuple[AreaSection, int]] = field(default_factory=list)


class Linker:
    """Links the input files named in a set of options.

    Warnings and errors are written to ``errors``; ``error_count`` holds
    their number once the link has run.
    """

    def __init__(self, options: LinkOptions, errors: TextIO | None = None) -> None:
        self.options = options
        self.errors = errors if errors is not None else sys.stderr
        self.base_defs = [
            *options.base_defs,
            *(f"_CODE_{bank}=0x4000" for bank in range(1, options.rom_banks)),
            *(f"_DATA_{bank}=0xA000" for bank in range(options.ram_banks)),
        ]
        self.symbols = SymbolTable()
        self.modules: list[Module] = []
        self.pass_number = 0
        self.radix = 10
        self.hilo = False
        self._areas: list[_Area] = []
        self._area_of: dict[AreaSection, AreaSection] = {}
        self._owner_of: dict[AreaSection, Module] = {}
        self._module: Module | None = None
        self._next_module = 0
        self._section: AreaSection | None = None
        self._file_name = ""
        self._errors = 0
        self.relocator = Relocator(
            radix=int(options.radix),
            errors=self.errors,
            areas=self._area_of,
            owners=self._owner_of,
        )

    @property
    def error_count(self) -> int:
        """Number of errors and warnings reported so far."""
        return self._errors + self.relocator.warnings

    @property
    def areas(self) -> list[AreaSection]:
        """The areas in the order they were first seen."""
        return [entry.area for entry in self._areas]

    # -- helpers -------------------------------------------------------------

    def _report(self, message: str) -> None:
        self.errors.write(message + "\n")
        self._errors += 1

    def _number(self, token: str) -> int:
        try:
            return int(token, self.radix)
        except ValueError:
            raise LinkError(f"Invalid number {token}") from None

    def _numbers(self, tokens: Iterable[str]) -> list[int]:
        return [self._number(token) for token in tokens]

    def _current_module(self) -> Module:
        if self._module is None:
            raise LinkError("No header defined")
        return self._module

    def _default_section(self) -> AreaSection:
        if not self._areas:
            raise LinkError("No areas defined")
        return self._areas[0].parts[0][0]

    def _module_lists(self) -> list[tuple[str, Sequence[Symbol | None]]]:
        return [(module.name, module.symbols) for module in self.modules]

    def _find_area(self, name: str) -> _Area | None:
        for entry in self._areas:
            if symbols_equal(name, entry.area.name):
                return entry
        return None

    # -- directives ----------------------------------------------------------

    def link_line(self, line: str) -> None:
        """Process one line of a relocatable object file in the current pass."""
        text = line.strip()
        if not text:
            return
        code, rest = text[0], text[1:]
        if code in _RADIX_CODES:
            self.radix = _RADIX_CODES[code]
            if rest[:1] == "H":
                self.hilo = True
            elif rest[:1] == "L":
                self.hilo = False
            self.relocator.hilo = self.hilo
        elif code == "H":
            self._header(rest.split())
        elif code == "M":
            if self.pass_number == 0:
                tokens = rest.split()
                self._current_module().name = tokens[0] if tokens else ""
        elif code == "A":
            if self.pass_number == 0:
                self._new_area(rest.split())
            if self.relocator.page_section is None and self._areas:
                self.relocator.page_section = self._default_section()
                self.relocator.page_address = 0
        elif code == "S":
            if self.pass_number == 0:
                self._new_symbol(rest.split())
        elif code in "TRP" and self.pass_number == 1:
            self._relocate(code, rest.split())

    def _header(self, tokens: list[str]) -> None:
        if self.pass_number == 0:
            if len(tokens) < 3:
                raise LinkError("Malformed header line")
            areas = self._number(tokens[0])
            globals_ = self._number(tokens[2])
            module = Module(
                file_name=self._file_name,
                area_count=areas,
                symbols=[None] * globals_,
            )
            self.modules.append(module)
            self._module = module
        else:
            if self._next_module >= len(self.modules):
                raise LinkError("Header count changed between passes")
            self._module = self.modules[self._next_module]
            self._next_module += 1
        self.relocator.page_section = None
        self.relocator.page_address = 0

    def _keyword(self, tokens: list[str], key: str) -> int:
        for position, token in enumerate(tokens[:-1]):
            if token == key:
                return self._number(tokens[position + 1])
        return 0

    def _new_area(self, tokens: list[str]) -> None:
        module = self._current_module()
        if not tokens:
            raise LinkError("Area without a name")
        name = tokens[0]
        size = self._keyword(tokens, "size")
        flags = self._keyword(tokens, "flags")
        if len(module.sections) >= module.area_count:
            raise LinkError("Header area list overflow")
        entry = self._find_area(name)
        if entry is None:
            entry = _Area(AreaSection(name), flags)
            self._areas.append(entry)
        section = AreaSection(name)
        module.sections.append(section)
        entry.parts.append((section, size))
        self._area_of[section] = entry.area
        self._owner_of[section] = module
        self._section = section

    def _new_symbol(self, tokens: list[str]) -> None:
        module = self._current_module()
        if len(tokens) < 2:
            raise LinkError("Malformed symbol line")
        name = tokens[0]
        spec = "".join(tokens[1:])
        kind = spec[:1]
        digits = spec[3:] or "0"
        try:
            if kind == "R":
                symbol = self.symbols.reference(name, self._number(digits))
            elif kind == "D":
                symbol = self.symbols.define(name, self._number(digits), self._section)
            else:
                raise LinkError(f"Invalid symbol type {kind} for {name[:8]}")
        except SymbolError as exc:
            self._report(str(exc))
            symbol = self.symbols.lookup(name, False)
        for position, entry in enumerate(module.symbols):
            if entry is None:
                module.symbols[position] = symbol
                return
        raise LinkError("Header symbol list overflow")

    def _relocate(self, code: str, tokens: list[str]) -> None:
        values = self._numbers(tokens)
        if code == "T":
            self.relocator.text(values)
            return
        module = self._current_module()
        try:
            if code == "R":
                self.relocator.relocate(module, values)
            else:
                self.relocator.page(module, values)
        except LinkError as exc:
            self._report(str(exc))

    # -- passes --------------------------------------------------------------

    def _read(self, inputs: Sequence[str]) -> None:
        self.radix = 10
        self._module = None
        self._next_module = 0
        for name in inputs:
            path = output_path(name, "")
            self._file_name = name
            try:
                with open(path, encoding="ascii", errors="replace") as stream:
                    for line in stream:
                        self.link_line(line)
            except OSError:
                raise LinkError(f"{path}: cannot open.") from None

    def _layout(self) -> None:
        based = set()
        for text in self.base_defs:
            try:
                based.add(parse_assignment(text)[0])
            except OptionError:
                continue
        try:
            apply_bases(
                dataclasses.replace(self.options, base_defs=self.base_defs), self.areas
            )
        except OptionError as exc:
            self._report(str(exc))
        address = 0
        for entry in self._areas:
            has_base = any(symbols_equal(name, entry.area.name) for name in based)
            if has_base:
                start = entry.area.address
            elif entry.flags & ABSOLUTE:
                start = 0
            else:
                start = address
            entry.area.address = start
            size = 0
            for section, length in entry.parts:
                if entry.flags & OVERLAY:
                    section.address = start
                    size = max(size, length)
                else:
                    section.address = start + size
                    size += length
            entry.size = size
            if not entry.flags & ABSOLUTE or has_base:
                address = start + size

    def _apply_globals(self) -> None:
        try:
            apply_globals(self.options, self.symbols)
        except OptionError as exc:
            self._report(str(exc))

    def run(self) -> int:
        """Link the inputs, write the requested files and return the error count."""
        inputs = self.options.inputs
        name = self.options.output_name
        if name is None or not inputs:
            raise LinkError("No input files")
        fmt = self.options.output_format
        if fmt not in (OutputFormat.NONE, OutputFormat.S19):
            raise LinkError(f"Output format {fmt.name} is not supported")

        self.pass_number = 0
        self._read(inputs)
        default = self._default_section()
        self._layout()
        self._apply_globals()
        self._errors += self.symbols.resolve_undefined(
            default, self._module_lists(), self.errors
        )

        with ExitStack() as stack:
            map_file = None
            if self.options.map_output:
                map_file = stack.enter_context(
                    open(output_path(name, "map"), "w", encoding="ascii")
                )
                self.write_map(map_file)
            writer = None
            if fmt is OutputFormat.S19:
                stream = stack.enter_context(
                    open(output_path(name, "s19"), "w", encoding="ascii")
                )
                writer = S19Writer(stream)
            self.relocator.map_file = map_file
            self.relocator.output = writer
            self.pass_number = 1
            self._read(inputs)
            if writer is not None:
                writer.close()
        return self.error_count

    def write_map(self, out: TextIO) -> None:
        """Write the map: files and modules, base and global definitions, undefined symbols."""
        out.write("\nFiles Linked      [ module(s) ]\n\n")
        position = 0
        for file_name in self.options.inputs:
            out.write(f"{file_name:<16}")
            count = 0
            while (
                position < len(self.modules)
                and self.modules[position].file_name == file_name
            ):
                shown = f"{self.modules[position].name[:8]:>8}"
                if count % 5:
                    out.write(f", {shown}")
                elif count:
                    out.write(f",\n{'':20}{shown}")
                else:
                    out.write(f"  [ {shown}")
                position += 1
                count += 1
            if count:
                out.write(" ]")
            out.write("\n")
        if self.base_defs:
            out.write("\nUser Base Address Definitions\n\n")
            for text in self.base_defs:
                out.write(f"{text}\n")
        if self.options.global_defs:
            out.write("\nUser Global Definitions\n\n")
            for text in self.options.global_defs:
                out.write(f"{text}\n")
        out.write("\n\f")
        self._errors += self.symbols.resolve_undefined(
            self._default_section(), self._module_lists(), out
        )


def _usage() -> int:
    sys.stderr.write(usage_text())
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run the linker from a command line; return the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    startup: str | None = None
    link_file: str | None = None
    commands: list[str] = []
    echo = True

    for position, arg in enumerate(args):
        if arg.startswith("-"):
            stop = ""
            for char in arg[1:]:
                if not char.isalpha():
                    stop = char
                    break
                letter = char.lower()
                if letter == "c":
                    startup = "std"
                elif letter == "f":
                    startup = "lnk"
                elif letter == "n":
                    echo = False
                elif letter == "p":
                    echo = True
                else:
                    return _usage()
            if stop == "-":
                startup = "cmd"
                commands = args[position + 1:]
                break
        elif startup == "lnk":
            link_file = arg

    if startup is None or (startup == "lnk" and link_file is None):
        return _usage()

    options = LinkOptions()
    options.echo = echo
    with ExitStack() as stack:
        if startup == "std":
            lines: Iterable[str] = sys.stdin
        elif startup == "lnk":
            path = output_path(link_file, "lnk")
            try:
                lines = stack.enter_context(open(path, encoding="ascii"))
            except OSError:
                sys.stderr.write(f"{path}: cannot open.\n")
                return 1
        else:
            lines = commands
        try:
            for line in lines:
                text = line.rstrip("\r\n")
                if options.echo and startup != "std":
                    sys.stdout.write(f"{text}\n")
                if parse_line(text, options):
                    break
        except OptionError as exc:
            sys.stderr.write(f"{exc}\n")
            return 1

    if not options.inputs:
        return _usage()

    linker = Linker(options)
    try:
        return linker.run()
    except (LinkError, OptionError) as exc:
        sys.stderr.write(f"{exc}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())