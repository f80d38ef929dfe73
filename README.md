# gblink

gblink is a two-pass relocating linker for object (`.rel`) files produced by a
gbz80/z80 assembler. It reads link directives from the command line, from
standard input or from a command file. It places every area and resolves global
symbols. It writes the relocated code as Motorola S19 records, and it can also
write a link map.

## Installation

```
pip install .
```

## Command line

```
gblink -c
gblink -f build
gblink -- -s -m game main.rel util.rel
```

Startup options:

- `-c`: read link commands from standard input.
- `-f file`: read link commands from a command file. `.lnk` is added when the
  name has no extension.
- `--`: every argument after it is one line of link commands.
- `-p` / `-n`: echo, or do not echo, the commands to standard output. Commands
  read from standard input are never echoed.

Link commands, one or more to a line:

- `-s`: Motorola S19 output, written as `<output>.s19`.
- `-m`: write a link map as `<output>.map`.
- `-x`, `-d`, `-q`: show values in the map and in warnings as hexadecimal (the
  default), decimal or octal.
- `-b area = expression`: base address of an area. Names of areas that do not
  exist are ignored.
- `-g symbol = expression`: value of a global symbol that the inputs already
  name.
- `-yo n`, `-ya n`: number of ROM banks (default 2) and RAM banks (default 0).
  These add bank areas `_CODE_1=0x4000` … and `_DATA_0=0xA000` ….
- `-yt n`, `-yn="name"`, `-yp addr=val`: MBC type, cartridge name and byte
  patches. These are parsed and stored only.
- `-e`, or an empty line, ends the input.
- Any other word is a file name. The first file names the output files. The
  other files are the object files to link, and `.rel` is added to a name that
  has no extension.

Numbers in expressions may have a `0x`, `0o`, `0q`, `0d` or `0b` prefix, and
may be added and subtracted.

The default bases are `_CODE=0x0200` and `_DATA=0xC0A0`. The default globals are
`.OAM`, `.STACK`, `.refresh_OAM` and `.init`.

Running `gblink` without a startup option prints the usage text. The exit
status is the number of errors and warnings reported, or 1 when the link could
not be run.

## Library use

Each part of the linker can also be used on its own:

- `gblink.symbols`: `SymbolTable` (`lookup`, `reference`, `define`,
  `undefined`, `resolve_undefined`), `Symbol`, `AreaSection`, `SymbolError`,
  `symbol_hash`, `symbols_equal`
- `gblink.relocation`: `Relocator` (`text`, `relocate`, `page`), `TextLine`,
  `RelocMode`, `LinkError`, `format_value`
- `gblink.s19`: `s19_record`, `s19_end_record`, `S19Writer`
- `gblink.options`: `LinkOptions`, `OutputFormat`, `MapRadix`, `OptionError`,
  `parse_line`, `parse_assignment`, `output_path`, `apply_bases`,
  `apply_globals`
- `gblink.linker`: `Linker` (`link_line`, `run`, `write_map`), `Module`,
  `usage_text`, `main`
- `gblink.cgb`: `rgb`, `split_rgb`, the `RGB_*` colour constants, and the
  `Joypad`, `SpriteFlag` and `InterruptFlag` flags

For example, `rgb(31, 0, 0)` gives the 15-bit colour value `0x001F`, and
`s19_end_record()` gives `"S9030000FC\n"`.

## What it does not do

- S19 is the only output format. `-i` (Intel hex) and `-z` (cartridge image)
  are accepted, but the link then stops with an "is not supported" error.
- Library paths and files given with `-k` and `-l` are recorded but never
  searched.
- `-u` (relocated listings) and `-j` (symbol file) are accepted but write
  nothing.
- The map lists the linked files and modules, the base and global definitions,
  and the undefined symbols. It does not list the areas or the symbols they
  hold.