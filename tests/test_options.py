import pytest

from gblink.options import (
    DEFAULT_BASES,
    DEFAULT_GLOBALS,
    LinkOptions,
    MapRadix,
    OptionError,
    OutputFormat,
    apply_bases,
    apply_globals,
    output_path,
    parse_assignment,
    parse_line,
)
from gblink.symbols import AreaSection, SymbolTable


def test_defaults_match_source():
    options = LinkOptions()
    assert options.rom_banks == 2
    assert options.ram_banks == 0
    assert options.mbc_type == 0
    assert options.base_defs == ["_CODE=0x0200", "_DATA=0xC0A0"]
    assert options.global_defs[0] == ".OAM=0xC000"
    assert options.output_format is OutputFormat.NONE
    assert options.radix is MapRadix.HEX


@pytest.mark.parametrize(
    "line, fmt",
    [("-i", OutputFormat.IHX), ("-S", OutputFormat.S19), ("-z", OutputFormat.BINARY)],
)
def test_output_format(line, fmt):
    options = LinkOptions()
    assert parse_line(line, options) is False
    assert options.output_format is fmt


@pytest.mark.parametrize(
    "line, radix", [("-q", MapRadix.OCTAL), ("-d", MapRadix.DECIMAL), ("-qx", MapRadix.HEX)]
)
def test_radix(line, radix):
    options = LinkOptions()
    parse_line(line, options)
    assert options.radix is radix


def test_counting_flags_and_listing():
    options = LinkOptions()
    parse_line("-mm -j -u", options)
    assert options.map_output == 2
    assert options.symbol_output == 1
    assert options.listing is True


def test_echo_flags():
    options = LinkOptions()
    parse_line("-n", options)
    assert options.echo is False
    parse_line("-p", options)
    assert options.echo is True


def test_end_of_input():
    options = LinkOptions()
    assert parse_line("-e", options) is True
    assert parse_line("", options) is True
    assert parse_line("\n", options) is True


def test_files_collected_in_order():
    options = LinkOptions()
    parse_line("out.gb a.rel\tb.rel", options)
    assert options.files == ["out.gb", "a.rel", "b.rel"]
    assert options.output_name == "out.gb"
    assert options.inputs == ["a.rel", "b.rel"]


def test_rest_of_line_options():
    options = LinkOptions()
    parse_line("-b _CODE=0x4000", options)
    parse_line("-g   _sym=5", options)
    parse_line("-k /usr/lib/gb", options)
    parse_line("-l gb.lib", options)
    assert options.base_defs[-1] == "_CODE=0x4000"
    assert options.global_defs[-1] == "_sym=5"
    assert options.library_paths == ["/usr/lib/gb"]
    assert options.libraries == ["gb.lib"]


def test_bank_option_followed_by_letter():
    options = LinkOptions()
    parse_line("-yo8m", options)
    assert options.rom_banks == 8
    assert options.map_output == 1


def test_cart_name():
    options = LinkOptions()
    parse_line('-yn="HELLO"', options)
    assert options.cart_name == "HELLO"


def test_cart_name_truncated():
    options = LinkOptions()
    parse_line('-yn="ABCDEFGHIJKLMNOPQRST"', options)
    assert len(options.cart_name) == 16
    assert "ABCDEFGHIJKLMNOPQRST".startswith(options.cart_name)


def test_cart_name_syntax_error():
    with pytest.raises(OptionError):
        parse_line("-yn=HELLO", LinkOptions())
    with pytest.raises(OptionError):
        parse_line('-yn="HELLO', LinkOptions())


def test_patches_newest_first():
    options = LinkOptions()
    parse_line("-yp0x143=0x80", options)
    parse_line("-yp0x144=1", options)
    assert options.patches == [(0x144, 1), (0x143, 0x80)]


def test_patch_syntax_error():
    with pytest.raises(OptionError):
        parse_line("-yp0x143", LinkOptions())


def test_invalid_input():
    with pytest.raises(OptionError):
        parse_line("a.rel \x01", LinkOptions())


def test_parse_assignment():
    assert parse_assignment(".OAM=0xC000") == (".OAM", 0xC000)
    assert parse_assignment("_DATA = 0xC0A0") == ("_DATA", 0xC0A0)
    assert parse_assignment("x=10") == ("x", 10)


def test_parse_assignment_errors():
    with pytest.raises(OptionError):
        parse_assignment("_CODE 5")
    with pytest.raises(OptionError):
        parse_assignment("_CODE=")


def test_defaults_all_parse():
    names = [parse_assignment(text)[0] for text in DEFAULT_BASES + DEFAULT_GLOBALS]
    assert names == ["_CODE", "_DATA", ".OAM", ".STACK", ".refresh_OAM", ".init"]


def test_output_path():
    assert output_path("game", "ihx") == "game.ihx"
    assert output_path("game.gb", "") == "game.gb"
    assert output_path("game", "") == "game.rel"
    assert output_path("game.gb", "map") == "game.map"


def test_apply_bases():
    code = AreaSection("_CODE")
    data = AreaSection("_DATA")
    apply_bases(LinkOptions(), [code, data])
    assert code.address == 0x0200
    assert data.address == 0xC0A0


def test_apply_bases_ignores_missing_area_and_reports_bad_text():
    code = AreaSection("_CODE")
    options = LinkOptions(base_defs=["_NONE=0x10", "_CODE 5", "_CODE=0x4000"])
    with pytest.raises(OptionError):
        apply_bases(options, [code])
    assert code.address == 0x4000


def test_apply_globals():
    table = SymbolTable()
    table.reference(".OAM", 0)
    apply_globals(LinkOptions(), table)
    symbol = table.lookup(".OAM", False)
    assert symbol.defined is True
    assert symbol.address == 0xC000
    assert ".STACK" not in table
    assert table.undefined() == []