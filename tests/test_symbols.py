import io

import pytest

from gblink.symbols import (
    HASH_SIZE,
    NAME_LENGTH,
    AreaSection,
    Symbol,
    SymbolError,
    SymbolTable,
    symbol_hash,
    symbols_equal,
)


def test_hash_of_empty_name_is_zero():
    assert symbol_hash("") == 0


def test_hash_single_character():
    assert symbol_hash("A") == ord("A") % HASH_SIZE


@pytest.mark.parametrize("name", ["_main", "_CODE", ".init", "x" * 100])
def test_hash_in_range(name):
    assert 0 <= symbol_hash(name) < HASH_SIZE


def test_hash_ignores_characters_past_significant_length():
    base = "n" * NAME_LENGTH
    assert symbol_hash(base + "abc") == symbol_hash(base + "xyz")


def test_names_equal_on_significant_prefix():
    base = "s" * NAME_LENGTH
    assert symbols_equal(base + "1", base + "2")
    assert not symbols_equal("_foo", "_bar")


def test_names_case_sensitive():
    assert not symbols_equal("_Main", "_main")


def test_lookup_without_create_returns_none():
    table = SymbolTable()
    assert table.lookup("_missing", False) is None
    assert len(table) == 0


def test_lookup_create_returns_same_symbol():
    table = SymbolTable()
    first = table.lookup("_main", True)
    second = table.lookup("_main", False)
    assert first is second
    assert len(table) == 1
    assert "_main" in table


def test_define_sets_value_with_section():
    table = SymbolTable()
    section = AreaSection("_CODE", 0x200)
    symbol = table.define("_main", 0x10, section)
    assert symbol.defined
    assert symbol.value() == 0x210


def test_symbol_value_without_section():
    assert Symbol("_x", address=0x1234).value() == 0x1234


def test_redefinition_with_same_value_is_allowed():
    table = SymbolTable()
    table.define("_a", 5, None)
    symbol = table.define("_a", 5, None)
    assert symbol.address == 5


def test_redefinition_with_other_value_raises_and_updates():
    table = SymbolTable()
    table.define("_a", 5, None)
    with pytest.raises(SymbolError, match="Multiple definition of _a"):
        table.define("_a", 6, None)
    assert table.lookup("_a", False).address == 6


def test_reference_with_zero_value():
    table = SymbolTable()
    symbol = table.reference("_ext", 0)
    assert symbol.referenced
    assert not symbol.defined


def test_reference_with_nonzero_value_raises():
    table = SymbolTable()
    with pytest.raises(SymbolError, match="Non zero S_REF"):
        table.reference("_ext", 3)
    assert table.lookup("_ext", False).referenced


def test_undefined_lists_only_undefined():
    table = SymbolTable()
    table.reference("_ext", 0)
    table.define("_main", 0, None)
    assert [s.name for s in table.undefined()] == ["_ext"]


def test_resolve_undefined_reports_and_assigns_default_section():
    table = SymbolTable()
    code = AreaSection("_CODE", 0x200)
    ext = table.reference("_ext", 0)
    main = table.define("_main", 0, None)
    out = io.StringIO()
    count = table.resolve_undefined(code, [("crt0", [main, ext, None])], out)
    assert count == 1
    assert out.getvalue() == (
        "\n?ASlink-Warning-Undefined Global _ext referenced by module crt0\n"
    )
    assert ext.section is code
    assert main.section is code


def test_resolve_undefined_keeps_existing_section():
    table = SymbolTable()
    data = AreaSection("_DATA", 0xC0A0)
    code = AreaSection("_CODE", 0x200)
    symbol = table.define("_v", 1, data)
    out = io.StringIO()
    assert table.resolve_undefined(code, [("m", [symbol])], out) == 0
    assert symbol.section is data
    assert out.getvalue() == ""


def test_resolve_undefined_reports_each_module():
    table = SymbolTable()
    ext = table.reference("_ext", 0)
    out = io.StringIO()
    count = table.resolve_undefined(
        AreaSection("_CODE"), [("one", [ext]), ("two", [ext])], out
    )
    assert count == 2
    assert "module one" in out.getvalue()
    assert "module two" in out.getvalue()


def test_newest_symbol_first_within_bucket():
    table = SymbolTable()
    table.lookup("ab", True)
    table.lookup("ba", True)
    assert symbol_hash("ab") == symbol_hash("ba")
    names = [s.name for s in table]
    assert names.index("ba") < names.index("ab")