"""Global symbol table used while linking relocatable object modules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Sequence, TextIO

#: Number of significant characters in a symbol name.
NAME_LENGTH = 32
#: Number of hash buckets in the symbol table (a power of two).
HASH_SIZE = 64
_HASH_MASK = HASH_SIZE - 1


class SymbolError(Exception):
    """Raised when a symbol directive is inconsistent."""


@dataclass(eq=False)
class AreaSection:
    """The part of an area contributed by one module, with its base address."""

    name: str
    address: int = 0


@dataclass(eq=False)
class Symbol:
    """A global symbol: its offset, its section and whether it is defined."""

    name: str
    address: int = 0
    defined: bool = False
    referenced: bool = False
    section: AreaSection | None = None

    def value(self) -> int:
        """Return the relocated value: the offset plus the section base."""
        if self.section is not None:
            return self.address + self.section.address
        return self.address


def _significant(name: str) -> str:
    return name[:NAME_LENGTH]


def symbol_hash(name: str) -> int:
    """Return the bucket index for a name: the sum of its characters, masked."""
    return sum(map(ord, _significant(name))) & _HASH_MASK


def symbols_equal(first: str, second: str) -> bool:
    """Return True when two names agree in all their significant characters."""
    return _significant(first) == _significant(second)


class SymbolTable:
    """Hashed table of global symbols.

    Within a bucket the most recently created symbol comes first, and
    iteration walks the buckets in order, which fixes the order in which
    undefined symbols are reported.
    """

    def __init__(self) -> None:
        self._buckets: list[list[Symbol]] = [[] for _ in range(HASH_SIZE)]

    def __iter__(self) -> Iterator[Symbol]:
        for bucket in self._buckets:
            yield from bucket

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._buckets)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.lookup(name, False) is not None

    def lookup(self, name: str, create: bool) -> Symbol | None:
        """Find a symbol by name; create it when missing if ``create`` is set."""
        bucket = self._buckets[symbol_hash(name)]
        for symbol in bucket:
            if symbols_equal(name, symbol.name):
                return symbol
        if not create:
            return None
        symbol = Symbol(_significant(name))
        bucket.insert(0, symbol)
        return symbol

    def reference(self, name: str, value: int) -> Symbol:
        """Record a reference to a symbol.

        A reference must carry a zero value; otherwise the symbol is still
        marked as referenced and SymbolError is raised.
        """
        symbol = self.lookup(name, True)
        symbol.referenced = True
        if value:
            raise SymbolError("Non zero S_REF")
        return symbol

    def define(self, name: str, value: int, section: AreaSection | None) -> Symbol:
        """Record a definition of a symbol in ``section``.

        The new value and section always take effect.  A second definition
        with a different value raises SymbolError after the update.
        """
        symbol = self.lookup(name, True)
        conflict = symbol.defined and symbol.address != value
        symbol.defined = True
        symbol.address = value
        symbol.section = section
        if conflict:
            raise SymbolError(f"Multiple definition of {name}")
        return symbol

    def undefined(self) -> list[Symbol]:
        """Return the symbols that are referenced but never defined."""
        return [symbol for symbol in self if not symbol.defined]

    def resolve_undefined(
        self,
        default_section: AreaSection,
        modules: Iterable[tuple[str, Sequence[Symbol | None]]],
        out: TextIO,
    ) -> int:
        """Attach sectionless symbols to ``default_section`` and report undefined ones.

        ``modules`` holds (module name, symbol list) pairs.  A warning is
        written to ``out`` for every place a module refers to an undefined
        symbol; the number of warnings is returned.
        """
        modules = list(modules)
        warnings = 0
        for symbol in self:
            if symbol.section is None:
                symbol.section = default_section
            if symbol.defined:
                continue
            for module_name, symbols in modules:
                for entry in symbols:
                    if entry is symbol:
                        out.write(
                            f"\n?ASlink-Warning-Undefined Global {symbol.name} "
                            f"referenced by module {module_name}\n"
                        )
                        warnings += 1
        return warnings