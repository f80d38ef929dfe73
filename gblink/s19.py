"""Motorola S19 output of relocated object code."""

from __future__ import annotations

from typing import Sequence, TextIO

_END_RECORD = "S9030000FC\n"


def s19_record(values: Sequence[int], flags: Sequence[bool], hilo: bool) -> str:
    """Format one S1 data record from a relocated text line.

    ``values`` starts with the two load-address bytes followed by data;
    only entries whose flag is set are emitted.  When ``hilo`` is false the
    address bytes are stored low byte first and are swapped for output.
    """
    values = list(values)
    flags = list(flags)
    if len(values) != len(flags):
        raise ValueError("values and flags must have the same length")
    if not hilo and len(values) >= 2:
        values[0], values[1] = values[1], values[0]
    emitted = [value for value, flag in zip(values, flags) if flag]
    length = len(emitted) + 1
    checksum = length + sum(emitted)
    body = "".join(f"{value:02X}" for value in emitted)
    return f"S1{length:02X}{body}{(-checksum - 1) & 0xFF:02X}\n"


def s19_end_record() -> str:
    """Return the S9 end-of-file record."""
    return _END_RECORD


class S19Writer:
    """Writes S19 records to a text stream, ending with the S9 record."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._closed = False

    def __enter__(self) -> S19Writer:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def write_text(self, values: Sequence[int], flags: Sequence[bool], hilo: bool) -> None:
        """Write one data record."""
        if self._closed:
            raise ValueError("write to a closed S19 writer")
        self._stream.write(s19_record(values, flags, hilo))

    def close(self) -> None:
        """Write the end record; further calls do nothing."""
        if not self._closed:
            self._stream.write(_END_RECORD)
            self._closed = True