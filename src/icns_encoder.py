"""
macOS ICNS container writer and reader.

An ICNS file is a length-prefixed chunk stream, big-endian throughout:

    'icns' | u32 total length
    then per entry: 4-byte type tag | u32 (8 + payload length) | payload

There is no padding between entries and no checksum. Only the PNG-payload
types listed in ``ICNS_SIZES`` are written.
"""

from __future__ import annotations

import struct

from src.errors import EncodingError
from src.icon_types import ICNS_TAGS, IcnsEntry

MAGIC = b"icns"
HEADER = struct.Struct(">4sI")


def encode_icns(entries) -> bytes:
    """
    Pack tagged PNG payloads into an ICNS buffer.

    Args:
        entries: Iterable of IcnsEntry, written in the order given
            (callers pass them smallest to largest).

    Returns:
        bytes: The container. Its length field equals ``len(result)``.

    Raises:
        EncodingError: If there are no entries, a tag is not a known
            PNG icon type, or a payload is empty.
    """
    entries = list(entries)
    if not entries:
        raise EncodingError("Cannot build an ICNS with no entries")

    for entry in entries:
        if entry.tag not in ICNS_TAGS:
            raise EncodingError(f"Unknown ICNS type tag: {entry.tag!r}")
        if not entry.png:
            raise EncodingError(f"Empty payload for ICNS entry {entry.tag}")

    total = HEADER.size + sum(HEADER.size + len(entry.png) for entry in entries)
    if total > 0xFFFFFFFF:
        raise EncodingError(f"ICNS container too large: {total} bytes")

    out = bytearray(HEADER.pack(MAGIC, total))
    for entry in entries:
        out += HEADER.pack(entry.tag.encode("ascii"), HEADER.size + len(entry.png))
        out += entry.png

    if len(out) != total:
        raise EncodingError(f"ICNS length mismatch: expected {total}, wrote {len(out)}")
    return bytes(out)


def read_icns(buffer: bytes) -> list[IcnsEntry]:
    """Walk an ICNS chunk stream and return its entries in file order."""
    if len(buffer) < HEADER.size:
        raise EncodingError("Buffer too short for an ICNS header")
    magic, total = HEADER.unpack_from(buffer, 0)
    if magic != MAGIC:
        raise EncodingError("Not an ICNS buffer")
    if total != len(buffer):
        raise EncodingError(f"ICNS length field {total} does not match buffer length {len(buffer)}")

    entries = []
    pos = HEADER.size
    while pos < total:
        if pos + HEADER.size > total:
            raise EncodingError(f"Truncated entry header at offset {pos}")
        tag, length = HEADER.unpack_from(buffer, pos)
        if length < HEADER.size or pos + length > total:
            raise EncodingError(f"Bad entry length {length} at offset {pos}")
        entries.append(IcnsEntry(tag.decode("latin-1"), bytes(buffer[pos + HEADER.size:pos + length])))
        pos += length
    return entries
