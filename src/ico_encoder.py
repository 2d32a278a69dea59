"""Windows ICO container writer/reader for PNG-compressed entries."""

from __future__ import annotations

import struct

from src.errors import EncodingError
from src.icon_types import RenderedBitmap

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

ICONDIR = struct.Struct("<HHH")            # reserved, type (1 = icon), count
ICONDIRENTRY = struct.Struct("<BBBBHHII")  # w, h, colours, reserved, planes, bpp, size, offset

ICON_TYPE = 1
COLOR_PLANES = 1
BITS_PER_PIXEL = 32
MAX_EDGE = 256


def png_dimensions(png: bytes) -> tuple[int, int]:
    """Read width and height from the IHDR chunk of a PNG stream."""
    if len(png) < 24 or not png.startswith(PNG_SIGNATURE) or png[12:16] != b"IHDR":
        raise EncodingError("Entry payload is not a PNG image")
    return struct.unpack(">II", png[16:24])


def _check_entry(bitmap: RenderedBitmap) -> None:
    if not bitmap.png:
        raise EncodingError(f"Empty payload for {bitmap.edge}px entry")
    width, height = png_dimensions(bitmap.png)
    if width != height:
        raise EncodingError(f"Entry is not square: {width}x{height}")
    if width != bitmap.edge:
        raise EncodingError(f"Entry declared as {bitmap.edge}px but PNG is {width}px")
    if not 1 <= bitmap.edge <= MAX_EDGE:
        raise EncodingError(f"ICO entries must be 1..{MAX_EDGE}px, got {bitmap.edge}px")


def encode_ico(bitmaps) -> bytes:
    """Pack PNG bitmaps into a single ICO buffer, keeping the given order.

    The directory is laid out after every payload size is known, so each
    entry's offset is an absolute position in the returned buffer.
    """
    bitmaps = list(bitmaps)
    if not bitmaps:
        raise EncodingError("Cannot build an ICO with no entries")
    if len(bitmaps) > 0xFFFF:
        raise EncodingError(f"Too many ICO entries: {len(bitmaps)}")
    for bitmap in bitmaps:
        _check_entry(bitmap)

    # Pass 1: measure
    offset = ICONDIR.size + ICONDIRENTRY.size * len(bitmaps)
    layout = []
    for bitmap in bitmaps:
        layout.append((bitmap, offset))
        offset += len(bitmap.png)

    # Pass 2: lay out
    out = bytearray(ICONDIR.pack(0, ICON_TYPE, len(bitmaps)))
    for bitmap, entry_offset in layout:
        dim = 0 if bitmap.edge == MAX_EDGE else bitmap.edge
        out += ICONDIRENTRY.pack(dim, dim, 0, 0, COLOR_PLANES, BITS_PER_PIXEL,
                                 len(bitmap.png), entry_offset)
    for bitmap in bitmaps:
        out += bitmap.png

    if len(out) != offset:
        raise EncodingError(f"ICO length mismatch: expected {offset}, wrote {len(out)}")
    return bytes(out)


def read_ico(buffer: bytes) -> list[RenderedBitmap]:
    """Parse an ICO buffer back into its entries (directory order)."""
    if len(buffer) < ICONDIR.size:
        raise EncodingError("Buffer too short for an ICO header")
    reserved, icon_type, count = ICONDIR.unpack_from(buffer, 0)
    if reserved != 0 or icon_type != ICON_TYPE:
        raise EncodingError("Not an ICO buffer")

    entries = []
    for index in range(count):
        pos = ICONDIR.size + index * ICONDIRENTRY.size
        if pos + ICONDIRENTRY.size > len(buffer):
            raise EncodingError(f"Directory entry {index} runs past end of buffer")
        width, _, _, _, _, _, size, offset = ICONDIRENTRY.unpack_from(buffer, pos)
        if offset + size > len(buffer):
            raise EncodingError(f"Payload {index} runs past end of buffer")
        entries.append(RenderedBitmap(width or MAX_EDGE, bytes(buffer[offset:offset + size])))
    return entries
