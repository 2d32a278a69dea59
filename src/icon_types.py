from __future__ import annotations

import enum
from dataclasses import dataclass

# Windows icon sizes, ascending.
ICO_SIZES: tuple[int, ...] = (16, 24, 32, 48, 64, 128, 256)


@dataclass(frozen=True)
class IcnsSize:
    edge: int
    tag: str


# macOS PNG-payload icon types, ascending.
ICNS_SIZES: tuple[IcnsSize, ...] = (
    IcnsSize(16, "icp4"),
    IcnsSize(32, "icp5"),
    IcnsSize(64, "icp6"),
    IcnsSize(128, "ic07"),
    IcnsSize(256, "ic08"),
    IcnsSize(512, "ic09"),
    IcnsSize(1024, "ic10"),
)

ICNS_TAGS: frozenset[str] = frozenset(size.tag for size in ICNS_SIZES)

ALLOWED_MIME_TYPES: frozenset[str] = frozenset({"image/png", "image/jpeg", "image/jpg"})


@dataclass(frozen=True)
class SourceImage:
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class RenderedBitmap:
    edge: int
    png: bytes


@dataclass(frozen=True)
class IcnsEntry:
    tag: str
    png: bytes


@dataclass(frozen=True)
class ConversionResult:
    ico: bytes
    icns: bytes


class Kind(enum.Enum):
    """Which of the two containers of an artifact is being addressed."""

    ICO = "ico"
    ICNS = "icns"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def mime_type(self) -> str:
        return "image/x-icon" if self is Kind.ICO else "image/icns"

    @classmethod
    def from_extension(cls, extension: str) -> "Kind":
        return cls(extension.lower().lstrip("."))
