"""Exception types raised by the icon pipeline."""


class IconForgeError(Exception):
    """Base class for every error raised by the pipeline."""


class InvalidImageError(IconForgeError):
    """The uploaded image is of an unsupported type, unreadable, or too large."""


class EncodingError(IconForgeError):
    """An ICO/ICNS container could not be built from the given entries."""


class NotFoundError(IconForgeError):
    """The requested artifact is unknown, expired, or the filename is invalid."""


class DecodeError(IconForgeError):
    """Raised by the resizer when the source bytes cannot be decoded."""


class ConversionCancelled(IconForgeError):
    """The caller aborted the conversion before it finished."""
