"""Square PNG rendering of an arbitrary source image, backed by Pillow."""

from io import BytesIO
import logging
import struct

from PIL import Image, ImageOps, UnidentifiedImageError

from src.errors import DecodeError

logger = logging.getLogger(__name__)

PADDING_CONTAIN = "contain"
TRANSPARENT = (0, 0, 0, 0)


def resize(data, edge, padding=PADDING_CONTAIN):
    """Render ``data`` as an ``edge`` x ``edge`` PNG.

    The image is scaled to fit inside the square while keeping its aspect
    ratio, then centred on a fully transparent canvas.

    Args:
        data (bytes): Encoded source image (PNG or JPEG).
        edge (int): Target width and height in pixels.
        padding (str): Scaling mode. Only ``"contain"`` is supported.

    Returns:
        bytes: The PNG-encoded bitmap.

    Raises:
        DecodeError: If Pillow cannot read ``data``.
    """
    if padding != PADDING_CONTAIN:
        raise ValueError(f"Unsupported padding mode: {padding}")
    if edge <= 0:
        raise ValueError(f"Edge length must be positive, got {edge}")

    try:
        with Image.open(BytesIO(data)) as source:
            # Pillow only refuses images above twice MAX_IMAGE_PIXELS and merely
            # warns below that; anything past the limit is refused here.
            limit = Image.MAX_IMAGE_PIXELS
            if limit and source.width * source.height > limit:
                raise Image.DecompressionBombError(
                    f"{source.width}x{source.height} exceeds the {limit} pixel limit")
            source.load()
            img = source.convert("RGBA")
    except Image.DecompressionBombError as e:
        raise DecodeError(f"Image is too large to decode: {e}") from e
    except (UnidentifiedImageError, SyntaxError, ValueError, struct.error) as e:
        raise DecodeError(f"Cannot decode image: {e}") from e
    except OSError as e:
        # Truncated or corrupt files surface as plain OSError from the codecs
        raise DecodeError(f"Cannot decode image: {e}") from e

    fitted = ImageOps.contain(img, (edge, edge), Image.Resampling.LANCZOS)
    canvas = Image.new("RGBA", (edge, edge), TRANSPARENT)
    canvas.paste(fitted, ((edge - fitted.width) // 2, (edge - fitted.height) // 2))

    out = BytesIO()
    canvas.save(out, format="PNG", optimize=True)
    logger.debug(f"Rendered {edge}x{edge} PNG ({out.tell()} bytes)")
    return out.getvalue()
