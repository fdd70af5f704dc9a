"""
    Image decoding, canonical re-encoding and thumbnail derivation.

    Everything here is pure and CPU-bound; callers run ``normalize`` off the
    event loop.
"""
from dataclasses import dataclass
from io import BytesIO
from typing import Iterable, Tuple
import logging

from PIL import Image, UnidentifiedImageError

from image_ingest.exceptions import DecodeError
from image_ingest.settings import DEFAULT_CONTENT_TYPES

log = logging.getLogger(__name__)

# Allowed content types and the extension their storage keys get
EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/bmp": ".bmp",
    "image/webp": ".webp",
}
DEFAULT_EXTENSION = ".jpg"

# Stored artifacts are always JPEG
STORED_CONTENT_TYPE = "image/jpeg"
ORIGINAL_QUALITY = 90
THUMBNAIL_QUALITY = 85
DEFAULT_MAX_THUMBNAIL_EDGE = 200

@dataclass(frozen=True)
class NormalizedImage:
    original_bytes: bytes
    thumbnail_bytes: bytes
    width: int
    height: int
    thumb_width: int
    thumb_height: int

def is_supported_format(content_type: str, allowed: Iterable[str] = DEFAULT_CONTENT_TYPES) -> bool:
    if not content_type:
        return False
    return content_type.strip().lower() in {c.lower() for c in allowed}

def canonical_extension(content_type: str) -> str:
    return EXTENSIONS.get((content_type or "").strip().lower(), DEFAULT_EXTENSION)

def thumbnail_size(width: int, height: int, max_edge: int = DEFAULT_MAX_THUMBNAIL_EDGE) -> Tuple[int, int]:
    """Scales the longer edge down to ``max_edge``; never upscales."""
    if width <= max_edge and height <= max_edge:
        return width, height
    ratio = width / height
    if width > height:
        return max_edge, max(1, round(max_edge / ratio))
    return max(1, round(max_edge * ratio)), max_edge

def _to_rgb(img: Image.Image) -> Image.Image:
    """JPEG has no alpha; composite transparent images onto white."""
    if img.mode == "RGB":
        return img
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return img.convert("RGB")

def _encode_jpeg(img: Image.Image, quality: int) -> bytes:
    buf = BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()

def normalize(data: bytes, max_thumbnail_edge: int = DEFAULT_MAX_THUMBNAIL_EDGE) -> NormalizedImage:
    """Decodes ``data``, re-encodes it as JPEG and derives a thumbnail.

    Raises:
        DecodeError: if the bytes are not a decodable image.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            # animated formats: keep the first frame
            img.seek(0)
            img.load()
            rgb = _to_rgb(img)
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        log.info("Could not decode uploaded image: %s", e)
        raise DecodeError(f"Invalid image file: {e}") from e

    width, height = rgb.size
    original_bytes = _encode_jpeg(rgb, ORIGINAL_QUALITY)

    thumb_width, thumb_height = thumbnail_size(width, height, max_thumbnail_edge)
    if (thumb_width, thumb_height) == (width, height):
        thumb = rgb
    else:
        thumb = rgb.resize((thumb_width, thumb_height), Image.Resampling.LANCZOS)
    thumbnail_bytes = _encode_jpeg(thumb, THUMBNAIL_QUALITY)

    return NormalizedImage(
        original_bytes=original_bytes,
        thumbnail_bytes=thumbnail_bytes,
        width=width,
        height=height,
        thumb_width=thumb_width,
        thumb_height=thumb_height,
    )
