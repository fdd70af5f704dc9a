import io
import pytest
from PIL import Image

from image_ingest.exceptions import DecodeError
from image_ingest.image_service import normalizer


def open_image(data):
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


# ------------------------------
# is_supported_format / canonical_extension
# ------------------------------

@pytest.mark.parametrize(
    "content_type, extension",
    [
        ("image/jpeg", ".jpg"),
        ("image/png", ".png"),
        ("image/gif", ".gif"),
        ("image/bmp", ".bmp"),
        ("image/webp", ".webp"),
    ],
)
def test_supported_formats_and_extensions(content_type, extension):
    assert normalizer.is_supported_format(content_type)
    assert normalizer.canonical_extension(content_type) == extension


def test_supported_format_is_case_insensitive():
    assert normalizer.is_supported_format("IMAGE/PNG")
    assert normalizer.canonical_extension("Image/WebP") == ".webp"


@pytest.mark.parametrize("content_type", ["image/svg+xml", "application/pdf", "text/plain", "", "image/tiff"])
def test_unsupported_formats(content_type):
    assert not normalizer.is_supported_format(content_type)


def test_unknown_type_falls_back_to_jpeg_extension():
    assert normalizer.canonical_extension("application/octet-stream") == ".jpg"


def test_allow_list_can_be_narrowed():
    assert not normalizer.is_supported_format("image/gif", allowed=["image/png"])
    assert normalizer.is_supported_format("image/png", allowed=["image/png"])


# ------------------------------
# thumbnail_size
# ------------------------------

@pytest.mark.parametrize("size", [(10, 10), (200, 200), (200, 50), (1, 199)])
def test_small_images_are_not_upscaled(size):
    assert normalizer.thumbnail_size(*size, max_edge=200) == size


@pytest.mark.parametrize(
    "size, expected",
    [
        ((640, 480), (200, 150)),
        ((480, 640), (150, 200)),
        ((1000, 250), (200, 50)),
        ((300, 1200), (50, 200)),
        ((201, 201), (200, 200)),
    ],
)
def test_longer_edge_is_scaled_to_max(size, expected):
    width, height = size
    thumb_width, thumb_height = normalizer.thumbnail_size(width, height, max_edge=200)
    assert (thumb_width, thumb_height) == expected
    assert max(thumb_width, thumb_height) == 200
    assert abs(thumb_width / thumb_height - width / height) < 1 / min(width, height)


@pytest.mark.parametrize("size", [(1234, 567), (567, 1234), (333, 999), (4000, 3001)])
def test_shorter_edge_is_rounded(size):
    width, height = size
    thumb = normalizer.thumbnail_size(width, height, max_edge=200)
    long_edge, short_edge = max(size), min(size)
    assert max(thumb) == 200
    assert min(thumb) == round(200 * short_edge / long_edge)


def test_extreme_aspect_ratio_keeps_one_pixel():
    assert normalizer.thumbnail_size(5000, 2, max_edge=200) == (200, 1)


# ------------------------------
# normalize
# ------------------------------

def test_normalize_small_png_keeps_size(image_bytes):
    result = normalizer.normalize(image_bytes((10, 10)))
    assert (result.width, result.height) == (10, 10)
    assert (result.thumb_width, result.thumb_height) == (10, 10)
    assert open_image(result.original_bytes).format == "JPEG"
    assert open_image(result.thumbnail_bytes).size == (10, 10)


def test_normalize_large_image_produces_thumbnail(image_bytes):
    result = normalizer.normalize(image_bytes((640, 480), fmt="JPEG"))
    assert (result.width, result.height) == (640, 480)
    assert (result.thumb_width, result.thumb_height) == (200, 150)
    assert open_image(result.original_bytes).size == (640, 480)
    thumb = open_image(result.thumbnail_bytes)
    assert thumb.format == "JPEG"
    assert thumb.size == (200, 150)


def test_normalize_respects_max_edge(image_bytes):
    result = normalizer.normalize(image_bytes((100, 300)), max_thumbnail_edge=50)
    assert (result.thumb_width, result.thumb_height) == (17, 50)


@pytest.mark.parametrize(
    "fmt, mode",
    [("PNG", "RGBA"), ("GIF", "P"), ("BMP", "RGB"), ("WEBP", "RGB"), ("PNG", "L")],
)
def test_normalize_accepts_allowed_formats(image_bytes, fmt, mode):
    result = normalizer.normalize(image_bytes((30, 20), fmt=fmt, mode=mode, color=0 if mode in ("P", "L") else "blue"))
    assert (result.width, result.height) == (30, 20)
    assert open_image(result.original_bytes).mode == "RGB"


def test_normalize_flattens_transparency_onto_white():
    img = Image.new("RGBA", (4, 4), (0, 0, 0, 0))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    result = normalizer.normalize(buf.getvalue())
    r, g, b = open_image(result.original_bytes).getpixel((1, 1))
    assert min(r, g, b) > 240


@pytest.mark.parametrize("data", [b"notanimage", b"", b"\x89PNG\r\n\x1a\n" + b"\x00" * 20])
def test_normalize_rejects_corrupt_data(data):
    with pytest.raises(DecodeError):
        normalizer.normalize(data)
