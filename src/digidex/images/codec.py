from __future__ import annotations

from io import BytesIO

from PIL import Image, UnidentifiedImageError

JPEG_QUALITY = 80


def decode_image(data: bytes) -> Image.Image | None:
    if not data:
        return None
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError):
        return None
    return image


def encode_jpeg(image: Image.Image, *, quality: int = JPEG_QUALITY) -> bytes:
    buffer = BytesIO()
    image.convert("RGB").save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def image_cost(image: Image.Image) -> int:
    width, height = image.size
    return width * height * len(image.getbands())
