"""Image decoding and the tiered image cache."""

from .cache import ImageCache
from .codec import decode_image, encode_jpeg

__all__ = ["ImageCache", "decode_image", "encode_jpeg"]
