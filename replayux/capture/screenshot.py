from __future__ import annotations
import asyncio
import base64
import io
from typing import Any, Optional, Protocol, Tuple

from PIL import Image, ImageGrab

BBox = Tuple[int, int, int, int]


class Screenshotter(Protocol):
    async def __call__(self, target: Any, *, quality: float,
                       width: Optional[int], height: Optional[int]) -> str:
        """Grab `target` and return a base64 jpeg. Raise if nothing could be captured."""
        ...


def encode_jpeg(img: Image.Image, quality: float, width: Optional[int] = None,
                height: Optional[int] = None) -> str:
    # quality is 0..1 like the upload options, pillow wants 1..95
    if width and height and img.size != (width, height):
        img = img.resize((int(width), int(height)))
    buf = io.BytesIO()
    img.convert("RGB").save(buf, format="JPEG", quality=max(1, min(95, int(quality * 100))))
    return base64.b64encode(buf.getvalue()).decode("ascii")


class ScreenGrabber:
    """Desktop screenshots via pillow. `target` is a bbox or None for the full screen."""

    async def __call__(self, target: Optional[BBox], *, quality: float,
                       width: Optional[int], height: Optional[int]) -> str:
        return await asyncio.to_thread(self._grab, target, quality, width, height)

    @staticmethod
    def _grab(bbox, quality, width, height) -> str:
        img = ImageGrab.grab(bbox=bbox)
        return encode_jpeg(img, quality, width, height)
