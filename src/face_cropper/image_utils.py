from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

if TYPE_CHECKING:
    from numpy.typing import NDArray

_KEPT_MODES = ("RGB", "RGBA")


def load_image(path: Path) -> Image.Image:
    """
    Decodes `path` fully into memory as RGB or RGBA.

    The returned image is treated as read-only and is shared by every crop
    taken from it. Raises `OSError` (including `PIL.UnidentifiedImageError`)
    when the file is missing or cannot be decoded.
    """
    with Image.open(path) as im:
        im.load()
        if im.mode in _KEPT_MODES:
            return im.copy()
        if im.mode == "P" and "transparency" in im.info:
            return im.convert("RGBA")
        if im.mode in ("LA", "PA", "La"):
            return im.convert("RGBA")
        return im.convert("RGB")


def to_grayscale(image: Image.Image) -> NDArray[np.uint8]:
    """HxW luminance buffer (ITU-R 601-2 weights)."""
    return np.asarray(image.convert("L"), dtype=np.uint8)
