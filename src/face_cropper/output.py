from __future__ import annotations

from pathlib import Path

from PIL import Image

from face_cropper.geometry import CropRectangle

_NO_ALPHA_FORMATS = frozenset({"JPEG", "BMP", "PPM", "EPS", "PDF"})


def crop_filename(*, output_dir: Path, image_path: Path, index: int, ext: str) -> Path:
    return output_dir / f"{image_path.stem}_{index:02d}.{ext}"


def format_for_ext(ext: str) -> str:
    fmt = Image.registered_extensions().get(f".{ext.lstrip('.').lower()}")
    if fmt is None:
        raise ValueError(f"Unsupported output extension: {ext}")
    return fmt


def save_crop(*, image: Image.Image, rect: CropRectangle, output_path: Path) -> None:
    """
    Encodes the `rect` region of `image` to `output_path`; the format follows
    the file extension. Raises `OSError` when the file cannot be created or
    `ValueError` when the region cannot be encoded.
    """
    fmt = format_for_ext(output_path.suffix)

    cropped = image.crop(rect.as_box())
    if fmt in _NO_ALPHA_FORMATS and cropped.mode == "RGBA":
        cropped = cropped.convert("RGB")

    with output_path.open("wb") as f:
        cropped.save(f, format=fmt)
