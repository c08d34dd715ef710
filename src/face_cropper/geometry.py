from __future__ import annotations

from dataclasses import dataclass

from face_cropper.detectors.base import Detection


@dataclass(frozen=True, slots=True)
class CropRectangle:
    min_x: int
    min_y: int
    max_x: int  # exclusive
    max_y: int  # exclusive

    @property
    def side(self) -> int:
        return self.max_x - self.min_x

    def as_box(self) -> tuple[int, int, int, int]:
        return (self.min_x, self.min_y, self.max_x, self.max_y)


def compute_crop(
    detection: Detection, *, cols: int, rows: int, min_output_size: int, face_factor: float
) -> CropRectangle:
    """
    Square crop around `detection`, at least `min_output_size` wide and large
    enough for the face to fill about `face_factor` of the edge.

    The side is capped to the shorter image edge so the square always fits
    inside `[0, cols) x [0, rows)`; the corner is then clamped to the image.
    """
    side = max(min_output_size, int(detection.scale / face_factor))
    side = min(side, cols, rows)

    min_x = max(0, min(detection.col - side // 2, cols - side))
    min_y = max(0, min(detection.row - side // 2, rows - side))
    return CropRectangle(min_x=min_x, min_y=min_y, max_x=min_x + side, max_y=min_y + side)


def detection_box(detection: Detection) -> tuple[float, float, float, float]:
    """Square box (xmin, ymin, xmax, ymax) of side `scale` centered on the detection."""
    half = detection.scale / 2.0
    return (detection.col - half, detection.row - half, detection.col + half, detection.row + half)


def iou(a: Detection, b: Detection) -> float:
    ax0, ay0, ax1, ay1 = detection_box(a)
    bx0, by0, bx1, by1 = detection_box(b)

    iw = min(ax1, bx1) - max(ax0, bx0)
    ih = min(ay1, by1) - max(ay0, by0)
    if iw <= 0 or ih <= 0:
        return 0.0

    inter = iw * ih
    union = a.scale * a.scale + b.scale * b.scale - inter
    if union <= 0:
        return 0.0
    return inter / union
