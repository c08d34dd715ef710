from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray


@dataclass(frozen=True, slots=True)
class Detection:
    col: int  # center x (pixels)
    row: int  # center y (pixels)
    scale: float  # face size (pixels)
    score: float


@dataclass(frozen=True, slots=True)
class ScanParams:
    min_size: int
    max_size: int
    shift_factor: float
    scale_factor: float


class Classifier(Protocol):
    def scan(self, pixels: NDArray[np.uint8], params: ScanParams, angle: float) -> list[Detection]:
        """
        Returns raw, ungrouped candidates found in a HxW grayscale buffer.
        `angle` is a fraction of a full turn (0.0 - 1.0).
        """
        ...
