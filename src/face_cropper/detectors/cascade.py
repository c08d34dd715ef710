from __future__ import annotations

import logging
import math
import threading
from pathlib import Path
from typing import TYPE_CHECKING

import cv2
import numpy as np

from face_cropper.detectors.base import Detection, ScanParams

if TYPE_CHECKING:
    from numpy.typing import NDArray

LOGGER = logging.getLogger(__name__)

DEFAULT_CASCADE = "haarcascade_frontalface_default.xml"
_STORAGE_HEADERS = ("<", "%YAML", "{")


class ModelUnpackError(RuntimeError):
    """The cascade model could not be read or parsed."""


def load_model_bytes(path: Path | None = None) -> bytes:
    """
    Reads a cascade model. Defaults to the frontal-face Haar cascade that
    ships with OpenCV.
    """
    if path is None:
        path = Path(cv2.data.haarcascades) / DEFAULT_CASCADE
    try:
        return path.read_bytes()
    except OSError as e:
        raise ModelUnpackError(f"Cannot read cascade model: {path}") from e


def _parse(model_bytes: bytes) -> cv2.CascadeClassifier:
    try:
        text = model_bytes.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ModelUnpackError("Cascade model is not a UTF-8 XML document") from e

    if not text.lstrip().startswith(_STORAGE_HEADERS):
        raise ModelUnpackError("Cascade model is not an OpenCV XML, YAML or JSON document")

    # Some 4.x bindings surface parse failures as SystemError.
    try:
        storage = cv2.FileStorage(text, cv2.FILE_STORAGE_READ | cv2.FILE_STORAGE_MEMORY)
    except (cv2.error, SystemError) as e:
        raise ModelUnpackError(f"Cascade model is not valid OpenCV storage: {e}") from e

    try:
        if not storage.isOpened():
            raise ModelUnpackError("Cascade model is not valid OpenCV storage")
        node = storage.getFirstTopLevelNode()
        classifier = cv2.CascadeClassifier()
        try:
            ok = node is not None and not node.empty() and classifier.read(node)
        except (cv2.error, SystemError) as e:
            raise ModelUnpackError(f"Failed to read cascade model: {e}") from e
    finally:
        storage.release()

    if not ok or classifier.empty():
        raise ModelUnpackError("Cascade model does not describe a cascade classifier")
    return classifier


def unpack(model_bytes: bytes) -> CascadeClassifier:
    classifier = _parse(model_bytes)
    LOGGER.debug("unpacked cascade model (%d bytes)", len(model_bytes))
    return CascadeClassifier(model_bytes, classifier)


class CascadeClassifier:
    """
    Multi-scale cascade scanner backed by OpenCV.

    The model bytes are immutable and shared; every thread that scans gets its
    own parsed OpenCV object.
    """

    def __init__(self, model_bytes: bytes, parsed: cv2.CascadeClassifier | None = None) -> None:
        self._model_bytes = model_bytes
        self._local = threading.local()
        if parsed is not None:
            self._local.classifier = parsed

    def _classifier(self) -> cv2.CascadeClassifier:
        classifier = getattr(self._local, "classifier", None)
        if classifier is None:
            classifier = _parse(self._model_bytes)
            self._local.classifier = classifier
        return classifier

    def scan(self, pixels: NDArray[np.uint8], params: ScanParams, angle: float) -> list[Detection]:
        rows, cols = pixels.shape[:2]
        if params.min_size > params.max_size:
            return []

        gray, inverse = _rotate(np.ascontiguousarray(pixels, dtype=np.uint8), angle)

        objects, _, weights = self._classifier().detectMultiScale3(
            gray,
            scaleFactor=params.scale_factor,
            minNeighbors=0,
            minSize=(params.min_size, params.min_size),
            maxSize=(params.max_size, params.max_size),
            outputRejectLevels=True,
        )

        boxes = np.asarray(objects, dtype=np.float64).reshape(-1, 4)
        scores = np.asarray(weights, dtype=np.float64).reshape(-1)

        candidates: list[Detection] = []
        for (x, y, w, h), score in zip(boxes.tolist(), scores.tolist(), strict=True):
            cx, cy = x + w / 2.0, y + h / 2.0
            if inverse is not None:
                cx, cy = _apply_affine(inverse, cx, cy)
            candidates.append(
                Detection(
                    col=min(max(int(round(cx)), 0), cols - 1),
                    row=min(max(int(round(cy)), 0), rows - 1),
                    scale=float(w),
                    score=float(score),
                )
            )

        return thin_candidates(candidates, params.shift_factor)


def _rotate(pixels: NDArray[np.uint8], angle: float) -> tuple[NDArray[np.uint8], NDArray[np.float64] | None]:
    """
    Rotates the buffer by `-angle` turns about its center so faces tilted by
    `angle` become upright. Returns the rotated buffer and the affine matrix
    mapping rotated coordinates back to source coordinates.
    """
    turns = angle % 1.0
    if math.isclose(turns, 0.0, abs_tol=1e-9) or math.isclose(turns, 1.0, abs_tol=1e-9):
        return pixels, None

    rows, cols = pixels.shape[:2]
    matrix = cv2.getRotationMatrix2D((cols / 2.0, rows / 2.0), -turns * 360.0, 1.0)
    rotated = cv2.warpAffine(pixels, matrix, (cols, rows))
    return rotated, cv2.invertAffineTransform(matrix)


def _apply_affine(matrix: NDArray[np.float64], x: float, y: float) -> tuple[float, float]:
    return (
        float(matrix[0, 0] * x + matrix[0, 1] * y + matrix[0, 2]),
        float(matrix[1, 0] * x + matrix[1, 1] * y + matrix[1, 2]),
    )


def thin_candidates(candidates: list[Detection], shift_factor: float) -> list[Detection]:
    """
    Keeps the best candidate per grid cell of side `shift_factor * scale`,
    per window size. OpenCV slides its window one pixel at a time; this
    approximates a coarser stride.
    """
    best: dict[tuple[float, int, int], Detection] = {}
    for det in candidates:
        step = max(1, round(shift_factor * det.scale))
        key = (det.scale, det.col // step, det.row // step)
        current = best.get(key)
        if current is None or det.score > current.score:
            best[key] = det
    return list(best.values())
