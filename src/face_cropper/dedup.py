"""
Deduplication of raw cascade candidates.

Candidates are clustered greedily around the most confident one: the best
remaining candidate becomes a representative and absorbs every other remaining
candidate whose IOU with it is strictly above the threshold. Representatives
are returned unchanged, so no detection is ever fabricated and any two
returned detections overlap by at most the threshold.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from face_cropper.detectors.base import Detection
from face_cropper.geometry import iou

LOGGER = logging.getLogger(__name__)


def _rank(det: Detection) -> tuple[float, int, int, float]:
    return (-det.score, det.row, det.col, det.scale)


def cluster(detections: Iterable[Detection], iou_threshold: float) -> list[Detection]:
    remaining = sorted(detections, key=_rank)
    total = len(remaining)
    representatives: list[Detection] = []

    while remaining:
        best = remaining[0]
        representatives.append(best)
        remaining = [det for det in remaining[1:] if iou(best, det) <= iou_threshold]

    LOGGER.debug("clustered %d candidates into %d (iou>%.2f)", total, len(representatives), iou_threshold)
    return representatives


def filter_by_score(detections: Iterable[Detection], min_score: float) -> list[Detection]:
    return [det for det in detections if det.score >= min_score]
