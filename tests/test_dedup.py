from __future__ import annotations

import random

import pytest

from face_cropper.dedup import cluster, filter_by_score
from face_cropper.detectors.base import Detection


def _det(col: int, row: int, scale: float, score: float) -> Detection:
    return Detection(col=col, row=row, scale=scale, score=score)


def _random_detections(seed: int, n: int = 40) -> list[Detection]:
    rng = random.Random(seed)
    return [
        _det(rng.randrange(0, 400), rng.randrange(0, 400), float(rng.randrange(20, 120)), rng.random() * 10)
        for _ in range(n)
    ]


def test_overlapping_pair_collapses_to_best() -> None:
    a = _det(100, 100, 100, 3.0)
    b = _det(125, 100, 100, 5.0)
    assert cluster([a, b], 0.2) == [b]


def test_disjoint_detections_survive_in_score_order() -> None:
    a = _det(50, 50, 40, 1.0)
    b = _det(300, 300, 40, 2.0)
    assert cluster([a, b], 0.2) == [b, a]


def test_threshold_one_keeps_everything() -> None:
    dets = _random_detections(1)
    dets.append(dets[0])
    assert len(cluster(dets, 1.0)) == len(dets)


def test_threshold_zero_collapses_touching() -> None:
    a = _det(100, 100, 100, 1.0)
    b = _det(190, 100, 100, 2.0)
    c = _det(400, 400, 20, 0.5)
    assert cluster([a, b, c], 0.0) == [b, c]


@pytest.mark.parametrize("threshold", [0.0, 0.2, 0.5, 0.9])
@pytest.mark.parametrize("seed", [0, 1, 2])
def test_cluster_is_idempotent(seed: int, threshold: float) -> None:
    once = cluster(_random_detections(seed), threshold)
    assert cluster(once, threshold) == once


def test_cluster_never_fabricates() -> None:
    dets = _random_detections(3)
    out = cluster(dets, 0.3)
    assert len(out) <= len(dets)
    assert all(d in dets for d in out)


def test_cluster_ignores_input_order() -> None:
    dets = _random_detections(4)
    shuffled = list(dets)
    random.Random(9).shuffle(shuffled)
    assert cluster(dets, 0.2) == cluster(shuffled, 0.2)


def test_cluster_empty() -> None:
    assert cluster([], 0.2) == []


def test_filter_by_score() -> None:
    dets = [_det(0, 0, 10, s) for s in (0.3, 0.5, 0.7)]
    kept = filter_by_score(dets, 0.5)
    assert [d.score for d in kept] == [0.5, 0.7]
