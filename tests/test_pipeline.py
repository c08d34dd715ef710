from __future__ import annotations

import logging
import threading
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from face_cropper.config import CropConfig
from face_cropper.detectors.base import Detection, ScanParams
from face_cropper.detectors.cascade import ModelUnpackError
from face_cropper.pipeline import detect_faces, run_batch, scan_params


class FakeClassifier:
    """Returns canned detections keyed by image shape (rows, cols)."""

    def __init__(self, by_shape: dict[tuple[int, int], list[Detection]]) -> None:
        self._by_shape = by_shape
        self._lock = threading.Lock()
        self.calls: list[tuple[tuple[int, int], ScanParams, float]] = []

    def scan(self, pixels: np.ndarray, params: ScanParams, angle: float) -> list[Detection]:
        shape = (int(pixels.shape[0]), int(pixels.shape[1]))
        with self._lock:
            self.calls.append((shape, params, angle))
        return list(self._by_shape.get(shape, []))


class ExplodingClassifier(FakeClassifier):
    """Crashes on images of shape `crash_shape`, otherwise behaves like FakeClassifier."""

    def __init__(self, crash_shape: tuple[int, int], by_shape: dict[tuple[int, int], list[Detection]]) -> None:
        super().__init__(by_shape)
        self._crash_shape = crash_shape

    def scan(self, pixels: np.ndarray, params: ScanParams, angle: float) -> list[Detection]:
        if pixels.shape[:2] == self._crash_shape:
            raise RuntimeError("scanner crashed")
        return super().scan(pixels, params, angle)


def _image(path: Path, size: tuple[int, int], color: tuple[int, int, int] = (200, 150, 100)) -> Path:
    Image.new("RGB", size, color).save(path)
    return path


def _config(tmp_path: Path, **overrides: object) -> CropConfig:
    return CropConfig(out_dir=tmp_path / "faces", progress=False).replace(**overrides)


def test_scan_params(tmp_path: Path) -> None:
    params = scan_params(_config(tmp_path, size=200, face=0.4, shift=0.2, scale=1.3), cols=640, rows=480)
    assert params == ScanParams(min_size=80, max_size=480, shift_factor=0.2, scale_factor=1.3)


def test_detect_faces_clusters_then_filters(tmp_path: Path) -> None:
    dets = [
        Detection(col=100, row=100, scale=100, score=3.0),
        Detection(col=125, row=100, scale=100, score=5.0),
        Detection(col=400, row=300, scale=60, score=0.3),
    ]
    classifier = FakeClassifier({(480, 640): dets})
    kept = detect_faces(classifier, np.zeros((480, 640), dtype=np.uint8), _config(tmp_path, angle=0.25))
    assert kept == [dets[1]]
    assert classifier.calls[0][2] == 0.25


def test_single_face_saved(tmp_path: Path) -> None:
    src = _image(tmp_path / "image.png", (640, 480))
    classifier = FakeClassifier({(480, 640): [Detection(col=100, row=120, scale=80, score=2.0)]})
    config = _config(tmp_path)

    result = run_batch([src], config=config, classifier=classifier)

    out = tmp_path / "faces" / "image_00.png"
    assert out.exists()
    with Image.open(out) as saved:
        assert saved.size == (256, 256)
    (image_result,) = result.images
    assert image_result.ok
    assert image_result.crops[0].rect is not None
    assert image_result.crops[0].rect.as_box() == (0, 0, 256, 256)
    assert result.saved_crops == 1


def test_overlapping_detections_produce_one_file(tmp_path: Path) -> None:
    src = _image(tmp_path / "pair.png", (640, 480))
    classifier = FakeClassifier(
        {
            (480, 640): [
                Detection(col=300, row=200, scale=100, score=3.0),
                Detection(col=325, row=200, scale=100, score=5.0),
            ]
        }
    )

    run_batch([src], config=_config(tmp_path), classifier=classifier)

    assert sorted(p.name for p in (tmp_path / "faces").iterdir()) == ["pair_00.png"]


def test_low_score_and_empty_images_write_nothing(tmp_path: Path) -> None:
    weak = _image(tmp_path / "weak.png", (320, 320))
    empty = _image(tmp_path / "empty.png", (300, 300))
    classifier = FakeClassifier({(320, 320): [Detection(col=160, row=160, scale=60, score=0.3)]})

    result = run_batch([weak, empty], config=_config(tmp_path, score=0.5), classifier=classifier)

    assert list((tmp_path / "faces").iterdir()) == []
    assert all(r.ok for r in result.images)
    assert result.saved_crops == 0


def test_unreadable_image_is_skipped(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    good = _image(tmp_path / "good.png", (400, 400))
    broken = tmp_path / "broken.png"
    broken.write_bytes(b"definitely not a png")
    missing = tmp_path / "missing.png"
    classifier = FakeClassifier({(400, 400): [Detection(col=200, row=200, scale=100, score=1.0)]})

    with caplog.at_level(logging.ERROR):
        result = run_batch([broken, good, missing], config=_config(tmp_path), classifier=classifier)

    assert [r.image_path for r in result.images] == [broken, good, missing]
    assert [r.ok for r in result.images] == [False, True, False]
    assert result.failed_images == 2
    assert (tmp_path / "faces" / "good_00.png").exists()
    assert "failed to get image" in caplog.text


def test_crash_in_one_image_does_not_stop_others(tmp_path: Path) -> None:
    a = _image(tmp_path / "a.png", (200, 200))
    b = _image(tmp_path / "b.png", (300, 300))
    classifier = ExplodingClassifier((200, 200), {(300, 300): [Detection(col=150, row=150, scale=80, score=1.0)]})

    result = run_batch([a, b], config=_config(tmp_path), classifier=classifier)

    assert result.failed_images == 1
    assert "scanner crashed" in (result.images[0].error or "")
    assert result.images[1].ok
    assert (tmp_path / "faces" / "b_00.png").is_file()
    assert result.saved_crops == 1


def test_failed_save_does_not_stop_siblings(tmp_path: Path) -> None:
    src = _image(tmp_path / "group.png", (800, 400))
    classifier = FakeClassifier(
        {
            (400, 800): [
                Detection(col=100, row=200, scale=50, score=3.0),
                Detection(col=600, row=200, scale=50, score=2.0),
            ]
        }
    )
    config = _config(tmp_path, size=100)
    (config.out_dir / "group_00.png").mkdir(parents=True)

    result = run_batch([src], config=config, classifier=classifier)

    crops = result.images[0].crops
    assert [c.ok for c in crops] == [False, True]
    assert (config.out_dir / "group_01.png").is_file()
    assert result.failed_crops == 1
    assert result.saved_crops == 1


def test_many_images_many_faces_deterministic(tmp_path: Path) -> None:
    sizes = [(500 + 10 * i, 400) for i in range(6)]
    images = [_image(tmp_path / f"img{i}.jpg", size) for i, size in enumerate(sizes)]
    faces = [
        Detection(col=80, row=80, scale=40, score=1.0),
        Detection(col=250, row=200, scale=40, score=4.0),
        Detection(col=420, row=320, scale=40, score=2.0),
    ]
    classifier = FakeClassifier({(h, w): faces for (w, h) in sizes})

    def run(out: str) -> dict[str, tuple[int, int, int, int]]:
        config = _config(tmp_path, out_dir=tmp_path / out, size=64, image_workers=3, save_workers=4)
        result = run_batch(images, config=config, classifier=classifier)
        assert result.saved_crops == len(images) * len(faces)
        return {c.output_path.name: c.rect.as_box() for r in result.images for c in r.crops if c.rect is not None}

    first = run("one")
    second = run("two")
    assert first == second
    assert first["img0_00.png"] == (210, 160, 290, 240)
    assert sorted(p.name for p in (tmp_path / "one").iterdir()) == sorted(first)


def test_unpack_failure_is_fatal(tmp_path: Path) -> None:
    src = _image(tmp_path / "x.png", (100, 100))
    config = _config(tmp_path)

    with pytest.raises(ModelUnpackError):
        run_batch([src], config=config, model_bytes=b"not a model")

    assert not config.out_dir.exists()
