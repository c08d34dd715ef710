from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import Executor, Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import cv2
from PIL import Image
from tqdm import tqdm

from face_cropper.config import CropConfig
from face_cropper.dedup import cluster, filter_by_score
from face_cropper.detectors.base import Classifier, Detection, ScanParams
from face_cropper.detectors.cascade import load_model_bytes, unpack
from face_cropper.geometry import CropRectangle, compute_crop
from face_cropper.image_utils import load_image, to_grayscale
from face_cropper.output import crop_filename, save_crop

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

LOGGER = logging.getLogger(__name__)

_DECODE_ERRORS = (OSError, ValueError, Image.DecompressionBombError)


@dataclass(frozen=True, slots=True)
class CropResult:
    index: int
    output_path: Path
    rect: CropRectangle | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class ImageResult:
    image_path: Path
    detections: tuple[Detection, ...] = ()
    crops: tuple[CropResult, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class BatchResult:
    images: tuple[ImageResult, ...]

    @property
    def failed_images(self) -> int:
        return sum(1 for r in self.images if not r.ok)

    @property
    def saved_crops(self) -> int:
        return sum(1 for r in self.images for c in r.crops if c.ok)

    @property
    def failed_crops(self) -> int:
        return sum(1 for r in self.images for c in r.crops if not c.ok)


def scan_params(config: CropConfig, *, cols: int, rows: int) -> ScanParams:
    return ScanParams(
        min_size=int(config.size * config.face),
        max_size=min(cols, rows),
        shift_factor=config.shift,
        scale_factor=config.scale,
    )


def detect_faces(classifier: Classifier, pixels: NDArray[np.uint8], config: CropConfig) -> list[Detection]:
    """Scan, deduplicate and score-filter one grayscale buffer."""
    rows, cols = pixels.shape[:2]
    raw = classifier.scan(pixels, scan_params(config, cols=cols, rows=rows), config.angle)
    clustered = cluster(raw, config.iou)
    kept = filter_by_score(clustered, config.score)
    LOGGER.debug("raw=%d clustered=%d kept=%d", len(raw), len(clustered), len(kept))
    return kept


def _crop_one(
    *,
    image: Image.Image,
    image_path: Path,
    index: int,
    detection: Detection,
    config: CropConfig,
) -> CropResult:
    cols, rows = image.size
    rect = compute_crop(
        detection, cols=cols, rows=rows, min_output_size=config.size, face_factor=config.face
    )
    output_path = crop_filename(output_dir=config.out_dir, image_path=image_path, index=index, ext=config.ext)

    LOGGER.info(
        "detected face file=%s number=%d minX=%d minY=%d maxX=%d maxY=%d",
        image_path,
        index,
        rect.min_x,
        rect.min_y,
        rect.max_x,
        rect.max_y,
        extra={
            "file": str(image_path),
            "number": index,
            "minX": rect.min_x,
            "minY": rect.min_y,
            "maxX": rect.max_x,
            "maxY": rect.max_y,
        },
    )

    try:
        save_crop(image=image, rect=rect, output_path=output_path)
    except (OSError, ValueError) as e:
        LOGGER.error("failed to save crop file=%s err=%s", output_path, e)
        return CropResult(index=index, output_path=output_path, rect=rect, error=str(e))

    return CropResult(index=index, output_path=output_path, rect=rect)


def _gather_crops(futures: Sequence[Future[CropResult]], *, image_path: Path, config: CropConfig) -> list[CropResult]:
    crops: list[CropResult] = []
    for index, future in enumerate(futures):
        error = future.exception()
        if error is None:
            crops.append(future.result())
            continue
        output_path = crop_filename(output_dir=config.out_dir, image_path=image_path, index=index, ext=config.ext)
        LOGGER.error("crop task failed file=%s", output_path, exc_info=error)
        crops.append(CropResult(index=index, output_path=output_path, error=repr(error)))
    return crops


def process_image(
    image_path: Path, *, classifier: Classifier, config: CropConfig, save_pool: Executor
) -> ImageResult:
    """
    Load -> grayscale -> scan -> deduplicate -> filter -> save one crop per face.

    Decode and scan failures are logged and reported on the result; they
    never raise. Saves run on `save_pool` and are all awaited before
    returning.
    """
    try:
        image = load_image(image_path)
    except _DECODE_ERRORS as e:
        LOGGER.error("failed to get image file=%s err=%s", image_path, e)
        return ImageResult(image_path=image_path, error=str(e))

    pixels = to_grayscale(image)

    try:
        detections = detect_faces(classifier, pixels, config)
    except cv2.error as e:
        LOGGER.error("failed to scan image file=%s err=%s", image_path, e)
        return ImageResult(image_path=image_path, error=str(e))

    futures = [
        save_pool.submit(
            _crop_one,
            image=image,
            image_path=image_path,
            index=index,
            detection=det,
            config=config,
        )
        for index, det in enumerate(detections)
    ]
    crops = _gather_crops(futures, image_path=image_path, config=config)

    LOGGER.debug("file=%s faces=%d saved=%d", image_path, len(detections), sum(1 for c in crops if c.ok))
    return ImageResult(image_path=image_path, detections=tuple(detections), crops=tuple(crops))


def run_batch(
    image_paths: Sequence[Path],
    *,
    config: CropConfig,
    model_bytes: bytes | None = None,
    classifier: Classifier | None = None,
) -> BatchResult:
    """
    Processes every image concurrently and returns once all images and all of
    their crops are done. Results follow the order of `image_paths`.

    Raises `ModelUnpackError` before any work starts when the cascade model
    cannot be unpacked.
    """
    if classifier is None:
        classifier = unpack(model_bytes if model_bytes is not None else load_model_bytes())

    config.out_dir.mkdir(parents=True, exist_ok=True)
    LOGGER.info("Processing %d images into %s", len(image_paths), config.out_dir)

    results: dict[int, ImageResult] = {}
    with (
        ThreadPoolExecutor(max_workers=config.save_workers, thread_name_prefix="save") as save_pool,
        ThreadPoolExecutor(max_workers=config.image_workers, thread_name_prefix="image") as image_pool,
    ):
        futures = {
            image_pool.submit(
                process_image, path, classifier=classifier, config=config, save_pool=save_pool
            ): i
            for i, path in enumerate(image_paths)
        }

        for future in tqdm(as_completed(futures), total=len(futures), desc="images", disable=not config.progress):
            i = futures[future]
            error = future.exception()
            if error is None:
                results[i] = future.result()
                continue
            LOGGER.error("image task failed file=%s", image_paths[i], exc_info=error)
            results[i] = ImageResult(image_path=image_paths[i], error=repr(error))

    batch = BatchResult(images=tuple(results[i] for i in range(len(image_paths))))
    LOGGER.info(
        "Done: images=%d failed_images=%d saved_crops=%d failed_crops=%d",
        len(batch.images),
        batch.failed_images,
        batch.saved_crops,
        batch.failed_crops,
    )
    return batch
