from face_cropper.detectors.base import Classifier, Detection, ScanParams
from face_cropper.detectors.cascade import CascadeClassifier, ModelUnpackError, load_model_bytes, unpack

__all__ = [
    "CascadeClassifier",
    "Classifier",
    "Detection",
    "ModelUnpackError",
    "ScanParams",
    "load_model_bytes",
    "unpack",
]
