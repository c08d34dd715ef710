from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_INPUT_EXTENSIONS: tuple[str, ...] = (".png", ".jpg", ".jpeg", ".bmp", ".gif", ".webp")
DEFAULT_OUTPUT_EXT = "png"


@dataclass(frozen=True, slots=True)
class CropConfig:
    out_dir: Path = Path("faces")
    size: int = 256
    face: float = 0.5
    shift: float = 0.1
    scale: float = 1.1
    angle: float = 0.0
    iou: float = 0.2
    score: float = 0.5
    ext: str = DEFAULT_OUTPUT_EXT
    image_workers: int | None = None
    save_workers: int | None = None
    recursive: bool = False
    extensions: tuple[str, ...] = DEFAULT_INPUT_EXTENSIONS
    progress: bool = True

    def replace(self, **overrides: Any) -> CropConfig:
        """
        Returns a copy with `overrides` applied. `None` values are ignored so
        unset CLI flags keep the current value.
        """
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "out_dir" in changes:
            changes["out_dir"] = Path(changes["out_dir"])
        if "ext" in changes:
            changes["ext"] = _normalize_ext(changes["ext"])
        config = dataclasses.replace(self, **changes)
        validate_config(config)
        return config


def _as_dict_table(value: Any, name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"config: [{name}] must be a TOML table")
    return value


def _require_path(value: Any, name: str) -> Path:
    if not isinstance(value, str) or not value.strip():
        raise TypeError(f"config: {name} must be a non-empty string path")
    return Path(value)


def _get_bool(table: dict[str, Any], key: str, default: bool) -> bool:
    value = table.get(key, default)
    if not isinstance(value, bool):
        raise TypeError(f"config: {key} must be a bool")
    return value


def _get_int(table: dict[str, Any], key: str, default: int) -> int:
    value = table.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"config: {key} must be an int")
    return value


def _get_optional_int(table: dict[str, Any], key: str) -> int | None:
    if table.get(key) is None:
        return None
    return _get_int(table, key, 0)


def _get_float(table: dict[str, Any], key: str, default: float) -> float:
    value = table.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"config: {key} must be a number")
    return float(value)


def _get_str(table: dict[str, Any], key: str, default: str) -> str:
    value = table.get(key, default)
    if not isinstance(value, str):
        raise TypeError(f"config: {key} must be a string")
    return value


def _get_str_list(table: dict[str, Any], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = table.get(key)
    if value is None:
        return default
    if not isinstance(value, list) or not all(isinstance(x, str) for x in value):
        raise TypeError(f"config: {key} must be a list of strings")
    return tuple(value)


def _normalize_ext(ext: str) -> str:
    return ext.strip().lstrip(".").lower()


def _is_writable_ext(ext: str) -> bool:
    from PIL import Image

    fmt = Image.registered_extensions().get(f".{ext}")
    return fmt is not None and fmt in Image.SAVE


def validate_config(config: CropConfig) -> None:
    if config.size <= 0:
        raise ValueError("config: size must be > 0")
    if not (0.0 < config.face <= 1.0):
        raise ValueError("config: face must be in (0,1]")
    if not (0.0 < config.shift <= 1.0):
        raise ValueError("config: shift must be in (0,1]")
    if not (config.scale > 1.0):
        raise ValueError("config: scale must be > 1")
    if not (0.0 <= config.angle <= 1.0):
        raise ValueError("config: angle must be in [0,1]")
    if not (0.0 <= config.iou <= 1.0):
        raise ValueError("config: iou must be in [0,1]")
    if not math.isfinite(config.score):
        raise ValueError("config: score must be a finite number")
    if config.image_workers is not None and config.image_workers < 1:
        raise ValueError("config: image_workers must be >= 1")
    if config.save_workers is not None and config.save_workers < 1:
        raise ValueError("config: save_workers must be >= 1")
    if not config.ext or not _is_writable_ext(config.ext):
        raise ValueError(f"config: ext {config.ext!r} is not a writable image format")


def load_config(path: Path) -> CropConfig:
    if not path.exists():
        raise FileNotFoundError(f"config not found: {path}")

    import tomllib

    data = tomllib.loads(path.read_text(encoding="utf-8"))
    table = _as_dict_table(data.get("crop"), "crop")

    config = CropConfig(
        out_dir=_require_path(table.get("out", "faces"), "crop.out"),
        size=_get_int(table, "size", 256),
        face=_get_float(table, "face", 0.5),
        shift=_get_float(table, "shift", 0.1),
        scale=_get_float(table, "scale", 1.1),
        angle=_get_float(table, "angle", 0.0),
        iou=_get_float(table, "iou", 0.2),
        score=_get_float(table, "score", 0.5),
        ext=_normalize_ext(_get_str(table, "ext", DEFAULT_OUTPUT_EXT)),
        image_workers=_get_optional_int(table, "image_workers"),
        save_workers=_get_optional_int(table, "save_workers"),
        recursive=_get_bool(table, "recursive", False),
        extensions=_get_str_list(table, "extensions", DEFAULT_INPUT_EXTENSIONS),
        progress=_get_bool(table, "progress", True),
    )

    validate_config(config)
    return config
