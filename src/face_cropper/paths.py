from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path


def iter_image_files(*, input_dir: Path, recursive: bool, extensions: tuple[str, ...]) -> list[Path]:
    exts = tuple(x.lower() for x in extensions)
    if recursive:
        candidates = input_dir.rglob("*")
    else:
        candidates = input_dir.glob("*")

    images: list[Path] = []
    for p in candidates:
        if not p.is_file():
            continue
        if p.suffix.lower() in exts:
            images.append(p)

    images.sort()
    return images


def expand_inputs(inputs: Iterable[Path], *, recursive: bool, extensions: tuple[str, ...]) -> list[Path]:
    """
    Expands directories into the image files they contain. Other paths,
    including ones that do not exist, are kept so they can be reported as
    unreadable. Order follows `inputs`; repeated paths are kept once.
    """
    seen: set[Path] = set()
    expanded: list[Path] = []
    for path in inputs:
        if path.is_dir():
            found = iter_image_files(input_dir=path, recursive=recursive, extensions=extensions)
        else:
            found = [path]
        for p in found:
            key = p.resolve()
            if key in seen:
                continue
            seen.add(key)
            expanded.append(p)
    return expanded
