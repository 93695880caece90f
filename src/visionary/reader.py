from __future__ import annotations

import os
from typing import Dict, Generator, Iterable, Optional

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tiff", ".gif"}


def _is_image(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in IMAGE_EXTS


def _is_url(s: str) -> bool:
    return s.startswith("http://") or s.startswith("https://")


def _iter_dir(dir_path: str) -> Generator[Dict, None, None]:
    for root, dirs, files in os.walk(dir_path):
        dirs.sort()
        for name in sorted(files):
            fp = os.path.join(root, name)
            if _is_image(fp):
                yield {"path": fp, "id": os.path.relpath(fp, dir_path)}


def _iter_listfile(list_path: str) -> Generator[Dict, None, None]:
    with open(list_path, "r", encoding="utf-8") as f:
        for i, line in enumerate(f):
            s = line.strip()
            if not s or s.startswith("#"):
                continue
            if _is_url(s):
                yield {"url": s, "id": f"url:{i}"}
            elif _is_image(s):
                yield {"path": s, "id": os.path.basename(s)}


def iter_images(inp: str, limit: Optional[int] = None) -> Iterable[Dict]:
    """Yield image items from a single image, a URL, a folder or a list file.

    Each item contains ``path`` or ``url`` plus an ``id``. A ``.txt`` list file
    holds one path or URL per line.
    """
    if _is_url(inp):
        it: Iterable[Dict] = iter([{"url": inp, "id": inp}])
    elif os.path.isdir(inp):
        it = _iter_dir(inp)
    elif os.path.isfile(inp) and _is_image(inp):
        it = iter([{"path": inp, "id": os.path.basename(inp)}])
    elif os.path.isfile(inp):
        it = _iter_listfile(inp)
    else:
        raise FileNotFoundError(f"input not found: {inp}")

    for count, item in enumerate(it, start=1):
        yield item
        if limit and count >= limit:
            break
