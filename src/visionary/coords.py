"""Coordinate normalization into image pixel space.

Capabilities report boxes in one of three conventions:

- ``pixel_absolute``: already in image pixels (Tesseract, HF detectors);
- ``normalized_01``: fractions of the image size;
- ``normalized_0_1000``: thousandths of the image size (grounding VLMs).

Producers that do not declare a space get a best-effort guess from
``infer_space``. The guess is wrong for genuine pixel boxes hugging the image
origin (every coordinate <= 1px), so every shipped capability declares its
space explicitly.
"""

from __future__ import annotations

from typing import Iterable

from .errors import DegenerateBoxError
from .logging import get_logger
from .schemas import Box, CoordinateSpace, Detection, NormalizedDetection

logger = get_logger(__name__)

__all__ = ["infer_space", "normalize", "normalize_all"]

_SCALE = {
    CoordinateSpace.PIXEL_ABSOLUTE: None,
    CoordinateSpace.NORMALIZED_01: 1.0,
    CoordinateSpace.NORMALIZED_0_1000: 1000.0,
}


def infer_space(box: Box) -> CoordinateSpace:
    """Guess the space of an unannotated box: max <= 1.0 means 0-1, anything else 0-1000."""
    if box.max_value() <= 1.0:
        return CoordinateSpace.NORMALIZED_01
    return CoordinateSpace.NORMALIZED_0_1000


def _clamp(v: float, hi: int) -> float:
    return min(float(hi), max(0.0, v))


def normalize(detection: Detection, image_width: int, image_height: int) -> NormalizedDetection:
    """Convert ``detection`` to pixel space of a ``image_width`` x ``image_height`` image.

    Raises ``DegenerateBoxError`` when the clamped box has no area.
    """
    if image_width <= 0 or image_height <= 0:
        raise ValueError(f"invalid image size {image_width}x{image_height}")

    space = detection.coordinate_space
    if space is None:
        space = infer_space(detection.box)
        logger.debug("inferred %s for unannotated box %s (best effort)", space.value, detection.box)

    b = detection.box
    scale = _SCALE[space]
    if scale is None:
        xmin, ymin, xmax, ymax = b.xmin, b.ymin, b.xmax, b.ymax
    else:
        xmin = b.xmin / scale * image_width
        xmax = b.xmax / scale * image_width
        ymin = b.ymin / scale * image_height
        ymax = b.ymax / scale * image_height

    xmin, xmax = _clamp(xmin, image_width), _clamp(xmax, image_width)
    ymin, ymax = _clamp(ymin, image_height), _clamp(ymax, image_height)
    if xmax <= xmin or ymax <= ymin:
        raise DegenerateBoxError(
            f"degenerate box for '{detection.label}' after clamping: "
            f"({xmin:.1f}, {ymin:.1f}, {xmax:.1f}, {ymax:.1f})"
        )

    return NormalizedDetection(
        label=detection.label,
        confidence=detection.confidence,
        box=Box(xmin=xmin, ymin=ymin, xmax=xmax, ymax=ymax),
        kind=detection.kind,
        source=detection.source,
        image_width=image_width,
        image_height=image_height,
    )


def normalize_all(
    detections: Iterable[Detection], image_width: int, image_height: int
) -> list[NormalizedDetection]:
    """Normalize a batch, dropping degenerate boxes."""
    out: list[NormalizedDetection] = []
    for det in detections:
        try:
            out.append(normalize(det, image_width, image_height))
        except DegenerateBoxError as e:
            logger.warning("dropping box: %s", e)
    return out
