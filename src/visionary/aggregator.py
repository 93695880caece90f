"""Accumulated detections for the active image."""

from __future__ import annotations

from typing import Iterable

from .errors import StaleDetectionError
from .logging import get_logger
from .schemas import NormalizedDetection

logger = get_logger(__name__)

__all__ = ["DetectionAggregator"]


class DetectionAggregator:
    """Ordered, append-only set of normalized detections scoped to one image.

    ``reset`` is the only way to drop entries and must be called whenever the
    active image changes. No deduplication: an object box and a text box over
    the same region are both kept and told apart by ``kind``.
    """

    def __init__(self, image_size: tuple[int, int] | None = None) -> None:
        self._items: list[NormalizedDetection] = []
        self._image_size = image_size

    @property
    def image_size(self) -> tuple[int, int] | None:
        return self._image_size

    def append(self, detections: Iterable[NormalizedDetection]) -> int:
        batch = list(detections)
        for det in batch:
            size = (det.image_width, det.image_height)
            if self._image_size is not None and size != self._image_size:
                raise StaleDetectionError(
                    f"detection normalized for {size[0]}x{size[1]} "
                    f"but active image is {self._image_size[0]}x{self._image_size[1]}"
                )
        self._items.extend(batch)
        return len(batch)

    def reset(self, image_size: tuple[int, int] | None = None) -> None:
        if self._items:
            logger.debug("clearing %d detections", len(self._items))
        self._items = []
        self._image_size = image_size

    def snapshot(self) -> tuple[NormalizedDetection, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)
