"""Tesseract-backed text recognition.

Word boxes come from ``pytesseract.image_to_data`` in image pixels, so every
detection declares ``pixel_absolute``. Tesseract confidences are 0-100 with
-1 for layout rows; those rows are skipped.
"""

from __future__ import annotations

from typing import Any, Dict, List

import pytesseract
from PIL import Image

from .logging import get_logger
from .schemas import Box, CoordinateSpace, Detection, DetectionKind

logger = get_logger(__name__)

__all__ = ["TesseractOCR", "words_from_data"]


def words_from_data(data: Dict[str, List[Any]], min_confidence: float = 0.0) -> List[Detection]:
    """Turn an ``image_to_data`` DICT into word detections."""
    n = len(data.get("text", []))
    out: List[Detection] = []
    for idx in range(n):
        text = (data["text"][idx] or "").strip()
        if not text:
            continue
        try:
            conf = float(data.get("conf", ["-1"] * n)[idx])
        except (TypeError, ValueError):
            conf = -1.0
        if conf < 0 or conf < min_confidence:
            continue
        left = int(data.get("left", [0] * n)[idx])
        top = int(data.get("top", [0] * n)[idx])
        w = int(data.get("width", [0] * n)[idx])
        h = int(data.get("height", [0] * n)[idx])
        if w <= 0 or h <= 0:
            continue
        out.append(
            Detection(
                label=text,
                confidence=min(1.0, conf / 100.0),
                box=Box(xmin=left, ymin=top, xmax=left + w, ymax=top + h),
                coordinate_space=CoordinateSpace.PIXEL_ABSOLUTE,
                kind=DetectionKind.TEXT,
                source="tesseract",
            )
        )
    return out


class TesseractOCR:
    """Text-recognition capability on the local Tesseract binary.

    Construction checks the binary is reachable so a missing install shows up
    as a failed capability rather than an error on every call.
    """

    def __init__(self, lang: str = "eng", config: str = "--oem 3 --psm 3", min_confidence: float = 30.0) -> None:
        self.version = pytesseract.get_tesseract_version()
        self.lang = lang
        self.config = config
        self.min_confidence = min_confidence
        logger.info("tesseract %s ready (lang=%s)", self.version, lang)

    def recognize(self, image: Image.Image, focus_area: str | None = None) -> List[Detection]:
        # Tesseract reads everything; focus_area is only echoed back to the agent.
        data = pytesseract.image_to_data(
            image.convert("RGB"),
            lang=self.lang,
            config=self.config,
            output_type=pytesseract.Output.DICT,
        )
        words = words_from_data(data, self.min_confidence)
        logger.debug("tesseract found %d words", len(words))
        return words
