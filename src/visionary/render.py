"""Draw aggregated detections onto the active image with PIL."""

from __future__ import annotations

from typing import Sequence

from PIL import Image, ImageDraw, ImageFont

from .schemas import DetectionKind, NormalizedDetection

__all__ = ["draw_detections", "OBJECT_COLORS", "TEXT_COLOR"]

OBJECT_COLORS = ["#00ffcc", "#ff00cc", "#ffff00", "#00ccff", "#ff9900"]
TEXT_COLOR = "#00ff41"


def draw_detections(
    image: Image.Image, detections: Sequence[NormalizedDetection]
) -> Image.Image:
    """Return a copy of ``image`` with boxes and labels drawn.

    Object boxes rotate through ``OBJECT_COLORS``; text boxes are thinner and
    green with the recognized text as label. An empty sequence returns a plain
    copy.
    """
    out = image.convert("RGB").copy()
    if not detections:
        return out
    draw = ImageDraw.Draw(out)
    font = ImageFont.load_default()

    obj_idx = 0
    for det in detections:
        b = det.box
        if det.kind == DetectionKind.TEXT:
            color, width, fill_text = TEXT_COLOR, 2, TEXT_COLOR
            bg = (0, 20, 0)
            label = det.label
        else:
            color = OBJECT_COLORS[obj_idx % len(OBJECT_COLORS)]
            obj_idx += 1
            width, fill_text, bg = 3, "#000000", color
            label = det.label if det.confidence is None else f"{det.label} {det.confidence:.2f}"

        draw.rectangle([b.xmin, b.ymin, b.xmax, b.ymax], outline=color, width=width)

        tx0, ty0, tx1, ty1 = draw.textbbox((0, 0), label, font=font)
        tw, th = tx1 - tx0 + 8, ty1 - ty0 + 6
        # Label above the box when there is room, otherwise inside its top edge.
        ly = b.ymin - th if b.ymin > th else b.ymin
        draw.rectangle([b.xmin, ly, b.xmin + tw, ly + th], fill=bg)
        draw.text((b.xmin + 4, ly + 3 - ty0), label, fill=fill_text, font=font)
    return out
