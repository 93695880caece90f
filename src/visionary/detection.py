"""Open-vocabulary object detection on Hugging Face zero-shot detectors.

``OpenVocabularyDetector`` wraps a GroundingDINO / LLMDet style model with
device auto-selection (CUDA→MPS→CPU). Boxes come back in image pixels, so every
detection declares ``pixel_absolute``.
"""

from __future__ import annotations

import os
from typing import List

import torch  # type: ignore
from dotenv import load_dotenv
from PIL import Image
from transformers import (  # type: ignore
    AutoModelForZeroShotObjectDetection,
    AutoProcessor,
)

from visionary.logging import get_logger
from visionary.schemas import Box, CoordinateSpace, Detection, DetectionKind
from visionary.utils.objects import loose_label_filter

logger = get_logger(__name__)


load_dotenv()


__all__ = ["OpenVocabularyDetector", "OVDMODEL", "DEFAULT_VOCABULARY"]

OVDMODEL = os.environ.get("VISIONARY_OVD_MODEL", "IDEA-Research/grounding-dino-tiny")

# Prompt used when the agent asks for "all prominent objects".
DEFAULT_VOCABULARY: List[str] = [
    "person", "car", "bicycle", "motorcycle", "bus", "truck", "traffic light",
    "stop sign", "dog", "cat", "bird", "horse", "chair", "couch", "table",
    "bed", "tv", "laptop", "keyboard", "cell phone", "book", "clock", "cup",
    "bottle", "bowl", "backpack", "handbag", "umbrella", "potted plant", "remote",
]


def _pick_device(device: str) -> str:
    if device != "auto":
        return device
    if torch.cuda.is_available():  # pragma: no cover - device availability
        return "cuda"
    if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():  # pragma: no cover
        return "mps"
    return "cpu"


class OpenVocabularyDetector:
    """Zero-shot detector implementing the object-detection capability.

    Parameters
    ----------
    model_id : str | None
        Hugging Face model id. Falls back to env default.
    device : str
        'auto' chooses CUDA→MPS→CPU; otherwise explicit device string.
    threshold : float
        Score threshold applied in post-processing.
    """

    def __init__(
        self,
        model_id: str | None = OVDMODEL,
        device: str = "auto",
        threshold: float = 0.3,
    ) -> None:
        self.device = _pick_device(device)
        self.model_id = model_id or OVDMODEL
        self.processor = AutoProcessor.from_pretrained(self.model_id)
        self.model = AutoModelForZeroShotObjectDetection.from_pretrained(self.model_id).to(
            self.device
        )
        self.model.eval()
        logger.info(f"loaded detector model '{self.model_id}' on device '{self.device}'")
        self.threshold = threshold

    def detect(self, image: Image.Image, label_filter: List[str]) -> List[Detection]:
        prompts = list(label_filter) or DEFAULT_VOCABULARY
        detections = self._run(image, prompts)
        return loose_label_filter(detections, list(label_filter))

    def _run(self, image: Image.Image, prompts: List[str]) -> List[Detection]:
        width, height = image.width, image.height
        inputs = self.processor(images=image, text=[prompts], return_tensors="pt").to(
            self.device
        )
        with torch.no_grad():  # pragma: no cover - inference
            outputs = self.model(**inputs)
        # Prefer grounded post-process when available
        if hasattr(self.processor, "post_process_grounded_object_detection"):
            processed = self.processor.post_process_grounded_object_detection(
                outputs, threshold=self.threshold, target_sizes=[(height, width)]
            )[0]
        else:  # pragma: no cover - fallback path
            processed = self.processor.post_process_object_detection(
                outputs, threshold=self.threshold, target_sizes=[(height, width)]
            )[0]
        return boxes_to_detections(
            processed.get("boxes", []),
            processed.get("scores", []),
            processed.get("text_labels", processed.get("labels", [])),
            source=self.model_id,
        )


def boxes_to_detections(boxes, scores, labels, source: str | None = None) -> List[Detection]:
    """Convert post-processed tensors/lists into pixel-space detections, skipping malformed rows."""
    detections: List[Detection] = []
    for box, score, lbl in zip(boxes, scores, labels):
        try:
            if hasattr(box, "tolist"):
                x1, y1, x2, y2 = [float(x) for x in box.tolist()]
            else:
                vals = list(box)  # type: ignore[arg-type]
                if len(vals) != 4:
                    continue
                x1, y1, x2, y2 = [float(x) for x in vals]
            score_val = float(score.item()) if hasattr(score, "item") else float(score)
            detections.append(
                Detection(
                    label=lbl if isinstance(lbl, str) else str(lbl),
                    confidence=min(1.0, max(0.0, score_val)),
                    box=Box(xmin=x1, ymin=y1, xmax=x2, ymax=y2),
                    coordinate_space=CoordinateSpace.PIXEL_ABSOLUTE,
                    kind=DetectionKind.OBJECT,
                    source=source,
                )
            )
        except Exception as e:  # pragma: no cover - skip malformed
            logger.warning(
                f"skipping malformed detection box/score/label: {box}, {score}, {lbl}: {e}"
            )
            continue
    return detections
