from __future__ import annotations

from typing import Any, List, cast

from openai.types.chat import (
    ChatCompletionMessageParam,
    ChatCompletionUserMessageParam,
)
from dotenv import load_dotenv
from PIL import Image

from visionary.logging import get_logger
from visionary.schemas import CoordinateSpace, Detection, DetectionKind, safe_parse_detections
from visionary.utils.clients import AIClient
from visionary.utils.images import image_part_from_image
from visionary.utils.objects import loose_label_filter

logger = get_logger(__name__)
load_dotenv()

DETECT_PROMPT = """
TASK: Object detection. TARGETS: {targets}.
Return STRICT JSON only, no prose and no code fences:
{{"objects": [{{"label": "<name>", "xmin": <int>, "ymin": <int>, "xmax": <int>, "ymax": <int>}}]}}

Rules:
- Coordinates are integers on a 0-1000 scale relative to image width (x) and height (y), origin top-left.
- One entry per visible instance. Empty list if nothing matches.
""".strip()

OCR_PROMPT = """
TASK: Extract all visible text{focus}.
Return STRICT JSON only, no prose and no code fences:
{{"text_blocks": [{{"text": "<text>", "xmin": <int>, "ymin": <int>, "xmax": <int>, "ymax": <int>}}]}}

Rules:
- Coordinates are integers on a 0-1000 scale relative to image width (x) and height (y), origin top-left.
- One entry per line or word group, in reading order.
""".strip()

SYSTEM_PROMPT = "You are a computer vision model. You output ONLY JSON. You never explain."


class VLMPerception:
    """Object detection and text reading through a vision-language chat model.

    Grounding VLMs answer on a 0-1000 grid, so detections declare
    ``normalized_0_1000``. Output that cannot be parsed raises ``ValueError``
    and reaches the agent as a tool error.
    """

    def __init__(self, client: AIClient, max_tokens: int = 2048) -> None:
        self.client = client
        self.max_tokens = max_tokens

    def detect(self, image: Image.Image, label_filter: List[str]) -> List[Detection]:
        targets = ", ".join(label_filter) if label_filter else "all prominent objects"
        raw = self._ask(image, DETECT_PROMPT.format(targets=targets))
        detections = self._parse(raw, DetectionKind.OBJECT)
        return loose_label_filter(detections, list(label_filter))

    def recognize(self, image: Image.Image, focus_area: str | None = None) -> List[Detection]:
        focus = f", paying special attention to {focus_area}" if focus_area else ""
        raw = self._ask(image, OCR_PROMPT.format(focus=focus))
        return self._parse(raw, DetectionKind.TEXT)

    def _parse(self, raw: str, kind: DetectionKind) -> List[Detection]:
        detections, err = safe_parse_detections(
            raw,
            kind=kind,
            space=CoordinateSpace.NORMALIZED_0_1000,
            source=self.client.model,
        )
        if err:
            raise ValueError(f"unparseable {kind.value} output from {self.client.model}: {err}")
        return detections

    def _ask(self, image: Image.Image, prompt: str) -> str:
        parts: list[dict] = [image_part_from_image(image), {"type": "text", "text": prompt}]
        user_msg: ChatCompletionUserMessageParam = {
            "role": "user",
            # cast to Any to satisfy strict type checker for content parts
            "content": cast(Any, parts),
        }
        messages: List[ChatCompletionMessageParam] = [
            {"role": "system", "content": SYSTEM_PROMPT},
            user_msg,
        ]
        resp = self.client.client.chat.completions.create(
            model=self.client.model,
            messages=messages,
            temperature=0.01,
            max_tokens=self.max_tokens,
        )
        content = (resp.choices[0].message.content or "").strip()
        logger.debug("vlm returned %d chars", len(content))
        return content
