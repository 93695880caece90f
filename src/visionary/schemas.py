"""Pydantic models describing detections, tool traffic, turns and session config."""

from __future__ import annotations

import os
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, validator

from .logging import get_logger

logger = get_logger(__name__)
load_dotenv()


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CoordinateSpace(str, Enum):
    PIXEL_ABSOLUTE = "pixel_absolute"
    NORMALIZED_01 = "normalized_01"
    NORMALIZED_0_1000 = "normalized_0_1000"


class DetectionKind(str, Enum):
    OBJECT = "object"
    TEXT = "text"


class TurnRole(str, Enum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class InvocationStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class Box(BaseModel):
    """Axis-aligned box as (xmin, ymin, xmax, ymax) in whatever space its detection declares."""

    model_config = ConfigDict(frozen=True)

    xmin: float
    ymin: float
    xmax: float
    ymax: float

    def max_value(self) -> float:
        return max(self.xmin, self.ymin, self.xmax, self.ymax)

    def rounded(self, ndigits: int = 1) -> list[float]:
        return [round(v, ndigits) for v in (self.xmin, self.ymin, self.xmax, self.ymax)]


class Detection(BaseModel):
    """One box produced by a perception capability.

    ``coordinate_space=None`` marks an unannotated producer; the normalizer then
    falls back to a best-effort guess.
    """

    model_config = ConfigDict(frozen=True)

    label: str
    confidence: float | None = Field(None, ge=0, le=1)
    box: Box
    coordinate_space: CoordinateSpace | None = None
    kind: DetectionKind = DetectionKind.OBJECT
    source: str | None = None


class NormalizedDetection(Detection):
    """Detection in pixel space of the image it was normalized against."""

    coordinate_space: CoordinateSpace = CoordinateSpace.PIXEL_ABSOLUTE
    image_width: int = Field(..., gt=0)
    image_height: int = Field(..., gt=0)

    @validator("coordinate_space")
    def _pixel_only(cls, v: CoordinateSpace) -> CoordinateSpace:  # noqa: D401
        if v != CoordinateSpace.PIXEL_ABSOLUTE:
            raise ValueError("normalized detections are always pixel_absolute")
        return v

    @validator("image_height")
    def _box_inside(cls, v: int, values):  # noqa: D401
        box = values.get("box")
        width = values.get("image_width")
        if box is None or width is None:
            return v
        if not (0 <= box.xmin < box.xmax <= width):
            raise ValueError("x extent must satisfy 0 <= xmin < xmax <= image_width")
        if not (0 <= box.ymin < box.ymax <= v):
            raise ValueError("y extent must satisfy 0 <= ymin < ymax <= image_height")
        return v


class ToolRequest(BaseModel):
    """A tool call emitted by the language model."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: dict[str, str] = Field(default_factory=dict)

    @validator("arguments", pre=True)
    def _coerce_args(cls, v: Any) -> dict[str, str]:  # noqa: D401
        # Model output is free-form: anything that is not a mapping means "no arguments".
        if not isinstance(v, dict):
            return {}
        out: dict[str, str] = {}
        for key, val in v.items():
            if val is None:
                continue
            if isinstance(val, (list, tuple)):
                out[str(key)] = ", ".join(str(x) for x in val)
            else:
                out[str(key)] = str(val)
        return out


class ModelReply(BaseModel):
    text: str | None = None
    tool_requests: list[ToolRequest] = Field(default_factory=list)


class ToolResultMessage(BaseModel):
    """One entry of the batched follow-up turn sent back to the model."""

    id: str
    name: str
    payload: dict[str, Any]


class ToolResult(BaseModel):
    request_id: str
    tool_name: str
    status: InvocationStatus
    detections: list[Detection] = Field(default_factory=list)
    summary: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    @classmethod
    def success(
        cls,
        request: ToolRequest,
        detections: list[Detection],
        summary: dict[str, Any],
    ) -> "ToolResult":
        return cls(
            request_id=request.id,
            tool_name=request.name,
            status=InvocationStatus.SUCCESS,
            detections=detections,
            summary=summary,
        )

    @classmethod
    def failure(cls, request: ToolRequest, reason: str) -> "ToolResult":
        return cls(
            request_id=request.id,
            tool_name=request.name,
            status=InvocationStatus.ERROR,
            error=reason,
        )

    @property
    def ok(self) -> bool:
        return self.status == InvocationStatus.SUCCESS

    def payload(self) -> dict[str, Any]:
        """Structured body serialized back to the language model."""
        if self.ok:
            return dict(self.summary)
        return {"status": "error", "tool": self.tool_name, "error": self.error or "unknown error"}


class ToolInvocation(BaseModel):
    """Ledger entry for one tool request."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    request_id: str
    tool_name: str
    arguments_snapshot: str
    status: InvocationStatus = InvocationStatus.PENDING
    result_snapshot: str | None = None
    error: str | None = None
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None


class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    role: TurnRole
    text: str = ""
    tool_requests: list[ToolRequest] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)


class FinalAnswer(BaseModel):
    text: str
    rounds: int = 0
    invocation_ids: list[str] = Field(default_factory=list)
    new_detections: int = 0


class SessionConfig(BaseModel):
    """Session settings; defaults come from ``VISIONARY_*`` environment variables."""

    model: str = Field(default_factory=lambda: os.getenv("VISIONARY_MODEL", "gpt-4o-mini"))
    api_base: str | None = Field(default_factory=lambda: os.getenv("VISIONARY_API_BASE"))
    api_key_env: str = "VISIONARY_API_KEY"
    max_tool_rounds: int = Field(
        default_factory=lambda: int(os.getenv("VISIONARY_MAX_TOOL_ROUNDS", "8"))
    )
    max_workers: int = Field(default_factory=lambda: int(os.getenv("VISIONARY_MAX_WORKERS", "4")))
    detector: str = Field(default_factory=lambda: os.getenv("VISIONARY_DETECTOR", "ovd"))
    ocr: str = Field(default_factory=lambda: os.getenv("VISIONARY_OCR", "tesseract"))
    detector_model: str | None = Field(default_factory=lambda: os.getenv("VISIONARY_OVD_MODEL"))
    detector_threshold: float = Field(0.3, ge=0, le=1)
    vision_model: str | None = Field(default_factory=lambda: os.getenv("VISIONARY_VISION_MODEL"))
    temperature: float = 0.2
    max_retries: int = 2
    timeout: float | None = None

    @validator("max_tool_rounds", "max_workers")
    def _positive(cls, v: int) -> int:  # noqa: D401
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @validator("detector")
    def _known_detector(cls, v: str) -> str:  # noqa: D401
        v = v.strip().lower()
        if v not in ("ovd", "vlm"):
            raise ValueError("detector must be 'ovd' or 'vlm'")
        return v

    @validator("ocr")
    def _known_ocr(cls, v: str) -> str:  # noqa: D401
        v = v.strip().lower()
        if v not in ("tesseract", "vlm"):
            raise ValueError("ocr must be 'tesseract' or 'vlm'")
        return v

    @property
    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env)


# Parsing helpers
import json, re  # noqa: E402

_NUM_KEYS = ("xmin", "ymin", "xmax", "ymax")


def _extract_json_block(text: str) -> str | None:
    if not text:
        return None
    # Strip common markdown fences
    fence = re.compile(r"```(?:json)?(.*?)```", re.DOTALL | re.IGNORECASE)
    m = fence.search(text)
    if m:
        text = m.group(1)
    # Find first { and last }
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def _box_from_item(item: dict) -> Box | None:
    src = item
    for key in ("bbox", "box"):
        if isinstance(item.get(key), dict):
            src = item[key]
            break
    if all(k in src for k in _NUM_KEYS):
        return Box(**{k: float(src[k]) for k in _NUM_KEYS})
    # [ymin, xmin, ymax, xmax] as emitted by some grounding VLMs
    b2d = item.get("box_2d")
    if isinstance(b2d, list) and len(b2d) == 4:
        ymin, xmin, ymax, xmax = (float(x) for x in b2d)
        return Box(xmin=xmin, ymin=ymin, xmax=xmax, ymax=ymax)
    return None


def safe_parse_detections(
    raw: str,
    *,
    kind: DetectionKind,
    space: CoordinateSpace | None,
    list_keys: tuple[str, ...] = ("objects", "detections", "text_blocks"),
    source: str | None = None,
) -> tuple[list[Detection], str | None]:
    """Parse model JSON text into detections. Return (detections, error_message)."""
    block = _extract_json_block(raw) or raw
    try:
        data = json.loads(block)
    except Exception as e:  # noqa: BLE001
        return [], f"json_load_error: {e}"
    if isinstance(data, dict):
        for key in list_keys:
            if key in data:
                data = data[key]
                break
    if not isinstance(data, list):
        return [], "data_not_list"
    out: list[Detection] = []
    for item in data:
        if not isinstance(item, dict):
            logger.warning("Skipping non-dict item in detections list: %s", type(item).__name__)
            continue
        label = item.get("label") or item.get("text") or item.get("name")
        if not label:
            logger.warning("Skipping item with missing label field: %s", item)
            continue
        try:
            box = _box_from_item(item)
            if box is None:
                logger.warning("Skipping item with missing box: %s", item)
                continue
            conf = item.get("confidence", item.get("score"))
            confidence = min(1.0, max(0.0, float(conf))) if conf is not None else None
            out.append(
                Detection(
                    label=str(label),
                    confidence=confidence,
                    box=box,
                    coordinate_space=space,
                    kind=kind,
                    source=source,
                )
            )
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to create Detection from %s: %s", item, e)
            continue
    return out, None
