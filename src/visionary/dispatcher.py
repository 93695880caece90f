"""Routes tool requests from the agent to perception capabilities.

Arguments come straight from the language model's free-form generation, so
parsing is permissive: anything malformed degrades to "no filter" rather than
failing the call. Capability exceptions never escape ``dispatch``; they come
back as error results the agent can reason about.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Union

from pydantic import BaseModel, Field

from .capabilities import DETECT_OBJECTS, READ_TEXT, CapabilityRegistry
from .errors import DegenerateBoxError, NoActiveImageError, UnknownToolError
from .coords import normalize
from .logging import get_logger
from .schemas import Detection, ToolRequest, ToolResult
from .utils.images import ActiveImage
from .utils.objects import parse_label_filter

logger = get_logger(__name__)

__all__ = [
    "DetectObjectsArgs",
    "ReadTextArgs",
    "ToolArguments",
    "TOOL_DEFINITIONS",
    "parse_arguments",
    "CapabilityDispatcher",
]

# Cap on per-item lines in a summary; the agent gets counts either way.
MAX_SUMMARY_ITEMS = 50
MAX_FULL_TEXT_CHARS = 2000


class DetectObjectsArgs(BaseModel):
    tool: Literal["detect_objects"] = DETECT_OBJECTS
    target_objects: List[str] = Field(default_factory=list)


class ReadTextArgs(BaseModel):
    tool: Literal["read_text"] = READ_TEXT
    focus_area: str | None = None


ToolArguments = Union[DetectObjectsArgs, ReadTextArgs]


TOOL_DEFINITIONS: Dict[str, Dict[str, Any]] = {
    DETECT_OBJECTS: {
        "type": "function",
        "function": {
            "name": DETECT_OBJECTS,
            "description": (
                "Runs an open-vocabulary object detector on the current image and returns labels, "
                "confidences and pixel bounding boxes. Use it to find, count or locate things."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "target_objects": {
                        "type": "string",
                        "description": (
                            'Comma-separated objects to look for (e.g. "cat, dog, remote"). '
                            "Leave empty to detect all prominent objects."
                        ),
                    }
                },
            },
        },
    },
    READ_TEXT: {
        "type": "function",
        "function": {
            "name": READ_TEXT,
            "description": (
                "Runs optical character recognition on the current image and returns the text found "
                "with pixel bounding boxes. Use it to read signs, documents, labels or prices."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "focus_area": {
                        "type": "string",
                        "description": 'Optional hint about which text matters (e.g. "dates", "prices").',
                    }
                },
            },
        },
    },
}


def parse_arguments(name: str, raw: Dict[str, str]) -> ToolArguments:
    """Build the typed argument model for ``name``; never raises on bad values."""
    if name == DETECT_OBJECTS:
        return DetectObjectsArgs(target_objects=parse_label_filter(raw.get("target_objects")))
    if name == READ_TEXT:
        hint = raw.get("focus_area")
        hint = hint.strip() if isinstance(hint, str) else None
        return ReadTextArgs(focus_area=hint or None)
    raise UnknownToolError(name)


def _coordinate_note(width: int, height: int) -> str:
    return f"pixel_absolute: origin top-left, x in [0, {width}], y in [0, {height}]"


def _pixel_lines(detections: List[Detection], image: ActiveImage, quote: bool) -> List[str]:
    lines: List[str] = []
    for det in detections:
        try:
            px = normalize(det, image.width, image.height)
        except DegenerateBoxError:
            continue
        label = f'"{px.label}"' if quote else px.label
        conf = f" ({px.confidence:.2f})" if px.confidence is not None else ""
        lines.append(f"{label}{conf} at {px.box.rounded()}")
    return lines


def _base_summary(request: ToolRequest, image: ActiveImage, detections: List[Detection]) -> Dict[str, Any]:
    sources = sorted({d.source for d in detections if d.source})
    return {
        "status": "success",
        "tool": request.name,
        "model": ", ".join(sources) or None,
        "image_size": {"width": image.width, "height": image.height},
        "coordinate_space": _coordinate_note(image.width, image.height),
        "box_format": "[xmin, ymin, xmax, ymax]",
    }


def summarize_objects(
    request: ToolRequest, args: DetectObjectsArgs, image: ActiveImage, detections: List[Detection]
) -> Dict[str, Any]:
    lines = _pixel_lines(detections, image, quote=False)
    summary = _base_summary(request, image, detections)
    summary.update(
        {
            "targets": args.target_objects or "all prominent objects",
            "found_count": len(lines),
            "objects": lines[:MAX_SUMMARY_ITEMS],
        }
    )
    if len(lines) > MAX_SUMMARY_ITEMS:
        summary["truncated"] = True
    return summary


def summarize_text(
    request: ToolRequest, args: ReadTextArgs, image: ActiveImage, detections: List[Detection]
) -> Dict[str, Any]:
    lines = _pixel_lines(detections, image, quote=True)
    full_text = " ".join(d.label for d in detections)
    summary = _base_summary(request, image, detections)
    summary.update(
        {
            "focus_area": args.focus_area,
            "text_blocks_found": len(lines),
            "full_text": full_text[:MAX_FULL_TEXT_CHARS],
            "content": lines[:MAX_SUMMARY_ITEMS],
        }
    )
    if len(lines) > MAX_SUMMARY_ITEMS or len(full_text) > MAX_FULL_TEXT_CHARS:
        summary["truncated"] = True
    return summary


class CapabilityDispatcher:
    def __init__(self, registry: CapabilityRegistry) -> None:
        self.registry = registry

    def tool_definitions(self) -> List[Dict[str, Any]]:
        """OpenAI function-calling definitions for every registered tool."""
        return [TOOL_DEFINITIONS[name] for name in self.registry.names()]

    def dispatch(self, request: ToolRequest, active_image: ActiveImage | None) -> ToolResult:
        """Run ``request`` against the active image.

        Raises ``NoActiveImageError`` or ``UnknownToolError`` when the request
        cannot be routed at all; every failure past that point is returned as
        an error result.
        """
        if active_image is None:
            raise NoActiveImageError()
        handle = self.registry.get(request.name)
        if handle is None:
            raise UnknownToolError(request.name, self.registry.names())

        args = parse_arguments(request.name, request.arguments)
        logger.info("dispatching %s(%s) on %s", request.name, request.arguments, active_image.name)
        try:
            capability = handle.get()
            if isinstance(args, DetectObjectsArgs):
                detections = list(capability.detect(active_image.image, args.target_objects))
                summary = summarize_objects(request, args, active_image, detections)
            else:
                detections = list(capability.recognize(active_image.image, focus_area=args.focus_area))
                summary = summarize_text(request, args, active_image, detections)
        except Exception as e:  # noqa: BLE001
            reason = f"{request.name} failed: {e}"
            logger.warning(reason)
            return ToolResult.failure(request, reason)
        logger.info("%s returned %d detections", request.name, len(detections))
        return ToolResult.success(request, detections, summary)
