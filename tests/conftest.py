"""Shared test fixtures for visionary tests."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Callable, List

import pytest
from PIL import Image

from visionary.capabilities import DETECT_OBJECTS, READ_TEXT, CapabilityHandle, CapabilityRegistry
from visionary.dispatcher import CapabilityDispatcher
from visionary.orchestrator import Orchestrator
from visionary.schemas import (
    Box,
    CoordinateSpace,
    Detection,
    DetectionKind,
    ModelReply,
    SessionConfig,
    ToolRequest,
    ToolResultMessage,
)
from visionary.utils.images import ActiveImage


class FakeDetector:
    """Object detector returning canned detections (or raising)."""

    def __init__(self, detections: List[Detection] | None = None, error: Exception | None = None) -> None:
        self.detections = detections or []
        self.error = error
        self.calls: List[List[str]] = []
        self.release = threading.Event()
        self.block = False

    def detect(self, image: Image.Image, label_filter: List[str]) -> List[Detection]:
        self.calls.append(list(label_filter))
        if self.block:
            self.release.wait(5)
        if self.error is not None:
            raise self.error
        return list(self.detections)


class FakeRecognizer:
    def __init__(self, detections: List[Detection] | None = None, error: Exception | None = None) -> None:
        self.detections = detections or []
        self.error = error
        self.calls: List[str | None] = []

    def recognize(self, image: Image.Image, focus_area: str | None = None) -> List[Detection]:
        self.calls.append(focus_area)
        if self.error is not None:
            raise self.error
        return list(self.detections)


class ScriptedModel:
    """ChatModel that replays a script of replies.

    Items may be ``ModelReply`` objects, exceptions to raise, or zero-arg
    callables producing a reply.
    """

    def __init__(self, replies: List[Any]) -> None:
        self.replies = list(replies)
        self.turns: List[tuple[str, ActiveImage | None]] = []
        self.tool_batches: List[List[ToolResultMessage]] = []
        self.resets = 0
        self.discards = 0

    def _next(self) -> ModelReply:
        item = self.replies.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item()
        return item

    def send_turn(self, text: str, image: ActiveImage | None = None) -> ModelReply:
        self.turns.append((text, image))
        return self._next()

    def send_tool_results(self, results: List[ToolResultMessage]) -> ModelReply:
        self.tool_batches.append(list(results))
        return self._next()

    def reset(self) -> None:
        self.resets += 1

    def discard_pending(self) -> None:
        self.discards += 1


def call(call_id: str, name: str, **arguments: Any) -> ToolRequest:
    return ToolRequest(id=call_id, name=name, arguments=arguments)


def reply(text: str | None = None, *requests: ToolRequest) -> ModelReply:
    return ModelReply(text=text, tool_requests=list(requests))


def vlm_detection(label: str, box: tuple[float, float, float, float], kind: DetectionKind = DetectionKind.OBJECT) -> Detection:
    """Detection on the 0-1000 grid, as grounding VLMs report it."""
    xmin, ymin, xmax, ymax = box
    return Detection(
        label=label,
        confidence=0.9,
        box=Box(xmin=xmin, ymin=ymin, xmax=xmax, ymax=ymax),
        coordinate_space=CoordinateSpace.NORMALIZED_0_1000,
        kind=kind,
        source="fake",
    )


@pytest.fixture
def scene() -> ActiveImage:
    """800x600 active image."""
    return ActiveImage(image=Image.new("RGB", (800, 600), (40, 80, 120)), name="scene.png")


@pytest.fixture
def other_scene() -> ActiveImage:
    return ActiveImage(image=Image.new("RGB", (1000, 500), (200, 200, 200)), name="other.png")


@pytest.fixture
def test_image_path(tmp_path: Path) -> Path:
    """Write a small JPEG to disk and return its path."""
    path = tmp_path / "photo.jpg"
    Image.new("RGB", (64, 48), (255, 0, 0)).save(path, format="JPEG")
    return path


@pytest.fixture
def detector() -> FakeDetector:
    return FakeDetector([vlm_detection("cat", (100, 200, 500, 800))])


@pytest.fixture
def recognizer() -> FakeRecognizer:
    return FakeRecognizer([vlm_detection("EXIT", (0, 0, 250, 100), DetectionKind.TEXT)])


@pytest.fixture
def registry(detector: FakeDetector, recognizer: FakeRecognizer) -> CapabilityRegistry:
    reg = CapabilityRegistry()
    reg.register(DETECT_OBJECTS, CapabilityHandle.ready("object-detector", detector))
    reg.register(READ_TEXT, CapabilityHandle.ready("text-recognizer", recognizer))
    return reg


@pytest.fixture
def make_orchestrator(registry: CapabilityRegistry) -> Callable[..., Orchestrator]:
    """Build an orchestrator around a ScriptedModel and the fake registry."""

    def _make(replies: List[Any], **config: Any) -> Orchestrator:
        return Orchestrator(
            ScriptedModel(replies),
            CapabilityDispatcher(registry),
            config=SessionConfig(**config),
        )

    return _make
