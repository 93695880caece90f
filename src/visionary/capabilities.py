"""Perception capability handles and the registry the orchestrator is built with.

Each capability is wrapped in a ``CapabilityHandle`` with an explicit lifecycle
``uninitialized -> initializing -> ready | failed``. Model weights are loaded on
first use (or on ``warm_up``), never at import time.
"""

from __future__ import annotations

from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Generic, List, Protocol, TypeVar

from PIL import Image

from .errors import CapabilityUnavailableError
from .logging import get_logger
from .schemas import Detection, SessionConfig

logger = get_logger(__name__)

__all__ = [
    "DETECT_OBJECTS",
    "READ_TEXT",
    "KNOWN_TOOLS",
    "ObjectDetector",
    "TextRecognizer",
    "CapabilityState",
    "CapabilityHandle",
    "CapabilityRegistry",
    "build_default_registry",
]

DETECT_OBJECTS = "detect_objects"
READ_TEXT = "read_text"
KNOWN_TOOLS = (DETECT_OBJECTS, READ_TEXT)

T = TypeVar("T")


class ObjectDetector(Protocol):
    def detect(self, image: Image.Image, label_filter: List[str]) -> List[Detection]: ...


class TextRecognizer(Protocol):
    def recognize(self, image: Image.Image, focus_area: str | None = None) -> List[Detection]: ...


class CapabilityState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class CapabilityHandle(Generic[T]):
    """Lazily constructed capability.

    ``get`` builds the instance through ``factory`` exactly once. A failed
    initialization is terminal: later calls raise ``CapabilityUnavailableError``
    with the original reason instead of retrying a broken model load.
    """

    def __init__(self, name: str, factory: Callable[[], T]) -> None:
        self.name = name
        self._factory = factory
        self._instance: T | None = None
        self._state = CapabilityState.UNINITIALIZED
        self._error: str | None = None
        self._lock = Lock()

    @classmethod
    def ready(cls, name: str, instance: T) -> "CapabilityHandle[T]":
        handle: CapabilityHandle[T] = cls(name, lambda: instance)
        handle._instance = instance
        handle._state = CapabilityState.READY
        return handle

    @property
    def state(self) -> CapabilityState:
        return self._state

    @property
    def error(self) -> str | None:
        return self._error

    def get(self) -> T:
        with self._lock:
            if self._state == CapabilityState.READY:
                return self._instance  # type: ignore[return-value]
            if self._state == CapabilityState.FAILED:
                raise CapabilityUnavailableError(
                    f"{self.name} failed to initialize: {self._error}"
                )
            self._state = CapabilityState.INITIALIZING
            logger.info("initializing capability '%s'", self.name)
            try:
                instance = self._factory()
            except Exception as e:  # noqa: BLE001
                self._state = CapabilityState.FAILED
                self._error = str(e) or type(e).__name__
                logger.error("capability '%s' failed to initialize: %s", self.name, self._error)
                raise CapabilityUnavailableError(
                    f"{self.name} failed to initialize: {self._error}"
                ) from e
            self._instance = instance
            self._state = CapabilityState.READY
            logger.info("capability '%s' ready", self.name)
            return instance


class CapabilityRegistry:
    """Maps tool names to capability handles."""

    def __init__(self) -> None:
        self._handles: Dict[str, CapabilityHandle[Any]] = {}

    def register(self, tool_name: str, handle: CapabilityHandle[Any]) -> None:
        if tool_name not in KNOWN_TOOLS:
            raise ValueError(f"no argument schema for tool '{tool_name}'; known: {', '.join(KNOWN_TOOLS)}")
        self._handles[tool_name] = handle

    def get(self, tool_name: str) -> CapabilityHandle[Any] | None:
        return self._handles.get(tool_name)

    def names(self) -> List[str]:
        return list(self._handles)

    def status(self) -> Dict[str, str]:
        return {name: h.state.value for name, h in self._handles.items()}

    def warm_up(self) -> Dict[str, str]:
        """Initialize every handle now; failures are logged and left in ``failed`` state."""
        for name, handle in self._handles.items():
            try:
                handle.get()
            except CapabilityUnavailableError as e:
                logger.warning("warm-up of '%s' failed: %s", name, e)
        return self.status()

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._handles

    def __len__(self) -> int:
        return len(self._handles)


def build_default_registry(config: SessionConfig) -> CapabilityRegistry:
    """Registry with the backends selected by ``config.detector`` and ``config.ocr``.

    Backend modules are imported inside the factories so heavy dependencies
    (torch, transformers) load only when a capability is first used.
    """

    def _ovd() -> ObjectDetector:
        from .detection import OpenVocabularyDetector

        return OpenVocabularyDetector(
            config.detector_model or None, threshold=config.detector_threshold
        )

    def _tesseract() -> TextRecognizer:
        from .ocr import TesseractOCR

        return TesseractOCR()

    def _vlm() -> Any:
        from .utils.clients import AIClient
        from .vlm import VLMPerception

        client = AIClient(
            model=config.vision_model or config.model,
            base_url=config.api_base,
            api_key_env=config.api_key_env,
            max_retries=config.max_retries,
        )
        return VLMPerception(client)

    registry = CapabilityRegistry()
    registry.register(
        DETECT_OBJECTS,
        CapabilityHandle("object-detector", _ovd if config.detector == "ovd" else _vlm),
    )
    registry.register(
        READ_TEXT,
        CapabilityHandle("text-recognizer", _tesseract if config.ocr == "tesseract" else _vlm),
    )
    return registry
