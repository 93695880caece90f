"""visionary package

High-level goal: let a tool-calling chat model answer questions about an uploaded image by
dispatching object detection and OCR capabilities, normalizing every box into the image's pixel
space and keeping an auditable log of each tool call.

Public entry points kept minimal. Most users interact through the CLI (`visionary`).
"""
from .orchestrator import Conversation, Orchestrator  # re-export core API
from .schemas import (
    Box,
    CoordinateSpace,
    Detection,
    FinalAnswer,
    NormalizedDetection,
    SessionConfig,
    ToolInvocation,
)

__all__ = [
    "Box",
    "CoordinateSpace",
    "Conversation",
    "Detection",
    "FinalAnswer",
    "NormalizedDetection",
    "Orchestrator",
    "SessionConfig",
    "ToolInvocation",
]
