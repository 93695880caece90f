"""Exception taxonomy.

Only transport-level failures of the language model (plus the loop cap and
cancellation) abort an exchange. Dispatch and detection errors are contained
and reported back to the agent as data.
"""
from __future__ import annotations

__all__ = [
    "VisionaryError",
    "OrchestratorError",
    "AgentCommunicationError",
    "ConversationBusyError",
    "ToolLoopExceededError",
    "ExchangeCancelledError",
    "DispatchError",
    "UnknownToolError",
    "NoActiveImageError",
    "CapabilityUnavailableError",
    "DegenerateBoxError",
    "StaleDetectionError",
    "LedgerError",
]


class VisionaryError(Exception):
    """Base class for all package errors."""


class OrchestratorError(VisionaryError):
    """An exchange could not be completed."""


class AgentCommunicationError(OrchestratorError):
    """The language-model transport failed; the exchange is aborted."""


class ConversationBusyError(OrchestratorError):
    """A message arrived while another exchange was still in flight."""


class ToolLoopExceededError(OrchestratorError):
    def __init__(self, max_rounds: int) -> None:
        super().__init__(
            f"agent kept requesting tools after {max_rounds} rounds; giving up"
        )
        self.max_rounds = max_rounds


class ExchangeCancelledError(OrchestratorError):
    """The caller cancelled the exchange or its timeout elapsed."""


class DispatchError(VisionaryError):
    """A tool request could not be routed to a capability."""


class UnknownToolError(DispatchError):
    def __init__(self, name: str, available: list[str] | None = None) -> None:
        msg = f"Tool {name} not found in registry."
        if available:
            msg += f" Available tools: {', '.join(available)}"
        super().__init__(msg)
        self.name = name


class NoActiveImageError(DispatchError):
    def __init__(self) -> None:
        super().__init__("No image context available for vision tool.")


class CapabilityUnavailableError(VisionaryError):
    """A perception capability failed to initialize."""


class DegenerateBoxError(VisionaryError, ValueError):
    """A box has zero or negative extent after clamping to the image."""


class StaleDetectionError(VisionaryError, ValueError):
    """A detection was normalized against a different image than the active one."""


class LedgerError(VisionaryError):
    """An invalid ledger transition was attempted."""
