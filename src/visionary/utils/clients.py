from __future__ import annotations

from dataclasses import dataclass
import os

from dotenv import load_dotenv
from openai import OpenAI

load_dotenv()

__all__ = ["AIClient"]


@dataclass
class AIClient:
    """Unified OpenAI-compatible chat client for the agent and VLM-backed tools.

    Wraps the OpenAI SDK 1.x client and stores a model name plus optional base_url.
    Retries are the SDK's job (``max_retries``); callers above never retry.
    """

    model: str
    base_url: str | None = None
    api_key_env: str = "VISIONARY_API_KEY"
    max_retries: int = 2
    timeout: float | None = None

    def __post_init__(self) -> None:
        base_url = self.base_url or os.environ.get("VISIONARY_API_BASE")
        kwargs = {}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        self.client = OpenAI(
            api_key=os.environ.get(self.api_key_env) or os.environ.get("OPENAI_API_KEY"),
            base_url=base_url,
            max_retries=self.max_retries,
            **kwargs,
        )
        self.provider = "openai" if not base_url else "custom"
