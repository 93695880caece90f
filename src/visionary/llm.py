"""Language-model transport: one chat session with function calling.

The orchestrator only sees ``ChatModel``: send a turn, get text and/or tool
requests back. ``OpenAIChatModel`` implements it on any OpenAI-compatible
chat-completions endpoint and owns the running message history.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Protocol, cast

from openai.types.chat import ChatCompletionMessageParam

from .errors import AgentCommunicationError
from .logging import get_logger
from .schemas import ModelReply, ToolRequest, ToolResultMessage
from .utils.clients import AIClient
from .utils.images import ActiveImage

logger = get_logger(__name__)

__all__ = ["SYSTEM_PROMPT", "ChatModel", "OpenAIChatModel", "parse_tool_arguments"]

SYSTEM_PROMPT = """
You are Visionary, an agent that coordinates specialized machine-vision models.
You cannot see the image yourself. To learn what it contains you must call your tools:
- detect_objects: open-vocabulary object detection, for finding, counting and locating things.
- read_text: optical character recognition, for reading signs, documents and labels.

Rules:
- Call a tool before answering any question about the image content.
- Tool results report boxes as [xmin, ymin, xmax, ymax] in image pixels, origin top-left.
- If a tool returns an error, tell the user plainly and suggest what might help.
- Synthesize tool output into a short, natural answer; do not paste raw JSON.
""".strip()


class ChatModel(Protocol):
    def send_turn(self, text: str, image: ActiveImage | None = None) -> ModelReply: ...

    def send_tool_results(self, results: List[ToolResultMessage]) -> ModelReply: ...

    def reset(self) -> None: ...

    def discard_pending(self) -> None: ...


def parse_tool_arguments(raw: Any) -> Dict[str, Any]:
    """Decode the JSON argument string of a tool call; malformed input means no arguments."""
    if isinstance(raw, dict):
        return raw
    if not raw or not isinstance(raw, str):
        return {}
    try:
        data = json.loads(raw)
    except Exception:  # noqa: BLE001
        logger.warning("unparseable tool arguments, ignoring: %r", raw[:200])
        return {}
    return data if isinstance(data, dict) else {}


class OpenAIChatModel:
    """Chat session against an OpenAI-compatible endpoint.

    Any SDK exception (after the SDK's own retries) is raised as
    ``AgentCommunicationError``; a failed request is rolled back out of the
    history so the session stays consistent.
    An exchange the orchestrator abandons is dropped with ``discard_pending``.
    """

    def __init__(
        self,
        client: AIClient,
        tools: List[Dict[str, Any]],
        system_prompt: str = SYSTEM_PROMPT,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> None:
        self.client = client
        self.tools = tools
        self.system_prompt = system_prompt
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.messages: List[Dict[str, Any]] = []
        self.reset()

    def reset(self) -> None:
        self.messages = [{"role": "system", "content": self.system_prompt}]
        self._open_from: int | None = None

    def send_turn(self, text: str, image: ActiveImage | None = None) -> ModelReply:
        if image is not None:
            content: Any = [image.image_part(), {"type": "text", "text": text}]
        else:
            content = text
        self._open_from = len(self.messages) + 1
        return self._complete([{"role": "user", "content": content}])

    def send_tool_results(self, results: List[ToolResultMessage]) -> ModelReply:
        batch = [
            {
                "role": "tool",
                "tool_call_id": r.id,
                "content": json.dumps(r.payload, ensure_ascii=False, default=str),
            }
            for r in results
        ]
        return self._complete(batch)

    def discard_pending(self) -> None:
        """Roll the history back to the user message of the current exchange.

        Assistant ``tool_calls`` that never got their tool replies make every
        later request invalid, so whatever the exchange added after the user
        message is dropped.
        """
        if self._open_from is None:
            return
        dropped = len(self.messages) - self._open_from
        del self.messages[self._open_from:]
        self._open_from = None
        if dropped > 0:
            logger.info("dropped %d message(s) of an unfinished exchange from the history", dropped)

    def _complete(self, new_messages: List[Dict[str, Any]]) -> ModelReply:
        mark = len(self.messages)
        self.messages.extend(new_messages)
        kwargs: Dict[str, Any] = {
            "model": self.client.model,
            "messages": cast(List[ChatCompletionMessageParam], self.messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.tools:
            kwargs["tools"] = self.tools
        try:
            resp = self.client.client.chat.completions.create(**kwargs)
            message = resp.choices[0].message
        except Exception as e:  # noqa: BLE001
            del self.messages[mark:]
            raise AgentCommunicationError(f"language model request failed: {e}") from e

        requests: List[ToolRequest] = []
        calls: List[Dict[str, Any]] = []
        for call in message.tool_calls or []:
            fn = call.function
            requests.append(
                ToolRequest(id=call.id, name=fn.name, arguments=parse_tool_arguments(fn.arguments))
            )
            calls.append(
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": fn.name, "arguments": fn.arguments or "{}"},
                }
            )
        assistant: Dict[str, Any] = {"role": "assistant", "content": message.content}
        if calls:
            assistant["tool_calls"] = calls
        self.messages.append(assistant)
        logger.debug("model replied: text=%d chars, tool_calls=%d", len(message.content or ""), len(requests))
        return ModelReply(text=message.content, tool_requests=requests)
