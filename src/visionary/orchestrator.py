"""Conversation state and the tool-call loop that drives one exchange.

One exchange: record the user turn, ask the model, and while the model asks
for tools run every requested tool of that reply (in parallel), log each call
in the ledger, fold detections into the aggregator, and send all results back
as a single follow-up turn. The loop ends when a reply carries no tool calls.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Any, Callable, Dict, List, Sequence, Tuple

from .aggregator import DetectionAggregator
from .capabilities import CapabilityRegistry, build_default_registry
from .coords import normalize_all
from .dispatcher import CapabilityDispatcher
from .errors import (
    AgentCommunicationError,
    ConversationBusyError,
    DispatchError,
    ExchangeCancelledError,
    OrchestratorError,
    ToolLoopExceededError,
)
from .ledger import ToolLedger
from .llm import ChatModel, OpenAIChatModel
from .logging import get_logger
from .schemas import (
    FinalAnswer,
    ModelReply,
    SessionConfig,
    ToolRequest,
    ToolResult,
    ToolResultMessage,
    Turn,
    TurnRole,
)
from .utils.clients import AIClient
from .utils.concurrency import CancelToken, iter_completed, wait_for
from .utils.images import ActiveImage

logger = get_logger(__name__)

__all__ = ["Conversation", "Orchestrator", "OrchestratorState"]


class OrchestratorState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL_TURN = "awaiting_model_turn"
    DISPATCHING_TOOLS = "dispatching_tools"


class Conversation:
    """Ordered turns plus the active image, its detections and the tool ledger.

    Only the orchestrator mutates a conversation, one exchange at a time.
    """

    def __init__(self) -> None:
        self._turns: List[Turn] = []
        self.active_image: ActiveImage | None = None
        self.aggregator = DetectionAggregator()
        self.ledger = ToolLedger()

    @property
    def turns(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    def record(
        self, role: TurnRole, text: str, tool_requests: Sequence[ToolRequest] = ()
    ) -> Turn:
        turn = Turn(role=role, text=text, tool_requests=list(tool_requests))
        self._turns.append(turn)
        return turn

    def replace_image(self, image: ActiveImage) -> None:
        self.active_image = image
        self.aggregator.reset(image.size)
        self.record(TurnRole.SYSTEM, f"Image uploaded: {image.name}")
        logger.info("active image is now %s (%dx%d)", image.name, image.width, image.height)


class Orchestrator:
    """Runs exchanges for one conversation.

    A second message while an exchange is running is rejected with
    ``ConversationBusyError`` instead of interleaving turns.
    """

    def __init__(
        self,
        model: ChatModel,
        dispatcher: CapabilityDispatcher,
        conversation: Conversation | None = None,
        config: SessionConfig | None = None,
    ) -> None:
        self.model = model
        self.dispatcher = dispatcher
        self.conversation = conversation or Conversation()
        self.config = config or SessionConfig()
        self._guard = threading.Lock()
        self._state = OrchestratorState.IDLE
        self._model_calls: List[Future[ModelReply]] = []
        self._abandoned: Future[ModelReply] | None = None

    @classmethod
    def from_config(
        cls, config: SessionConfig, registry: CapabilityRegistry | None = None
    ) -> "Orchestrator":
        """Wire the OpenAI transport and the configured perception backends."""
        dispatcher = CapabilityDispatcher(registry or build_default_registry(config))
        client = AIClient(
            model=config.model,
            base_url=config.api_base,
            api_key_env=config.api_key_env,
            max_retries=config.max_retries,
        )
        model = OpenAIChatModel(
            client, dispatcher.tool_definitions(), temperature=config.temperature
        )
        return cls(model, dispatcher, config=config)

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._guard.locked()

    def _acquire(self) -> None:
        if not self._guard.acquire(blocking=False):
            raise ConversationBusyError("an exchange is already in progress for this conversation")

    def upload_image(self, image: ActiveImage) -> None:
        self._acquire()
        try:
            self.conversation.replace_image(image)
        finally:
            self._guard.release()

    def reset(self) -> None:
        """Forget the model-side history; turns, ledger and detections are kept."""
        self._acquire()
        try:
            self._settle_abandoned()
            self.model.reset()
        finally:
            self._guard.release()

    def handle_user_message(
        self,
        text: str,
        image: ActiveImage | None = None,
        cancel: CancelToken | None = None,
    ) -> FinalAnswer:
        """Run one exchange to completion and return the agent's final answer.

        Raises ``ConversationBusyError`` without side effects if an exchange
        is already running. Transport failure raises ``AgentCommunicationError``;
        cancellation raises ``ExchangeCancelledError``; hitting the round cap
        raises ``ToolLoopExceededError``. Each of these leaves a system turn
        and rolls the model history back so the next message starts clean.
        """
        self._acquire()
        if self.config.timeout is not None and cancel is None:
            cancel = CancelToken(timeout=self.config.timeout)
        executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="visionary"
        )
        try:
            self._settle_abandoned()
            if image is not None and image is not self.conversation.active_image:
                self.conversation.replace_image(image)
            return self._run_exchange(text, executor, cancel)
        except ExchangeCancelledError:
            self._rollback_model()
            for inv_id in self.conversation.ledger.pending_ids():
                self.conversation.ledger.fail(inv_id, "Cancelled")
            self.conversation.record(TurnRole.SYSTEM, "Request cancelled.")
            logger.warning("exchange cancelled")
            raise
        except AgentCommunicationError as e:
            self._rollback_model()
            self.conversation.record(TurnRole.SYSTEM, f"Communication error with the agent: {e}")
            logger.error("agent communication failed: %s", e)
            raise
        except OrchestratorError as e:
            self._rollback_model()
            self.conversation.record(TurnRole.SYSTEM, f"Error: {e}")
            logger.error("exchange aborted: %s", e)
            raise
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            self._model_calls = []
            self._state = OrchestratorState.IDLE
            self._guard.release()

    def _run_exchange(
        self, text: str, executor: ThreadPoolExecutor, cancel: CancelToken | None
    ) -> FinalAnswer:
        conv = self.conversation
        conv.record(TurnRole.USER, text)
        reply = self._call_model(executor, cancel, self.model.send_turn, text, conv.active_image)

        rounds = 0
        invocation_ids: List[str] = []
        new_detections = 0
        while reply.tool_requests:
            if rounds >= self.config.max_tool_rounds:
                raise ToolLoopExceededError(self.config.max_tool_rounds)
            rounds += 1
            _check_unique_ids(reply)
            conv.record(TurnRole.AGENT, reply.text or "", reply.tool_requests)
            messages, added = self._dispatch_round(
                executor, cancel, reply.tool_requests, invocation_ids
            )
            new_detections += added
            reply = self._call_model(executor, cancel, self.model.send_tool_results, messages)

        final = reply.text or ""
        conv.record(TurnRole.AGENT, final)
        logger.info(
            "exchange done: rounds=%d tools=%d new_detections=%d",
            rounds,
            len(invocation_ids),
            new_detections,
        )
        return FinalAnswer(
            text=final,
            rounds=rounds,
            invocation_ids=invocation_ids,
            new_detections=new_detections,
        )

    def _call_model(
        self,
        executor: ThreadPoolExecutor,
        cancel: CancelToken | None,
        fn: Callable[..., ModelReply],
        *args: Any,
    ) -> ModelReply:
        self._state = OrchestratorState.AWAITING_MODEL_TURN
        if cancel is not None:
            cancel.raise_if_cancelled()
        fut = executor.submit(fn, *args)
        self._model_calls.append(fut)
        try:
            return wait_for(fut, cancel)
        except (AgentCommunicationError, ExchangeCancelledError):
            raise
        except Exception as e:  # noqa: BLE001
            raise AgentCommunicationError(f"language model request failed: {e}") from e

    def _rollback_model(self) -> None:
        calls = self._model_calls
        self._model_calls = []
        # the opening turn never ran, so the model history is untouched
        if not calls or calls[0].cancel():
            return
        last = calls[-1]
        if last.cancel() or last.done():
            self.model.discard_pending()
        else:
            # still running; its reply is dropped once it lands
            self._abandoned = last

    def _settle_abandoned(self) -> None:
        fut, self._abandoned = self._abandoned, None
        if fut is None:
            return
        if not fut.done():
            logger.info("waiting for an abandoned model call to return")
        wait([fut])
        self.model.discard_pending()

    def _dispatch_round(
        self,
        executor: ThreadPoolExecutor,
        cancel: CancelToken | None,
        requests: List[ToolRequest],
        invocation_ids: List[str],
    ) -> Tuple[List[ToolResultMessage], int]:
        self._state = OrchestratorState.DISPATCHING_TOOLS
        conv = self.conversation
        image = conv.active_image
        ledger = conv.ledger

        in_flight: Dict[Future[ToolResult], str] = {}
        inv_for: Dict[str, str] = {}
        for req in requests:
            inv = ledger.begin(req)
            inv_for[req.id] = inv.id
            invocation_ids.append(inv.id)
            in_flight[executor.submit(self._run_tool, req, image)] = req.id

        results: Dict[str, ToolResult] = {}
        added = 0
        for fut in iter_completed(in_flight, cancel):
            result = fut.result()
            results[in_flight[fut]] = result
            inv_id = inv_for[result.request_id]
            if result.ok:
                ledger.succeed(inv_id, result.payload())
                if image is not None:
                    normalized = normalize_all(result.detections, image.width, image.height)
                    added += conv.aggregator.append(normalized)
            else:
                ledger.fail(inv_id, result.error or "unknown error")

        messages = [
            ToolResultMessage(id=req.id, name=req.name, payload=results[req.id].payload())
            for req in requests
        ]
        return messages, added

    def _run_tool(self, request: ToolRequest, image: ActiveImage | None) -> ToolResult:
        try:
            return self.dispatcher.dispatch(request, image)
        except DispatchError as e:
            logger.warning("tool %s rejected: %s", request.name, e)
            return ToolResult.failure(request, str(e))
        except Exception as e:  # noqa: BLE001
            logger.error("tool %s crashed: %s", request.name, e)
            return ToolResult.failure(request, f"{request.name} failed: {e}")


def _check_unique_ids(reply: ModelReply) -> None:
    seen: set[str] = set()
    for req in reply.tool_requests:
        if req.id in seen:
            raise AgentCommunicationError(f"model returned duplicate tool call id '{req.id}'")
        seen.add(req.id)
