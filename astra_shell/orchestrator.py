"""Tool-calling loop between the operator, the model and the tools."""

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from astra_shell.conversation import ASSISTANT, TOOL_RESULT, USER, Conversation
from astra_shell.exceptions import LLMError
from astra_shell.llm import ChatBackend
from astra_shell.logging import get_logger
from astra_shell.tools.dispatcher import ToolDispatcher
from astra_shell.tools.registry import ToolResult
from astra_shell.tools.tool_call import ToolCallRequest, extract

log = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ITERATIONS = 10
CANCELLED_ANSWER = "Request cancelled."


def budget_exhausted_answer(max_iterations: int) -> str:
    return f"Could not complete the request within the iteration budget ({max_iterations} iterations)."


class LoopState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    HAS_TOOL_CALL = "has_tool_call"
    EXECUTING_TOOL = "executing_tool"
    FINAL_ANSWER = "final_answer"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    CANCELLED = "cancelled"


TERMINAL_STATES = {LoopState.FINAL_ANSWER, LoopState.MAX_ITERATIONS_REACHED, LoopState.CANCELLED}


@dataclass
class ToolExchange:
    """One executed tool call and its result."""

    request: ToolCallRequest
    result: ToolResult


@dataclass
class OrchestratorOutcome:
    """How one user request ended."""

    answer: str
    state: LoopState
    iterations: int
    exchanges: list[ToolExchange] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.state == LoopState.FINAL_ANSWER


class _Cancelled(Exception):
    """Raised internally when the operator cancels mid-request."""


def serialize_tool_result(request: ToolCallRequest, result: ToolResult) -> str:
    """Render a tool result as the content of a tool-result turn."""
    payload: dict[str, Any] = {"tool": request.tool_name, **result.to_payload()}
    return json.dumps(payload, ensure_ascii=False, default=str)


class Orchestrator:
    """Drive AwaitingModel -> HasToolCall -> ExecutingTool until a final answer.

    The loop is strictly sequential: one model call or one tool execution at a
    time. `cancel()` may be called from another task to stop the current request.
    """

    def __init__(
        self,
        backend: ChatBackend,
        dispatcher: ToolDispatcher,
        conversation: Conversation,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        on_state: Callable[[LoopState], None] | None = None,
        on_tool_call: Callable[[ToolCallRequest], None] | None = None,
        on_tool_result: Callable[[ToolCallRequest, ToolResult], None] | None = None,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.backend = backend
        self.dispatcher = dispatcher
        self.conversation = conversation
        self.max_iterations = max_iterations
        self.on_state = on_state
        self.on_tool_call = on_tool_call
        self.on_tool_result = on_tool_result
        self.state = LoopState.AWAITING_MODEL
        self._cancel_event = asyncio.Event()

    def cancel(self) -> None:
        """Stop the current request: no further model calls or tool dispatches."""
        log.info("Cancellation requested", state=self.state.value)
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def _transition(self, state: LoopState) -> None:
        if self._cancel_event.is_set() and state not in TERMINAL_STATES:
            raise _Cancelled()
        self.state = state
        log.debug("Loop state", state=state.value)
        if self.on_state:
            try:
                self.on_state(state)
            except Exception as e:
                log.debug("State callback failed", error=str(e))

    async def _race_cancel(self, work: Awaitable[T]) -> T:
        """Await work unless cancellation arrives first."""
        work_task = asyncio.ensure_future(work)
        cancel_task = asyncio.create_task(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {work_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if work_task in done:
                return work_task.result()
            work_task.cancel()
            try:
                await work_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                log.debug("Cancelled model call raised", error=str(e))
            raise _Cancelled()
        finally:
            if not cancel_task.done():
                cancel_task.cancel()
                try:
                    await cancel_task
                except asyncio.CancelledError:
                    pass

    def _notify(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            log.debug("Loop callback failed", error=str(e))

    async def run(self, user_text: str) -> OrchestratorOutcome:
        """Process one user request to a terminal state.

        Raises:
            LLMError if the model backend fails; the conversation stays usable
        """
        self._cancel_event = asyncio.Event()
        self.state = LoopState.AWAITING_MODEL
        self.conversation.add(USER, user_text)
        exchanges: list[ToolExchange] = []
        iterations = 0

        try:
            while iterations < self.max_iterations:
                self._transition(LoopState.AWAITING_MODEL)
                iterations += 1
                log.info("Calling model", iteration=iterations, turns=len(self.conversation))
                try:
                    reply = await self._race_cancel(self.backend.chat(self.conversation.to_messages()))
                except LLMError as e:
                    log.error("Model call failed", iteration=iterations, error=str(e))
                    raise

                request = extract(reply)
                if request is None:
                    self.conversation.add(ASSISTANT, reply)
                    self._transition(LoopState.FINAL_ANSWER)
                    return OrchestratorOutcome(reply, LoopState.FINAL_ANSWER, iterations, exchanges)

                self._transition(LoopState.HAS_TOOL_CALL)
                self.conversation.add(ASSISTANT, reply)
                self._notify(self.on_tool_call, request)

                self._transition(LoopState.EXECUTING_TOOL)
                result = await self.dispatcher.dispatch(request, abort_event=self._cancel_event)
                self.conversation.add(TOOL_RESULT, serialize_tool_result(request, result))
                exchanges.append(ToolExchange(request, result))
                self._notify(self.on_tool_result, request, result)

            self._transition(LoopState.MAX_ITERATIONS_REACHED)
            log.warning("Iteration budget exhausted", max_iterations=self.max_iterations)
            return OrchestratorOutcome(
                budget_exhausted_answer(self.max_iterations),
                LoopState.MAX_ITERATIONS_REACHED,
                iterations,
                exchanges,
            )
        except _Cancelled:
            self._transition(LoopState.CANCELLED)
            return OrchestratorOutcome(CANCELLED_ANSWER, LoopState.CANCELLED, iterations, exchanges)
