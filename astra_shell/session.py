"""Session: one conversation, the planner/plan gate route and usage counters."""

import asyncio
import uuid
from dataclasses import asdict, dataclass, field
from typing import Callable

from astra_shell.config import Config, get_config
from astra_shell.conversation import Conversation
from astra_shell.llm import ChatBackend
from astra_shell.logging import get_logger, log_context
from astra_shell.orchestrator import LoopState, Orchestrator, OrchestratorOutcome
from astra_shell.plan import ConfirmationChannel, GateState, Plan, PlanGate, PlanOutcome
from astra_shell.planner import RulePlanner
from astra_shell.security import CommandAuditor
from astra_shell.tools.dispatcher import ToolDispatcher
from astra_shell.tools.registry import ToolRegistry, ToolResult
from astra_shell.tools.tool_call import ToolCallRequest

log = get_logger(__name__)


@dataclass
class SessionStats:
    """Counters printed by /stats."""

    queries: int = 0
    model_iterations: int = 0
    tool_calls: int = 0
    tool_failures: int = 0
    plans_run: int = 0
    plans_cancelled: int = 0
    plans_halted: int = 0
    cancelled_requests: int = 0
    backend_errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class SessionResponse:
    """What one user request produced."""

    text: str
    answer: OrchestratorOutcome | None = None
    plan: PlanOutcome | None = None

    @property
    def cancelled(self) -> bool:
        if self.answer is not None:
            return self.answer.state == LoopState.CANCELLED
        return self.plan is not None and self.plan.state == GateState.CANCELLED


def build_system_prompt(template: str, registry: ToolRegistry) -> str:
    # Plain replace: the template carries literal JSON braces.
    return template.replace("{tools}", registry.describe() or "- (no tools available)")


def describe_plan_outcome(outcome: PlanOutcome, total_steps: int) -> str:
    if outcome.state == GateState.CANCELLED and not outcome.steps:
        return "Plan cancelled; no steps were executed."

    lines: list[str] = []
    for step_outcome in outcome.steps:
        marker = "ok" if step_outcome.result.success else "FAILED"
        line = f"{step_outcome.index}. {step_outcome.step.description}: {marker}"
        if not step_outcome.result.success and step_outcome.result.error:
            line += f" ({step_outcome.result.error})"
        lines.append(line)

    succeeded = outcome.executed - len(outcome.failures)
    if outcome.state == GateState.HALTED_ON_FAILURE:
        lines.append(
            f"Plan halted after step {outcome.executed} of {total_steps}; "
            "completed steps were not rolled back."
        )
    elif outcome.state == GateState.CANCELLED:
        lines.append(f"Plan cancelled after {outcome.executed} of {total_steps} steps.")
    else:
        lines.append(f"Plan completed: {succeeded}/{total_steps} steps succeeded.")
    return "\n".join(lines)


class Session:
    """Owns one Conversation and at most one in-flight Plan.

    Free text goes through the rule planner first; multi-step requests it
    understands run through the plan gate, everything else goes to the model.
    """

    def __init__(
        self,
        backend: ChatBackend,
        registry: ToolRegistry,
        confirmation: ConfirmationChannel,
        config: Config | None = None,
        planner: RulePlanner | None = None,
        present: Callable[[str], None] | None = None,
        warn: Callable[[str], None] | None = None,
        on_tool_call: Callable[[ToolCallRequest], None] | None = None,
        on_tool_result: Callable[[ToolCallRequest, ToolResult], None] | None = None,
    ):
        self.config = config or get_config()
        self.id = str(uuid.uuid4())
        self.backend = backend
        self.registry = registry
        self.planner = planner or RulePlanner()
        self.stats = SessionStats()
        self._on_tool_call = on_tool_call
        self._on_tool_result = on_tool_result
        self._plan_abort: asyncio.Event | None = None
        self.current_plan: Plan | None = None

        self.conversation = Conversation(
            system_prompt=build_system_prompt(self.config.orchestrator.system_prompt, registry),
            retention=self.config.orchestrator.retention,
        )
        self.dispatcher = ToolDispatcher(registry, max_timeout_seconds=self.config.tools.timeout_seconds)
        self.orchestrator = Orchestrator(
            backend,
            self.dispatcher,
            self.conversation,
            max_iterations=self.config.orchestrator.max_iterations,
            on_tool_call=self._tool_called,
            on_tool_result=self._tool_finished,
        )
        plan_cfg = self.config.plan
        self.gate = PlanGate(
            self.dispatcher,
            confirmation,
            present=present,
            warn=warn,
            auditor=CommandAuditor(),
            confidence_threshold=plan_cfg.confidence_threshold,
            require_confirmation=plan_cfg.require_confirmation,
            continue_on_failure=plan_cfg.continue_on_failure,
            force=plan_cfg.force,
            block_critical=self.config.security.block_critical,
        )
        log.info("Session created", session_id=self.id, tools=len(registry))

    def _tool_called(self, request: ToolCallRequest) -> None:
        self.stats.tool_calls += 1
        if self._on_tool_call:
            self._on_tool_call(request)

    def _tool_finished(self, request: ToolCallRequest, result: ToolResult) -> None:
        if not result.success:
            self.stats.tool_failures += 1
        if self._on_tool_result:
            self._on_tool_result(request, result)

    @property
    def busy(self) -> bool:
        return self.current_plan is not None

    async def ask(self, text: str) -> SessionResponse:
        """Handle one user request.

        Raises:
            LLMError if the model backend fails; the session stays usable
        """
        self.stats.queries += 1
        with log_context(session_id=self.id):
            plan = self.planner.plan(text) if self.config.plan.enabled else None
            if plan is not None:
                return await self._run_plan(plan)

            try:
                outcome = await self.orchestrator.run(text)
            except Exception:
                self.stats.backend_errors += 1
                raise
        self.stats.model_iterations += outcome.iterations
        if outcome.state == LoopState.CANCELLED:
            self.stats.cancelled_requests += 1
        return SessionResponse(outcome.answer, answer=outcome)

    async def _run_plan(self, plan: Plan) -> SessionResponse:
        self.current_plan = plan
        self._plan_abort = asyncio.Event()
        try:
            outcome = await self.gate.run(plan, abort_event=self._plan_abort)
        finally:
            self.current_plan = None
            self._plan_abort = None

        self.stats.plans_run += 1
        for step_outcome in outcome.steps:
            self.stats.tool_calls += 1
            if not step_outcome.result.success:
                self.stats.tool_failures += 1
            if self._on_tool_result:
                self._on_tool_result(step_outcome.step.request, step_outcome.result)
        if outcome.state == GateState.CANCELLED:
            self.stats.plans_cancelled += 1
        elif outcome.state == GateState.HALTED_ON_FAILURE:
            self.stats.plans_halted += 1
        return SessionResponse(describe_plan_outcome(outcome, len(plan)), plan=outcome)

    def cancel(self) -> None:
        """Cancel whatever request is in flight."""
        if self._plan_abort is not None:
            self._plan_abort.set()
        self.orchestrator.cancel()

    def clear(self) -> None:
        self.conversation.clear()
        log.info("Conversation cleared", session_id=self.id)

    def summary(self) -> dict[str, int | str]:
        data: dict[str, int | str] = {"session_id": self.id, "turns": len(self.conversation)}
        data.update(self.stats.as_dict())
        return data
