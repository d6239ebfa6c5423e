"""Multi-step plans and the confirmation/execution gate that guards them."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from astra_shell.exceptions import PlanError
from astra_shell.logging import get_logger
from astra_shell.security import CommandAuditor
from astra_shell.tools.dispatcher import ToolDispatcher
from astra_shell.tools.registry import ToolResult
from astra_shell.tools.tool_call import ToolCallRequest

log = get_logger(__name__)

RUN_COMMAND_TOOL = "RunCommand"
DEFAULT_CONFIDENCE_THRESHOLD = 0.5


class ConfirmationChannel(Protocol):
    """Yes/no prompt; anything other than an explicit yes is a decline."""

    def confirm(self, question: str) -> bool: ...


class GateState(str, Enum):
    PROPOSED = "proposed"
    CONFIRMED = "confirmed"
    WAIVED = "waived"
    EXECUTING = "executing"
    COMPLETED = "completed"
    HALTED_ON_FAILURE = "halted_on_failure"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PlanStep:
    """One step: a description plus the tool call that carries it out."""

    description: str
    request: ToolCallRequest

    @classmethod
    def from_command(cls, description: str, command: str) -> PlanStep:
        return cls(description, ToolCallRequest(RUN_COMMAND_TOOL, {"command": command}))

    @property
    def command(self) -> str | None:
        if self.request.tool_name != RUN_COMMAND_TOOL:
            return None
        value = self.request.parameters.get("command")
        return str(value) if value is not None else None


@dataclass(frozen=True)
class Plan:
    """Ordered steps with a planner confidence in [0, 1]."""

    steps: tuple[PlanStep, ...]
    confidence: float = 1.0
    source: str = ""
    skipped: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.steps:
            raise PlanError("Plan must contain at least one step")
        if not 0.0 <= float(self.confidence) <= 1.0:
            raise PlanError(f"Plan confidence must be within [0, 1], got {self.confidence}")
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "skipped", tuple(self.skipped))

    def __len__(self) -> int:
        return len(self.steps)

    def render(self) -> str:
        lines = [f"Plan ({len(self.steps)} steps, confidence {self.confidence:.0%}):"]
        for idx, step in enumerate(self.steps, start=1):
            detail = step.command or step.request.to_wire()
            lines.append(f"  {idx}. {step.description}  [{detail}]")
        for clause in self.skipped:
            lines.append(f"  - not understood, skipped: {clause}")
        return "\n".join(lines)


@dataclass
class StepOutcome:
    index: int
    step: PlanStep
    result: ToolResult


@dataclass
class PlanOutcome:
    """Final gate state and what ran. Completed steps are not rolled back."""

    state: GateState
    steps: list[StepOutcome] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def failures(self) -> list[StepOutcome]:
        return [outcome for outcome in self.steps if not outcome.result.success]

    @property
    def executed(self) -> int:
        return len(self.steps)


def low_confidence_warning(plan: Plan, threshold: float) -> str:
    return (
        f"Low confidence plan ({plan.confidence:.0%} < {threshold:.0%}). "
        "The request may have been misunderstood; review every step."
    )


class PlanGate:
    """Proposed -> Confirmed|Waived -> Executing -> Completed|HaltedOnFailure|Cancelled."""

    def __init__(
        self,
        dispatcher: ToolDispatcher,
        confirmation: ConfirmationChannel,
        present: Callable[[str], None] | None = None,
        warn: Callable[[str], None] | None = None,
        auditor: CommandAuditor | None = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        require_confirmation: bool = True,
        continue_on_failure: bool = False,
        force: bool = False,
        block_critical: bool = True,
    ):
        self.dispatcher = dispatcher
        self.confirmation = confirmation
        self.present = present or (lambda text: None)
        self.warn = warn or (lambda text: None)
        self.auditor = auditor or CommandAuditor()
        self.confidence_threshold = confidence_threshold
        self.require_confirmation = require_confirmation
        self.continue_on_failure = continue_on_failure
        self.force = force
        self.block_critical = block_critical
        self.state = GateState.PROPOSED

    def _set_state(self, state: GateState) -> None:
        log.debug("Plan gate state", state=state.value)
        self.state = state

    def _approve(self, plan: Plan, outcome: PlanOutcome) -> bool:
        self.present(plan.render())

        low_confidence = plan.confidence < self.confidence_threshold
        if low_confidence:
            warning = low_confidence_warning(plan, self.confidence_threshold)
            outcome.warnings.append(warning)
            self.warn(warning)

        needs_confirmation = low_confidence or (len(plan) > 1 and self.require_confirmation)
        if not needs_confirmation:
            self._set_state(GateState.WAIVED)
            return True

        if not self.confirmation.confirm(f"Execute these {len(plan)} step(s)?"):
            log.info("Plan declined by operator", steps=len(plan))
            return False
        self._set_state(GateState.CONFIRMED)
        return True

    def _audit_block(self, step: PlanStep) -> ToolResult | None:
        command = step.command
        if command is None or not self.block_critical:
            return None
        report = self.auditor.audit(command)
        if not report.is_critical:
            return None
        if self.force:
            self.warn(f"Forcing critical step: {report.summary()}")
            return None
        return ToolResult.fail(
            "Blocked by security audit (critical). Re-run with force to override.",
            report.summary(),
        )

    async def run(self, plan: Plan, abort_event: asyncio.Event | None = None) -> PlanOutcome:
        """Gate and execute a plan."""
        self._set_state(GateState.PROPOSED)
        outcome = PlanOutcome(state=GateState.PROPOSED)

        if not self._approve(plan, outcome):
            self._set_state(GateState.CANCELLED)
            outcome.state = GateState.CANCELLED
            return outcome

        self._set_state(GateState.EXECUTING)
        for index, step in enumerate(plan.steps, start=1):
            if abort_event is not None and abort_event.is_set():
                self._set_state(GateState.CANCELLED)
                outcome.state = GateState.CANCELLED
                return outcome

            log.info("Executing plan step", step=index, description=step.description)
            result = self._audit_block(step)
            if result is None:
                result = await self.dispatcher.dispatch(step.request, abort_event=abort_event)
            outcome.steps.append(StepOutcome(index, step, result))

            if not result.success:
                log.warning("Plan step failed", step=index, error=result.error)
                if not self.continue_on_failure:
                    self._set_state(GateState.HALTED_ON_FAILURE)
                    outcome.state = GateState.HALTED_ON_FAILURE
                    return outcome

        self._set_state(GateState.COMPLETED)
        outcome.state = GateState.COMPLETED
        return outcome
