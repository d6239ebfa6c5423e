import asyncio

import pytest

from astra_shell.exceptions import PlanError
from astra_shell.plan import GateState, Plan, PlanGate, PlanStep
from astra_shell.tools.dispatcher import ToolDispatcher
from astra_shell.tools.registry import Tool, ToolRegistry, ToolResult
from astra_shell.tools.tool_call import ToolCallRequest


class RecordingShellTool(Tool):
    name = "RunCommand"
    description = "Records commands"
    parameters = {
        "type": "object",
        "properties": {"command": {"type": "string"}},
        "required": ["command"],
    }

    def __init__(self, failing: set[str] | None = None):
        self.commands: list[str] = []
        self.failing = failing or set()

    async def execute(self, command: str, **kwargs):
        self.commands.append(command)
        if command in self.failing:
            return ToolResult.fail(f"Command exited with code 1: {command}")
        return ToolResult.ok({"exit_code": 0})


class ScriptedConfirmation:
    def __init__(self, answer: bool, events: list[str] | None = None):
        self.answer = answer
        self.questions: list[str] = []
        self.events = events if events is not None else []

    def confirm(self, question: str) -> bool:
        self.questions.append(question)
        self.events.append("confirm")
        return self.answer


def _plan(*commands: str, confidence: float = 1.0) -> Plan:
    return Plan(
        steps=tuple(PlanStep.from_command(f"run {c}", c) for c in commands),
        confidence=confidence,
    )


def _gate(tool: RecordingShellTool, confirmation: ScriptedConfirmation, **kwargs) -> PlanGate:
    dispatcher = ToolDispatcher(ToolRegistry([tool]).freeze())
    return PlanGate(dispatcher, confirmation, **kwargs)


@pytest.mark.asyncio
async def test_low_confidence_plan_warns_before_confirmation_even_when_waived():
    events: list[str] = []
    tool = RecordingShellTool()
    confirmation = ScriptedConfirmation(True, events)
    gate = _gate(
        tool,
        confirmation,
        present=lambda text: events.append("present"),
        warn=lambda text: events.append("warn"),
        require_confirmation=False,
        confidence_threshold=0.5,
    )

    outcome = await gate.run(_plan("ls", "pwd", "df -h", confidence=0.4))

    assert events == ["present", "warn", "confirm"]
    assert outcome.warnings and "Low confidence" in outcome.warnings[0]
    assert outcome.state == GateState.COMPLETED
    assert tool.commands == ["ls", "pwd", "df -h"]


@pytest.mark.asyncio
async def test_declined_plan_executes_nothing():
    tool = RecordingShellTool()
    gate = _gate(tool, ScriptedConfirmation(False))

    outcome = await gate.run(_plan("ls", "pwd"))

    assert outcome.state == GateState.CANCELLED
    assert outcome.steps == []
    assert tool.commands == []


@pytest.mark.asyncio
async def test_confirmation_waived_for_confident_plan():
    tool = RecordingShellTool()
    confirmation = ScriptedConfirmation(False)
    gate = _gate(tool, confirmation, require_confirmation=False)

    outcome = await gate.run(_plan("ls", "pwd"))

    assert confirmation.questions == []
    assert outcome.state == GateState.COMPLETED
    assert gate.state == GateState.COMPLETED


@pytest.mark.asyncio
async def test_single_step_plan_needs_no_confirmation():
    tool = RecordingShellTool()
    confirmation = ScriptedConfirmation(False)
    gate = _gate(tool, confirmation)

    outcome = await gate.run(_plan("ls"))

    assert confirmation.questions == []
    assert outcome.state == GateState.COMPLETED


@pytest.mark.asyncio
async def test_step_failure_halts_plan_without_rollback():
    tool = RecordingShellTool(failing={"pwd"})
    gate = _gate(tool, ScriptedConfirmation(True))

    outcome = await gate.run(_plan("ls", "pwd", "df -h"))

    assert outcome.state == GateState.HALTED_ON_FAILURE
    assert tool.commands == ["ls", "pwd"]
    assert outcome.executed == 2
    assert [s.index for s in outcome.failures] == [2]


@pytest.mark.asyncio
async def test_continue_on_failure_records_failure_and_runs_remaining_steps():
    tool = RecordingShellTool(failing={"pwd"})
    gate = _gate(tool, ScriptedConfirmation(True), continue_on_failure=True)

    outcome = await gate.run(_plan("ls", "pwd", "df -h"))

    assert outcome.state == GateState.COMPLETED
    assert tool.commands == ["ls", "pwd", "df -h"]
    assert len(outcome.failures) == 1


@pytest.mark.asyncio
async def test_critical_step_is_blocked_unless_forced():
    tool = RecordingShellTool()
    gate = _gate(tool, ScriptedConfirmation(True))

    outcome = await gate.run(_plan("ls", "rm -rf /", "pwd"))

    assert outcome.state == GateState.HALTED_ON_FAILURE
    assert tool.commands == ["ls"]
    assert "Blocked by security audit" in outcome.steps[1].result.error

    warnings: list[str] = []
    forced_tool = RecordingShellTool()
    forced = _gate(forced_tool, ScriptedConfirmation(True), force=True, warn=warnings.append)

    outcome = await forced.run(_plan("ls", "rm -rf /"))

    assert outcome.state == GateState.COMPLETED
    assert forced_tool.commands == ["ls", "rm -rf /"]
    assert warnings and warnings[0].startswith("Forcing critical step")


@pytest.mark.asyncio
async def test_abort_event_cancels_remaining_steps():
    tool = RecordingShellTool()
    gate = _gate(tool, ScriptedConfirmation(True))
    abort_event = asyncio.Event()
    abort_event.set()

    outcome = await gate.run(_plan("ls", "pwd"), abort_event=abort_event)

    assert outcome.state == GateState.CANCELLED
    assert tool.commands == []


@pytest.mark.asyncio
async def test_non_command_steps_are_dispatched_to_their_tool():
    class ReadTool(Tool):
        name = "ReadFile"
        description = "Dummy read"
        parameters = {"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]}

        async def execute(self, path: str, **kwargs):
            return ToolResult.ok({"content": f"contents of {path}"})

    shell = RecordingShellTool()
    dispatcher = ToolDispatcher(ToolRegistry([shell, ReadTool()]).freeze())
    gate = PlanGate(dispatcher, ScriptedConfirmation(True))
    plan = Plan(
        steps=(
            PlanStep.from_command("list", "ls"),
            PlanStep("read notes", ToolCallRequest("ReadFile", {"path": "notes.txt"})),
        ),
    )

    outcome = await gate.run(plan)

    assert outcome.state == GateState.COMPLETED
    assert outcome.steps[1].result.data == {"content": "contents of notes.txt"}


def test_plan_validation():
    with pytest.raises(PlanError):
        Plan(steps=())
    with pytest.raises(PlanError):
        _plan("ls", confidence=1.5)

    rendered = Plan(
        steps=(PlanStep.from_command("List files", "ls -la"),),
        confidence=0.5,
        skipped=("dance",),
    ).render()
    assert "1. List files  [ls -la]" in rendered
    assert "not understood, skipped: dance" in rendered
