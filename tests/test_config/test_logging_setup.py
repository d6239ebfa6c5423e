import json
from pathlib import Path

import pytest
import structlog

from astra_shell.config import Config, get_config, set_config
from astra_shell.exceptions import ConfigurationError
from astra_shell.logging import (
    _SinkLogger,
    clip_long_values,
    configure_logging,
    get_logger,
    log_context,
    set_system_log_sink,
)
from astra_shell.tools.dispatcher import ToolDispatcher
from astra_shell.tools.registry import Tool, ToolRegistry, ToolResult
from astra_shell.tools.tool_call import ToolCallRequest


class EchoTool(Tool):
    name = "Echo"
    description = "Logs and echoes"
    parameters = {"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]}

    async def execute(self, text: str, **kwargs):
        get_logger("echo").info("Echoing", text=text)
        return ToolResult.ok(text)


@pytest.fixture
def captured_lines():
    """Route logs into a list, with the format chosen by the test."""
    old_cfg = get_config().model_copy(deep=True)
    lines: list[str] = []
    set_system_log_sink(lines.append)

    def _configure(fmt: str = "json", max_value_chars: int = 500, level: str = "INFO") -> list[str]:
        cfg = old_cfg.model_copy(deep=True)
        cfg.logging.format = fmt
        cfg.logging.max_value_chars = max_value_chars
        set_config(cfg)
        configure_logging(level)
        return lines

    yield _configure
    set_system_log_sink(None)
    set_config(old_cfg)
    structlog.reset_defaults()


def test_sink_logger_splits_multiline_messages():
    lines: list[str] = []

    _SinkLogger(lines.append).info("first\nsecond\n\n")

    assert lines == ["first", "second"]


def test_configure_logging_routes_events_to_sink(captured_lines):
    lines = captured_lines("json")

    get_logger("test").info("Tool executed", tool="Stat", success=True)
    get_logger("test").debug("Hidden at INFO")

    assert len(lines) == 1
    event = json.loads(lines[0])
    assert event["event"] == "Tool executed"
    assert event["tool"] == "Stat"
    assert event["level"] == "info"


def test_log_context_binds_session_id(captured_lines):
    lines = captured_lines("json")

    with log_context(session_id="abc123", tool=None):
        get_logger("test").info("Inside")
    get_logger("test").info("Outside")

    inside, outside = (json.loads(line) for line in lines)
    assert inside["session_id"] == "abc123"
    assert "tool" not in inside
    assert "session_id" not in outside


@pytest.mark.asyncio
async def test_dispatcher_binds_tool_name_for_events_logged_by_the_tool(captured_lines):
    lines = captured_lines("json")
    dispatcher = ToolDispatcher(ToolRegistry([EchoTool()]).freeze())

    with log_context(session_id="s-1"):
        result = await dispatcher.dispatch(ToolCallRequest("Echo", {"text": "hi"}))

    assert result.success is True
    echoed = [json.loads(line) for line in lines if '"Echoing"' in line]
    assert len(echoed) == 1
    assert echoed[0]["text"] == "hi"
    assert echoed[0]["tool"] == "Echo"
    assert echoed[0]["session_id"] == "s-1"


def test_long_values_are_clipped_but_event_text_is_not(captured_lines):
    lines = captured_lines("json", max_value_chars=10)

    get_logger("test").info("Command output " + "x" * 20, stdout="y" * 25, exit_code=0)

    event = json.loads(lines[0])
    assert event["event"] == "Command output " + "x" * 20
    assert event["stdout"] == "y" * 10 + "... [25 chars]"
    assert event["exit_code"] == 0


def test_clip_long_values_disabled_with_zero_limit():
    event = {"event": "e", "stdout": "z" * 1000}

    assert clip_long_values(0)(None, "info", dict(event)) == event


def test_plain_format_renders_key_values_in_order(captured_lines):
    lines = captured_lines("plain")

    with log_context(session_id="s-9"):
        get_logger("test").warning("Blocked command", command="mkfs")

    line = lines[0]
    assert line.startswith("timestamp=")
    assert "level='warning' event='Blocked command' session_id='s-9'" in line
    assert line.endswith("command='mkfs'")


def test_unknown_log_format_is_a_configuration_error(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text("logging:\n  format: xml\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Invalid configuration"):
        Config.from_yaml(path)
