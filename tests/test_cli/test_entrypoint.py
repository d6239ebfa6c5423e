import io

import pytest
from rich.console import Console
from typer.testing import CliRunner

from astra_shell import __version__
from astra_shell.cli import TerminalUI
from astra_shell.config import get_config, set_config
from astra_shell.exceptions import LLMError
from astra_shell.llm import ChatBackend, Message
from astra_shell.main import app, run_interactive


class FakeBackend(ChatBackend):
    def __init__(self, reachable: bool = True, replies: list[str | Exception] | None = None):
        self.reachable = reachable
        self.replies = list(replies or [])
        self.closed = False

    async def chat(self, messages: list[Message]) -> str:
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def ping(self) -> bool:
        return self.reachable

    async def close(self) -> None:
        self.closed = True


class ScriptedUI(TerminalUI):
    def __init__(self, inputs: list[str]):
        self.buffer = io.StringIO()
        super().__init__(Console(file=self.buffer, force_terminal=False, width=120))
        self.inputs = list(inputs)

    def prompt(self, prompt_text: str = "> ") -> str:
        if not self.inputs:
            raise EOFError
        return self.inputs.pop(0)


@pytest.fixture
def stat_only_config():
    old_cfg = get_config().model_copy(deep=True)
    cfg = old_cfg.model_copy(deep=True)
    cfg.tools.enabled = ["Stat"]
    cfg.sentry.enabled = False
    set_config(cfg)
    yield cfg
    set_config(old_cfg)


def test_version_command_prints_version():
    result = CliRunner().invoke(app, ["version"])

    assert result.exit_code == 0
    assert f"AstraShell v{__version__}" in result.output


@pytest.mark.asyncio
async def test_unreachable_backend_exits_with_code_1(stat_only_config):
    backend = FakeBackend(reachable=False)
    ui = ScriptedUI(["hello"])

    code = await run_interactive(backend=backend, ui=ui)

    assert code == 1
    assert backend.closed is True
    assert "unreachable" in ui.buffer.getvalue()


@pytest.mark.asyncio
async def test_interactive_loop_answers_and_handles_sentinels(stat_only_config):
    backend = FakeBackend(replies=["4"])
    ui = ScriptedUI(["what is 2+2", "/stats", "/clear", "/exit", "never read"])

    code = await run_interactive(backend=backend, ui=ui)

    out = ui.buffer.getvalue()
    assert code == 0
    assert "[ASSISTANT] 4" in out
    assert "Session statistics" in out
    assert "Conversation cleared" in out
    assert ui.inputs == ["never read"]
    assert backend.closed is True


@pytest.mark.asyncio
async def test_interactive_loop_exits_cleanly_on_eof(stat_only_config):
    backend = FakeBackend()
    ui = ScriptedUI([])

    assert await run_interactive(backend=backend, ui=ui) == 0


@pytest.mark.asyncio
async def test_backend_fault_is_reported_and_the_loop_keeps_going(stat_only_config):
    backend = FakeBackend(replies=[LLMError("Ollama response missing message content"), "still here"])
    ui = ScriptedUI(["first", "second", "/exit"])

    code = await run_interactive(backend=backend, ui=ui)

    out = ui.buffer.getvalue()
    assert code == 0
    assert "Ollama response missing message content" in out
    assert "[ASSISTANT] still here" in out
