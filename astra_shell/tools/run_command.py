"""RunCommand tool for executing shell commands and scripts."""

import asyncio
import os
import signal
from typing import Any

from astra_shell.config import get_config
from astra_shell.logging import get_logger
from astra_shell.security import CommandAuditor, is_blocked_shell_command
from astra_shell.tools.registry import Tool, ToolResult

log = get_logger(__name__)


class RunCommandTool(Tool):
    """Execute a shell command in a child process."""

    name = "RunCommand"
    description = "Run a shell command or script and return its exit code and output."
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            },
            "timeout": {
                "type": "number",
                "description": "Timeout in seconds (optional, default from config)",
            },
        },
        "required": ["command"],
    }

    def __init__(self):
        config = get_config()
        cfg = config.tools.run_command
        self.auditor = CommandAuditor()
        self.block_critical = config.security.block_critical
        self.force = config.plan.force
        self.blocked = list(cfg.blocked)
        self.default_timeout = max(1, int(cfg.timeout))
        self.max_output_chars = int(cfg.max_output_chars)
        # Leave headroom so the child is killed by us before the dispatcher budget expires.
        self.timeout_seconds = float(self.default_timeout) + 5.0

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        # The shell leads its own process group, so background jobs go down with it.
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        if process.returncode is None:
            process.kill()
        await process.wait()

    def _clip(self, text: str) -> str:
        if len(text) <= self.max_output_chars:
            return text
        return text[: self.max_output_chars] + f"\n... [truncated, {len(text)} total chars]"

    async def execute(self, command: str, timeout: float | None = None, **kwargs: Any) -> ToolResult:
        """Execute a shell command.

        Args:
            command: Shell command to execute
            timeout: Optional timeout override

        Returns:
            ToolResult with exit code, stdout and stderr
        """
        blocked, matched = is_blocked_shell_command(command, self.blocked)
        if blocked:
            reason = {
                "empty_command": "Command is empty",
                "unparseable_command": "Command is not parseable",
            }.get(matched, f"Command matches blocked pattern: {matched}")
            log.warning("Blocked command", command=command, reason=reason)
            return ToolResult.fail(f"Command blocked: {reason}")

        if self.block_critical:
            report = self.auditor.audit(command)
            if report.is_critical and not self.force:
                log.warning("Critical command refused", command=command, findings=report.summary())
                return ToolResult.fail(
                    "Blocked by security audit (critical). Re-run with force to override.",
                    report.summary(),
                )

        effective_timeout = max(1.0, float(timeout if timeout is not None else self.default_timeout))
        abort_event = kwargs.get("_abort_event")
        if isinstance(abort_event, asyncio.Event) and abort_event.is_set():
            return ToolResult.fail("Command aborted")

        log.info("Executing shell command", command=command, timeout=effective_timeout)
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=os.environ.copy(),
            start_new_session=True,
        )

        communicate_task = asyncio.create_task(process.communicate())
        abort_wait_task: asyncio.Task[Any] | None = None
        if isinstance(abort_event, asyncio.Event):
            abort_wait_task = asyncio.create_task(abort_event.wait())
        try:
            wait_tasks: set[asyncio.Task[Any]] = {communicate_task}
            if abort_wait_task is not None:
                wait_tasks.add(abort_wait_task)
            done, _ = await asyncio.wait(
                wait_tasks,
                timeout=effective_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if communicate_task not in done:
                await self._kill(process)
                communicate_task.cancel()
                try:
                    await communicate_task
                except asyncio.CancelledError:
                    pass
                if abort_wait_task is not None and abort_wait_task in done:
                    return ToolResult.fail("Command aborted")
                return ToolResult.fail(f"Command timed out after {effective_timeout:g}s")

            stdout, stderr = communicate_task.result()
        except asyncio.CancelledError:
            await self._kill(process)
            communicate_task.cancel()
            raise
        finally:
            if abort_wait_task is not None and not abort_wait_task.done():
                abort_wait_task.cancel()
                try:
                    await abort_wait_task
                except asyncio.CancelledError:
                    pass

        stdout_text = self._clip(stdout.decode("utf-8", errors="replace").strip())
        stderr_text = self._clip(stderr.decode("utf-8", errors="replace").strip())
        data = {
            "command": command,
            "exit_code": process.returncode,
            "stdout": stdout_text,
            "stderr": stderr_text,
        }
        if process.returncode != 0:
            return ToolResult.fail(
                f"Command exited with code {process.returncode}",
                stderr_text or stdout_text or None,
            )
        return ToolResult.ok(data)
