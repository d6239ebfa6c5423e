"""Dispatch parsed tool calls to registered tools under a time budget."""

import asyncio
import time
import traceback
from typing import Any

from astra_shell.exceptions import ToolError
from astra_shell.logging import get_logger, log_context
from astra_shell.tools.registry import ToolRegistry, ToolResult
from astra_shell.tools.tool_call import ToolCallRequest

log = get_logger(__name__)


def _format_label(seconds: float) -> str:
    return str(int(seconds)) if float(seconds).is_integer() else f"{seconds:g}"


def _error_details(exc: BaseException) -> str:
    frames = traceback.format_exception(type(exc), exc, exc.__traceback__, limit=3)
    return "".join(frames).strip()


class ToolDispatcher:
    """Run one ToolCallRequest and always come back with a ToolResult."""

    def __init__(self, registry: ToolRegistry, max_timeout_seconds: float | None = None):
        self.registry = registry
        self.max_timeout_seconds = max_timeout_seconds

    def budget_for(self, tool_timeout: float | None) -> float:
        """Resolve the execution budget for a tool."""
        budget = 30.0 if tool_timeout is None else float(tool_timeout)
        if self.max_timeout_seconds:
            budget = min(budget, float(self.max_timeout_seconds))
        return max(0.01, budget)

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel task and await it so no work keeps running untracked."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.debug("Cancelled tool task raised", error=str(e))

    async def dispatch(
        self,
        request: ToolCallRequest,
        abort_event: asyncio.Event | None = None,
    ) -> ToolResult:
        """Execute a tool call.

        Args:
            request: Parsed tool call
            abort_event: Optional event that cancels the execution when set

        Returns:
            ToolResult; failures are reported in the envelope, never raised
        """
        name = request.tool_name
        if not self.registry.has_tool(name):
            log.warning("Unknown tool requested", tool=name)
            return ToolResult.fail(f"Unknown tool: {name}")

        tool = self.registry.get(name)
        arguments = dict(request.parameters)
        try:
            tool.validate_arguments(arguments)
        except ToolError as e:
            log.warning("Invalid tool arguments", tool=name, error=str(e))
            return ToolResult.fail(str(e))

        budget = self.budget_for(getattr(tool, "timeout_seconds", None))
        tool_abort_event = asyncio.Event()
        execute_task: asyncio.Task[Any] | None = None
        abort_wait_task: asyncio.Task[Any] | None = None
        started = time.monotonic()

        log.info("Executing tool", tool=name, args=arguments, budget=budget)
        try:
            with log_context(tool=name):
                execute_task = asyncio.create_task(
                    tool.execute(**arguments, _abort_event=tool_abort_event)
                )
            wait_tasks: set[asyncio.Task[Any]] = {execute_task}
            if abort_event is not None:
                abort_wait_task = asyncio.create_task(abort_event.wait())
                wait_tasks.add(abort_wait_task)

            done, _ = await asyncio.wait(
                wait_tasks,
                timeout=budget,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if execute_task in done:
                if execute_task.cancelled():
                    return ToolResult.fail(f"Tool '{name}' execution was cancelled")
                exc = execute_task.exception()
                if exc is not None:
                    log.error("Tool execution failed", tool=name, error=str(exc))
                    return ToolResult.fail(str(exc) or type(exc).__name__, _error_details(exc))
                result = execute_task.result()
                if not isinstance(result, ToolResult):
                    log.error("Tool returned invalid result payload", tool=name, type=type(result).__name__)
                    return ToolResult.fail(
                        f"Tool '{name}' returned an invalid result",
                        f"Expected ToolResult, got {type(result).__name__}",
                    )
                log.info(
                    "Tool executed",
                    tool=name,
                    success=result.success,
                    elapsed=round(time.monotonic() - started, 3),
                )
                return result

            tool_abort_event.set()
            await self._cancel_task(execute_task)
            if abort_wait_task is not None and abort_wait_task in done:
                log.warning("Tool execution aborted", tool=name)
                return ToolResult.fail(f"Tool '{name}' execution aborted")

            log.warning("Tool execution timed out", tool=name, budget=budget)
            return ToolResult.fail(f"Tool '{name}' timed out after {_format_label(budget)}s")
        except asyncio.CancelledError:
            tool_abort_event.set()
            await self._cancel_task(execute_task)
            raise
        except Exception as e:
            # Tools that fail before producing a coroutine (bad kwargs) land here.
            log.error("Tool execution failed", tool=name, error=str(e))
            return ToolResult.fail(str(e) or type(e).__name__, _error_details(e))
        finally:
            await self._cancel_task(abort_wait_task)
