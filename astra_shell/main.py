"""Main entry point for AstraShell."""

import asyncio
import signal
import sys
from collections.abc import Awaitable
from pathlib import Path
from typing import TypeVar

import typer

from astra_shell import __version__
from astra_shell.cli import TerminalUI, get_ui, set_ui
from astra_shell.config import Config, get_config, set_config
from astra_shell.exceptions import ConfigurationError, LLMError
from astra_shell.llm import ChatBackend, backend_from_config
from astra_shell.logging import configure_logging, log, set_system_log_sink
from astra_shell.monitor import PeriodicTask, ResourceSentry
from astra_shell.session import Session
from astra_shell.tools import build_tool_registry

T = TypeVar("T")

app = typer.Typer(help="AstraShell - a tool-calling shell assistant driven by a local model")


async def _run_cancellable(session: Session, work: Awaitable[T]) -> T:
    """Await work; Ctrl-C while it runs cancels the session's current request."""
    loop = asyncio.get_running_loop()
    installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, session.cancel)
        installed = True
    except (NotImplementedError, RuntimeError):
        log.debug("SIGINT handler unavailable; Ctrl-C will not cancel requests")
    try:
        return await work
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _start_sentry(cfg: Config, ui: TerminalUI) -> PeriodicTask | None:
    if not cfg.sentry.enabled:
        return None
    sentry = ResourceSentry(
        cpu_threshold=cfg.sentry.cpu_percent_threshold,
        memory_threshold=cfg.sentry.memory_percent_threshold,
        max_alerts=cfg.sentry.max_alerts,
        on_alert=lambda alert: ui.print_warning(f"Sentry: {alert.describe()}"),
    )
    task = sentry.as_task(cfg.sentry.interval_seconds)
    task.start()
    return task


async def run_interactive(backend: ChatBackend | None = None, ui: TerminalUI | None = None) -> int:
    """Run the interactive loop. Returns the process exit code."""
    cfg = get_config()
    ui = ui or get_ui()
    backend = backend or backend_from_config()

    if not await backend.ping():
        ui.print_error(f"Model backend unreachable at {cfg.model.base_url}")
        await backend.close()
        return 1

    registry = build_tool_registry(cfg.tools.enabled)
    session = Session(
        backend,
        registry,
        confirmation=ui,
        config=cfg,
        present=ui.print_plan,
        warn=ui.print_warning,
        on_tool_call=ui.print_tool_call,
        on_tool_result=ui.print_tool_result,
    )
    ui.print_welcome(cfg.model.model, registry.list_tools())
    sentry_task = _start_sentry(cfg, ui)

    # Ctrl-C at the prompt leaves; during a request it only cancels the request.
    signal.signal(signal.SIGINT, signal.default_int_handler)

    try:
        while True:
            try:
                user_input = ui.prompt("> ")
                result = ui.handle_special_command(user_input)
                if result is None:
                    continue
                if result == "EXIT":
                    break
                if result == "CLEAR":
                    session.clear()
                    ui.print_success("Conversation cleared")
                    continue
                if result == "STATS":
                    ui.print_stats(session.summary())
                    continue

                # Skip empty input
                if not result.strip():
                    continue

                response = await _run_cancellable(session, session.ask(result))
                if response.cancelled:
                    ui.print_warning(response.text)
                else:
                    ui.print_message("assistant", response.text)

            except LLMError as e:
                ui.print_error(str(e))
                log.error("Model backend error", error=str(e))
            except KeyboardInterrupt:
                log.info("Interrupted by user")
                break
            except EOFError:
                log.info("EOF received")
                break
    finally:
        if sentry_task is not None:
            await sentry_task.stop()
        for tool_name in registry.list_tools():
            close = getattr(registry.get(tool_name), "close", None)
            if close is not None:
                await close()
        await backend.close()

    log.info("Session ended", session_id=session.id, **session.stats.as_dict())
    return 0


def main(
    config: str = "",
    model: str = "",
    assume_yes: bool = False,
    continue_on_failure: bool = False,
    force: bool = False,
    verbose: bool = False,
) -> None:
    """Start an AstraShell interactive session."""
    ui = TerminalUI()
    set_ui(ui)

    # Load configuration
    try:
        cfg = Config.from_yaml(Path(config)) if config else Config.load()
    except ConfigurationError as e:
        ui.print_error(str(e))
        sys.exit(1)

    # Apply CLI overrides
    if model:
        cfg.model.model = model
    if assume_yes:
        # Low-confidence plans still prompt.
        cfg.plan.require_confirmation = False
    if continue_on_failure:
        cfg.plan.continue_on_failure = True
    if force:
        cfg.plan.force = True

    set_config(cfg)
    set_system_log_sink(ui.print_log_line)
    configure_logging("DEBUG" if verbose else None)

    try:
        code = asyncio.run(run_interactive(ui=ui))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        code = 0
    except Exception as e:
        log.error("Fatal error", error=str(e))
        ui.print_error(str(e))
        code = 1
    if code:
        sys.exit(code)


@app.command()
def run(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    yes: bool = typer.Option(False, "-y", "--yes", help="Skip confirmation for multi-step plans (low-confidence plans still ask)"),
    continue_on_failure: bool = typer.Option(
        False, "--continue-on-failure", help="Keep executing plan steps after a failure"
    ),
    force: bool = typer.Option(False, "--force", help="Run commands the security audit marks critical"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Start an interactive session."""
    main(config, model, yes, continue_on_failure, force, verbose)


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"AstraShell v{__version__}")


if __name__ == "__main__":
    app()
