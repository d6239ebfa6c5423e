"""Stat tool reporting process and host resource statistics."""

import os
import platform
import time
from typing import Any

import psutil

from astra_shell.tools.registry import Tool, ToolResult


def _mb(value: float) -> float:
    return round(value / (1024 * 1024), 1)


def sample_system() -> dict[str, Any]:
    """Sample host-wide CPU, memory and disk usage."""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage(os.path.abspath(os.sep))
    return {
        "platform": platform.platform(),
        "cpu_count": psutil.cpu_count(logical=True),
        "cpu_percent": psutil.cpu_percent(interval=None),
        "memory_total_mb": _mb(memory.total),
        "memory_used_mb": _mb(memory.used),
        "memory_percent": memory.percent,
        "disk_total_mb": _mb(disk.total),
        "disk_percent": disk.percent,
        "uptime_seconds": int(time.time() - psutil.boot_time()),
    }


def sample_process(pid: int) -> dict[str, Any]:
    """Sample a single process."""
    process = psutil.Process(pid)
    with process.oneshot():
        memory = process.memory_info()
        return {
            "pid": process.pid,
            "name": process.name(),
            "status": process.status(),
            "cpu_percent": process.cpu_percent(interval=None),
            "rss_mb": _mb(memory.rss),
            "threads": process.num_threads(),
            "started_at": process.create_time(),
        }


class StatTool(Tool):
    """Report resource statistics for the host or a process."""

    name = "Stat"
    description = (
        "Report host CPU, memory and disk statistics. "
        "Pass 'pid' to report a single process instead."
    )
    timeout_seconds = 10.0
    parameters = {
        "type": "object",
        "properties": {
            "pid": {
                "type": "number",
                "description": "Optional process id to inspect",
            },
        },
        "required": [],
    }

    async def execute(self, pid: int | None = None, **kwargs: Any) -> ToolResult:
        if pid is None:
            return ToolResult.ok(sample_system())
        try:
            return ToolResult.ok(sample_process(int(pid)))
        except psutil.NoSuchProcess:
            return ToolResult.fail(f"No such process: {pid}")
        except psutil.AccessDenied:
            return ToolResult.fail(f"Access denied for process: {pid}")
