"""File read/write tools."""

from pathlib import Path
from typing import Any

from astra_shell.config import get_config
from astra_shell.logging import get_logger
from astra_shell.tools.registry import Tool, ToolResult

log = get_logger(__name__)


class ReadFileTool(Tool):
    """Read file contents."""

    name = "ReadFile"
    description = "Read the contents of a text file."
    timeout_seconds = 10.0
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file to read",
            },
            "limit": {
                "type": "number",
                "description": "Maximum number of lines to read",
            },
            "offset": {
                "type": "number",
                "description": "Line number to start reading from (1-indexed)",
            },
        },
        "required": ["path"],
    }

    async def execute(
        self,
        path: str,
        limit: int | None = None,
        offset: int | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        """Read a file.

        Args:
            path: Path to file
            limit: Optional line limit
            offset: Optional 1-indexed start line

        Returns:
            ToolResult with path, line range and content
        """
        file_path = Path(path).expanduser().resolve()

        if not file_path.exists():
            return ToolResult.fail(f"File not found: {path}")
        if not file_path.is_file():
            return ToolResult.fail(f"Not a file: {path}")

        max_size = get_config().tools.files.max_read_bytes
        file_size = file_path.stat().st_size
        if file_size > max_size:
            return ToolResult.fail(f"File too large: {file_size} bytes (max {max_size})")

        lines = file_path.read_text(encoding="utf-8", errors="replace").splitlines()
        total = len(lines)
        start = max(1, int(offset or 1))
        lines = lines[start - 1:]
        if limit:
            lines = lines[: int(limit)]

        return ToolResult.ok({
            "path": str(file_path),
            "start_line": start,
            "end_line": start + len(lines) - 1 if lines else start - 1,
            "total_lines": total,
            "content": "\n".join(lines),
        })


class WriteFileTool(Tool):
    """Write content to files."""

    name = "WriteFile"
    description = "Create, overwrite or append to a text file."
    timeout_seconds = 10.0
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file to write",
            },
            "content": {
                "type": "string",
                "description": "Content to write to the file",
            },
            "append": {
                "type": "boolean",
                "description": "Append to file instead of overwriting",
            },
        },
        "required": ["path", "content"],
    }

    async def execute(self, path: str, content: str, append: bool = False, **kwargs: Any) -> ToolResult:
        """Write content to a file, creating parent directories."""
        file_path = Path(path).expanduser().resolve()
        if file_path.is_dir():
            return ToolResult.fail(f"Path is a directory: {path}")

        file_path.parent.mkdir(parents=True, exist_ok=True)
        mode = "a" if append else "w"
        with open(file_path, mode, encoding="utf-8") as f:
            f.write(str(content))

        log.info("File written", path=str(file_path), chars=len(str(content)), append=bool(append))
        return ToolResult.ok({
            "path": str(file_path),
            "chars_written": len(str(content)),
            "appended": bool(append),
        })
