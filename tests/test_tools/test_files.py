from pathlib import Path

import pytest

from astra_shell.config import get_config, set_config
from astra_shell.tools.files import ReadFileTool, WriteFileTool


@pytest.mark.asyncio
async def test_read_file_returns_requested_line_window(tmp_path: Path):
    target = tmp_path / "notes.txt"
    target.write_text("one\ntwo\nthree\nfour\n", encoding="utf-8")

    result = await ReadFileTool().execute(path=str(target), offset=2, limit=2)

    assert result.success is True
    assert result.data["content"] == "two\nthree"
    assert result.data["start_line"] == 2
    assert result.data["end_line"] == 3
    assert result.data["total_lines"] == 4


@pytest.mark.asyncio
async def test_read_file_missing_path_is_failure(tmp_path: Path):
    result = await ReadFileTool().execute(path=str(tmp_path / "nope.txt"))

    assert result.success is False
    assert result.error.startswith("File not found:")


@pytest.mark.asyncio
async def test_read_file_rejects_directories(tmp_path: Path):
    result = await ReadFileTool().execute(path=str(tmp_path))

    assert result.success is False
    assert result.error.startswith("Not a file:")


@pytest.mark.asyncio
async def test_read_file_enforces_configured_size_limit(tmp_path: Path):
    old_cfg = get_config().model_copy(deep=True)
    cfg = old_cfg.model_copy(deep=True)
    cfg.tools.files.max_read_bytes = 10
    set_config(cfg)
    try:
        target = tmp_path / "big.txt"
        target.write_text("x" * 50, encoding="utf-8")
        result = await ReadFileTool().execute(path=str(target))
    finally:
        set_config(old_cfg)

    assert result.success is False
    assert result.error == "File too large: 50 bytes (max 10)"


@pytest.mark.asyncio
async def test_write_file_creates_parents_and_appends(tmp_path: Path):
    target = tmp_path / "nested" / "dir" / "out.txt"
    tool = WriteFileTool()

    first = await tool.execute(path=str(target), content="hello")
    second = await tool.execute(path=str(target), content=" world", append=True)

    assert first.success is True
    assert first.data["chars_written"] == 5
    assert second.data["appended"] is True
    assert target.read_text(encoding="utf-8") == "hello world"


@pytest.mark.asyncio
async def test_write_file_refuses_directory_target(tmp_path: Path):
    result = await WriteFileTool().execute(path=str(tmp_path), content="x")

    assert result.success is False
    assert result.error.startswith("Path is a directory:")
