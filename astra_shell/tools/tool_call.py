"""Tool-call requests embedded in free-form model text."""

import json
import re
from dataclasses import dataclass, field
from typing import Any

from astra_shell.logging import get_logger

log = get_logger(__name__)

TOOL_NAME_FIELD = "tool_to_use"
PARAMETERS_FIELD = "parameters"

_TOOL_NAME_KEY_RE = re.compile(r'"' + TOOL_NAME_FIELD + r'"\s*:')
_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class ToolCallRequest:
    """A parsed request to invoke one tool."""

    tool_name: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> str:
        """Render the request in the wire format the extractor accepts."""
        return json.dumps(
            {TOOL_NAME_FIELD: self.tool_name, PARAMETERS_FIELD: self.parameters},
            ensure_ascii=False,
        )


def _decode_enclosing_object(text: str, key_pos: int, lower: int) -> tuple[Any, str] | None:
    """Decode the smallest JSON value starting at a `{` in [lower, key_pos) that spans key_pos.

    Opening braces are tried nearest-first so the innermost enclosing object wins.
    """
    pos = text.rfind("{", lower, key_pos)
    while pos != -1:
        try:
            value, end = _decoder.raw_decode(text, pos)
        except json.JSONDecodeError:
            value, end = None, -1
        if end > key_pos:
            return value, text[pos:end]
        pos = text.rfind("{", lower, pos)
    return None


def _to_request(value: Any) -> "ToolCallRequest | None":
    if not isinstance(value, dict):
        return None
    name = value.get(TOOL_NAME_FIELD)
    params = value.get(PARAMETERS_FIELD)
    if not isinstance(name, str) or not name.strip():
        return None
    if not isinstance(params, dict):
        return None
    return ToolCallRequest(tool_name=name.strip(), parameters=dict(params))


def extract(model_text: str | None) -> ToolCallRequest | None:
    """Return the tool call embedded in model text, or None.

    Only the first tool-call-shaped object is considered. A single-line match is
    preferred; pretty-printed objects spanning lines are tried second. Text that
    looks like a tool call but does not decode, or lacks either field, yields None.
    """
    if not model_text:
        return None

    match = _TOOL_NAME_KEY_RE.search(model_text)
    if match is None:
        return None
    key_pos = match.start()

    line_start = model_text.rfind("\n", 0, key_pos) + 1
    line_end = model_text.find("\n", key_pos)
    if line_end == -1:
        line_end = len(model_text)
    line = model_text[line_start:line_end]

    decoded = _decode_enclosing_object(line, key_pos - line_start, 0)
    if decoded is None:
        decoded = _decode_enclosing_object(model_text, key_pos, 0)
    if decoded is None:
        log.debug("Tool-call-shaped text did not decode", snippet=model_text[key_pos:key_pos + 80])
        return None

    value, raw = decoded
    request = _to_request(value)
    if request is None:
        log.debug("Tool-call object missing required fields", raw=raw[:200])
    return request
