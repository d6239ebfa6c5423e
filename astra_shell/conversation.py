"""Conversation log with bounded retention."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from astra_shell.exceptions import ConversationError
from astra_shell.llm import Message

SYSTEM = "system"
USER = "user"
ASSISTANT = "assistant"
TOOL_RESULT = "tool-result"

ROLES = (SYSTEM, USER, ASSISTANT, TOOL_RESULT)

MIN_RETENTION = 3


def _utcnow_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class Turn:
    """One message in the conversation log."""

    role: str
    content: str
    timestamp: str = field(default_factory=_utcnow_iso, compare=False)

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ConversationError(f"Unknown turn role: {self.role!r}")


class Conversation:
    """Append-only ordered turns, trimmed to the most recent `retention` turns.

    A leading system turn is never trimmed, and a tool-result turn is never kept
    without the assistant turn that requested it.
    """

    def __init__(self, system_prompt: str | None = None, retention: int = 40):
        if retention < MIN_RETENTION:
            raise ValueError(f"retention must be at least {MIN_RETENTION}")
        self.retention = retention
        self._turns: list[Turn] = []
        if system_prompt is not None:
            self._turns.append(Turn(SYSTEM, system_prompt))

    @property
    def system_turn(self) -> Turn | None:
        if self._turns and self._turns[0].role == SYSTEM:
            return self._turns[0]
        return None

    def append(self, turn: Turn) -> None:
        """Append a turn, then trim to the retention window.

        Raises:
            ConversationError if a tool-result does not follow an assistant turn,
            or a system turn is appended after the first position
        """
        if turn.role == TOOL_RESULT and (not self._turns or self._turns[-1].role != ASSISTANT):
            raise ConversationError("tool-result turn must follow an assistant turn")
        if turn.role == SYSTEM and self._turns:
            raise ConversationError("system turn is only allowed at index 0")
        self._turns.append(turn)
        if len(self._turns) > self.retention:
            self.trim(self.retention)

    def add(self, role: str, content: str) -> Turn:
        turn = Turn(role, content)
        self.append(turn)
        return turn

    def snapshot(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def trim(self, max_turns: int) -> int:
        """Drop the oldest non-system turns until at most `max_turns` remain.

        Returns:
            Number of turns removed
        """
        if max_turns < 1:
            raise ValueError("max_turns must be positive")
        head = [self._turns[0]] if self.system_turn is not None else []
        body = self._turns[len(head):]
        keep = max(0, max_turns - len(head))

        cut = max(0, len(body) - keep)
        # A tool-result at the new front lost its assistant turn; drop it too.
        while cut < len(body) and cut > 0 and body[cut].role == TOOL_RESULT:
            cut += 1

        removed = cut
        if removed:
            self._turns = head + body[cut:]
        return removed

    def clear(self) -> None:
        """Forget everything except the system turn."""
        self._turns = [self._turns[0]] if self.system_turn is not None else []

    def to_messages(self) -> list[Message]:
        return [Message(role=turn.role, content=turn.content) for turn in self._turns]

    def count_by_role(self) -> dict[str, Any]:
        counts = {role: 0 for role in ROLES}
        for turn in self._turns:
            counts[turn.role] += 1
        return counts

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self):
        return iter(self._turns)
