"""Rule-based decomposition of multi-step requests into plans."""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass
from typing import Callable

from astra_shell.logging import get_logger
from astra_shell.plan import Plan, PlanStep
from astra_shell.tools.tool_call import ToolCallRequest

log = get_logger(__name__)

_CLAUSE_SPLIT_RE = re.compile(r"\s*(?:;|&&|,?\s+and\s+then\s+|,?\s+then\s+|,\s*after\s+that\s*,?\s+)\s*", re.IGNORECASE)

StepBuilder = Callable[[dict[str, str]], PlanStep]


def _q(value: str | None, default: str = ".") -> str:
    return shlex.quote(value or default)


def _cmd(description: str, template: Callable[[dict[str, str]], str]) -> StepBuilder:
    def build(groups: dict[str, str]) -> PlanStep:
        text = description.format(**{k: v or "" for k, v in groups.items()}).strip()
        return PlanStep.from_command(text, template(groups))

    return build


def _tool(description: str, tool_name: str, params: Callable[[dict[str, str]], dict]) -> StepBuilder:
    def build(groups: dict[str, str]) -> PlanStep:
        return PlanStep(
            description.format(**{k: v or "" for k, v in groups.items()}).strip(),
            ToolCallRequest(tool_name, params(groups)),
        )

    return build


PATTERNS: list[tuple[str, StepBuilder]] = [
    (r"(?:list|show)(?: all)?(?: the)? files(?: in (?P<path>\S+?))?",
     _cmd("List files {path}", lambda g: f"ls -la {_q(g.get('path'))}")),
    (r"(?:show|print|what is)(?: the)? (?:current|working) (?:directory|folder)",
     _cmd("Show working directory", lambda g: "pwd")),
    (r"(?:make|create)(?: a)?(?: new)? (?:directory|folder)(?: called| named)? (?P<name>\S+?)",
     _cmd("Create directory {name}", lambda g: f"mkdir -p {_q(g['name'])}")),
    (r"(?:delete|remove)(?: the)? file (?P<name>\S+?)",
     _cmd("Delete file {name}", lambda g: f"rm -- {_q(g['name'])}")),
    (r"(?:delete|remove)(?: the)? (?:directory|folder) (?P<name>\S+?)",
     _cmd("Delete directory {name}", lambda g: f"rm -r -- {_q(g['name'])}")),
    (r"copy (?P<src>\S+?) to (?P<dst>\S+?)",
     _cmd("Copy {src} to {dst}", lambda g: f"cp -r -- {_q(g['src'])} {_q(g['dst'])}")),
    (r"(?:move|rename) (?P<src>\S+?) to (?P<dst>\S+?)",
     _cmd("Move {src} to {dst}", lambda g: f"mv -- {_q(g['src'])} {_q(g['dst'])}")),
    (r"(?:find|locate)(?: all)? files? (?:named|called|matching) (?P<name>\S+?)",
     _cmd("Find files named {name}", lambda g: f"find . -name {_q(g['name'])}")),
    (r"count(?: the)? lines in (?P<name>\S+?)",
     _cmd("Count lines in {name}", lambda g: f"wc -l -- {_q(g['name'])}")),
    (r"(?:show|check)(?: the)? disk (?:usage|space)",
     _cmd("Show disk usage", lambda g: "df -h")),
    (r"(?:show|list)(?: all)?(?: running)? processes",
     _cmd("List running processes", lambda g: "ps aux")),
    (r"(?:show|check)(?: the)? git status",
     _cmd("Show git status", lambda g: "git status --short --branch")),
    (r"(?:read|show|open|cat)(?: the)? file (?P<name>\S+?)",
     _tool("Read file {name}", "ReadFile", lambda g: {"path": g["name"]})),
    (r"(?:show|check|report)(?: the)?(?: system)? (?:stats|statistics|resources|memory usage|cpu usage)",
     _tool("Report system statistics", "Stat", lambda g: {})),
    (r"(?:search|look up)(?: the web)?(?: for)? (?P<query>.+?)",
     _tool("Search the web for {query}", "WebSearch", lambda g: {"query": g["query"]})),
]

_COMPILED = [(re.compile(rf"^\s*(?:please\s+)?{pattern}\s*[.!]?\s*$", re.IGNORECASE), build) for pattern, build in PATTERNS]


@dataclass(frozen=True)
class ParsedClause:
    text: str
    step: PlanStep | None


def split_clauses(text: str) -> list[str]:
    """Split a request on sequencing connectors ("then", ";", "&&")."""
    return [part.strip() for part in _CLAUSE_SPLIT_RE.split(text or "") if part and part.strip()]


def parse_clause(clause: str) -> PlanStep | None:
    for compiled, build in _COMPILED:
        match = compiled.match(clause)
        if match:
            return build(match.groupdict())
    return None


class RulePlanner:
    """Turn "do X then Y" requests into a Plan; single requests go to the model."""

    def __init__(self, min_clauses: int = 2):
        self.min_clauses = min_clauses

    def plan(self, text: str) -> Plan | None:
        clauses = split_clauses(text)
        if len(clauses) < self.min_clauses:
            return None

        parsed = [ParsedClause(clause, parse_clause(clause)) for clause in clauses]
        steps = tuple(item.step for item in parsed if item.step is not None)
        if len(steps) < self.min_clauses:
            log.debug("Too few clauses matched a planner pattern", clauses=len(clauses), matched=len(steps))
            return None

        skipped = tuple(item.text for item in parsed if item.step is None)
        confidence = round(len(steps) / len(clauses), 3)
        log.info("Plan built", steps=len(steps), skipped=len(skipped), confidence=confidence)
        return Plan(steps=steps, confidence=confidence, source=text, skipped=skipped)
