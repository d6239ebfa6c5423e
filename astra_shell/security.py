"""Command auditing and domain safety checks."""

import re
import shlex
import time
from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import urlparse

from astra_shell.logging import get_logger

log = get_logger(__name__)

LOW = "low"
MEDIUM = "medium"
HIGH = "high"
CRITICAL = "critical"

SEVERITY_ORDER = {LOW: 0, MEDIUM: 1, HIGH: 2, CRITICAL: 3}

_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=.*$")
_SHELL_SEPARATOR_TOKENS = {";", "&&", "||", "|", "&"}
_SHELL_WRAPPER_TOKENS = {"sudo", "command", "builtin", "nohup", "time"}


# rm with a recursive flag anywhere among its options, aimed at /, a top-level
# directory, ~ or a bare wildcard (optionally followed by / or *).
_RM_RECURSIVE_WIDE = (
    r"\brm\s+(?=(?:-\S*\s+)*(?:-[a-zA-Z]*[rR]|--recursive\b))"
    r"(?:-\S*\s+)*"
    r"(?:/[^\s/;&|]*/?\*?|~/?\*?|\*)(?=[\s;&|]|$)"
)

# (pattern, severity, message). Patterns are matched against the full command.
AUDIT_RULES: list[tuple[str, str, str]] = [
    (_RM_RECURSIVE_WIDE, CRITICAL, "Recursive delete of a root, top-level, home or wildcard path"),
    (r"\bmkfs(\.\w+)?\b", CRITICAL, "Filesystem formatting"),
    (r"\bdd\s+.*\bof=/dev/", CRITICAL, "Raw write to a block device"),
    (r":\(\)\s*\{\s*:\|:&\s*\};:", CRITICAL, "Fork bomb"),
    (r">\s*/dev/sd[a-z]", CRITICAL, "Redirect into a block device"),
    (r"\b(curl|wget)\b[^|]*\|\s*(sudo\s+)?(ba|z)?sh\b", HIGH, "Piping downloaded content into a shell"),
    (r"\bchmod\s+(-R\s+)?777\b", HIGH, "World-writable permissions"),
    (r"\b(shutdown|reboot|halt|poweroff)\b", HIGH, "Host power state change"),
    (r"\bsudo\b", MEDIUM, "Privilege escalation"),
    (r"\brm\s+-[a-zA-Z]*r", MEDIUM, "Recursive delete"),
    (r"\bkill(all)?\s+-9\b", MEDIUM, "Forced process kill"),
    (r">\s*\S", LOW, "Output redirection overwrites files"),
]


def _tokenize_shell_command(command: str) -> list[str]:
    """Tokenize shell command while preserving control operators."""
    lexer = shlex.shlex(command, posix=True, punctuation_chars=";&|")
    lexer.whitespace_split = True
    lexer.commenters = ""
    return list(lexer)


def _split_shell_segments(command: str) -> list[list[str]]:
    """Split shell command into tokenized segments separated by control operators."""
    segments: list[list[str]] = []
    current: list[str] = []
    for token in _tokenize_shell_command(command):
        if token in _SHELL_SEPARATOR_TOKENS:
            if current:
                segments.append(current)
                current = []
            continue
        current.append(token)
    if current:
        segments.append(current)
    return segments


def _extract_segment_base_command(tokens: list[str]) -> str:
    """Extract executable command token from a tokenized shell segment."""
    for token in tokens:
        token = str(token).strip()
        if not token or token in _SHELL_WRAPPER_TOKENS:
            continue
        if _ASSIGNMENT_RE.match(token) and "/" not in token:
            continue
        return token
    return ""


def extract_shell_base_commands(command: str) -> list[str]:
    """Extract base command token from each shell segment."""
    cleaned = str(command or "").strip()
    if not cleaned:
        return []
    try:
        segments = _split_shell_segments(cleaned)
    except ValueError:
        return []
    return [base for segment in segments if (base := _extract_segment_base_command(segment))]


def is_blocked_shell_command(command: str, blocked_patterns: list[str]) -> tuple[bool, str]:
    """Evaluate command against blocked patterns using parsed command matching.

    Patterns containing whitespace are searched in each segment; single-word
    patterns must match a segment's base command.
    """
    cleaned = str(command or "").strip()
    if not cleaned:
        return True, "empty_command"

    try:
        segments = _split_shell_segments(cleaned)
    except ValueError:
        return True, "unparseable_command"

    segment_texts = [" ".join(tokens) for tokens in segments]
    base_commands = [base for segment in segments if (base := _extract_segment_base_command(segment))]
    if not base_commands:
        return True, "unparseable_command"

    for raw_pattern in blocked_patterns or []:
        pattern = str(raw_pattern or "").strip()
        if not pattern:
            continue
        try:
            compiled = re.compile(pattern)
        except re.error:
            compiled = re.compile(re.escape(pattern))
        if re.search(r"\s", pattern):
            if any(compiled.search(text) for text in segment_texts):
                return True, pattern
        elif any(compiled.match(base) for base in base_commands):
            return True, pattern
    return False, ""


@dataclass(frozen=True)
class SecurityFinding:
    """One audit rule hit."""

    severity: str
    message: str
    pattern: str


@dataclass
class AuditReport:
    """All findings for a command."""

    command: str
    findings: list[SecurityFinding] = field(default_factory=list)

    @property
    def highest_severity(self) -> str | None:
        if not self.findings:
            return None
        return max(self.findings, key=lambda f: SEVERITY_ORDER[f.severity]).severity

    @property
    def is_critical(self) -> bool:
        return self.highest_severity == CRITICAL

    def summary(self) -> str:
        if not self.findings:
            return "no findings"
        return "; ".join(f"[{f.severity}] {f.message}" for f in self.findings)


class CommandAuditor:
    """Grade shell commands against the audit rule table."""

    def __init__(self, rules: list[tuple[str, str, str]] | None = None):
        self._rules = [
            (re.compile(pattern), severity, message)
            for pattern, severity, message in (rules if rules is not None else AUDIT_RULES)
        ]

    def audit(self, command: str) -> AuditReport:
        report = AuditReport(command=command)
        for compiled, severity, message in self._rules:
            if compiled.search(command or ""):
                report.findings.append(SecurityFinding(severity, message, compiled.pattern))
        if report.findings:
            log.info("Command audit findings", command=command, severity=report.highest_severity)
        return report


class DomainSafetyCache:
    """Per-domain safety verdicts with explicit timestamp + TTL expiry."""

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        unsafe_domains: list[str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = float(ttl_seconds)
        self._unsafe = {d.strip().lower() for d in unsafe_domains or [] if d.strip()}
        self._clock = clock
        self._entries: dict[str, tuple[bool, float]] = {}

    @staticmethod
    def domain_of(url_or_domain: str) -> str:
        text = (url_or_domain or "").strip().lower()
        if "://" in text:
            text = urlparse(text).hostname or ""
        return text.split("/", 1)[0].split(":", 1)[0]

    def _evaluate(self, domain: str) -> bool:
        return not any(domain == bad or domain.endswith("." + bad) for bad in self._unsafe)

    def get(self, domain: str) -> bool | None:
        """Return the cached verdict, or None when missing or expired."""
        entry = self._entries.get(domain)
        if entry is None:
            return None
        verdict, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[domain]
            return None
        return verdict

    def is_safe(self, url_or_domain: str) -> bool:
        domain = self.domain_of(url_or_domain)
        if not domain:
            return False
        cached = self.get(domain)
        if cached is not None:
            return cached
        verdict = self._evaluate(domain)
        self._entries[domain] = (verdict, self._clock())
        return verdict

    def __len__(self) -> int:
        return len(self._entries)
