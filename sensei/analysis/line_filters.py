"""
Line classification tables for captured terminal output.

Each table is an ordered list of named rules; callers take the first match.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable

WORKING_INDICATOR_PATTERNS: list[re.Pattern] = [
    re.compile(r"working", re.IGNORECASE),
    re.compile(r"generating", re.IGNORECASE),
]

_PROMPT_TIMESTAMP_RE = re.compile(r"\(\d{1,2}:\d{2}\s+[AP]M\)$")
_BARE_ESCAPES_RE = re.compile(r"^(\[[\?;0-9]+[hlm])+$")
_NOISE_MARKERS = ("BUILD AGENT", "opencode v", "[?7l", "[?7h", "[?25h", "[?25l")

_PROGRESS_RE = re.compile(r"^\s*\d+K/\d+%\s*$")
_SHARE_PROGRESS_RE = re.compile(r"\d+K/\d+%")
_BUILD_STATUS_RE = re.compile(r"^\s*Build\s+[\w.-]+\s+\(\d{1,2}:\d{2}\s+[AP]M\)\s*$")


@dataclass(frozen=True)
class LineRule:
    name: str
    matches: Callable[[str], bool]


def is_working_indicator(line: str, patterns: Iterable[re.Pattern] = WORKING_INDICATOR_PATTERNS) -> bool:
    return any(p.search(line) for p in patterns)


# Lines that never belong in an accumulated episode.
DISCARD_RULES: list[LineRule] = [
    LineRule("status-indicator", lambda line: is_working_indicator(line)),
    LineRule("user-prompt", lambda line: bool(_PROMPT_TIMESTAMP_RE.search(line.strip()))),
    LineRule("chrome-noise", lambda line: any(marker in line for marker in _NOISE_MARKERS)),
    LineRule("bare-escapes", lambda line: bool(_BARE_ESCAPES_RE.match(line.strip()))),
    LineRule("blank", lambda line: not line.strip()),
]

# A held-back candidate is accepted once it looks like a finished line.
COMPLETE_RULES: list[LineRule] = [
    LineRule("terminal-punctuation", lambda text: bool(re.search(r"[.!?;:,]$", text))),
    LineRule("closing-paren", lambda text: text.endswith(")")),
    LineRule("header-or-path", lambda text: bool(re.match(r"[A-Z#/*]", text))),
    LineRule("long", lambda text: len(text) > 60),
    LineRule("has-path", lambda text: "/" in text),
    LineRule("numbered-item", lambda text: bool(re.match(r"\s*\d+\.", text))),
]

# Removed from a finalized episode before it is sent for analysis.
CONTEXT_RULES: list[LineRule] = [
    LineRule("share-progress", lambda line: "/share to create a shareable link" in line
             and bool(_SHARE_PROGRESS_RE.search(line))),
    LineRule("progress", lambda line: bool(_PROGRESS_RE.match(line))),
    LineRule("build-status", lambda line: bool(_BUILD_STATUS_RE.match(line))),
    LineRule("echoed-prompt", lambda line: line.strip().startswith(">")),
]


def first_match(rules: Iterable[LineRule], line: str) -> str | None:
    """Name of the first rule matching ``line``, or None."""
    for rule in rules:
        if rule.matches(line):
            return rule.name
    return None


def looks_complete(text: str) -> bool:
    return first_match(COMPLETE_RULES, text.strip()) is not None


def filter_context(text: str) -> str:
    """Drop progress counters, build status and echoed prompts; trim the result."""
    kept = [line for line in text.split("\n") if first_match(CONTEXT_RULES, line) is None]
    return "\n".join(kept).strip()
