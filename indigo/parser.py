"""
INDIGO Command & Action Parser

Turns one complete block of model text into executable commands.
Two wire dialects coexist and are decoded independently:

  Structured:  ACTION: {"tool": "search_issues", "arguments": {"jql": "..."}}
  Legacy:      KEYWORD: arg0 | key1=value1 | key2=value2

If the structured dialect yields at least one Action, legacy Intents
from the same text are not executed. Recognized command lines are
stripped from the narration shown to the user either way.

Never fed partial stream chunks: the loop hands it the complete text.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Callable

from loguru import logger

from indigo.models import (
    Action,
    AddCommentIntent,
    AddWatcherIntent,
    AssignIssueIntent,
    ChangeStatusIntent,
    ClassificationLookupIntent,
    ClassificationSelectIntent,
    ComponentLookupIntent,
    CreateIntent,
    DeleteIssueIntent,
    FetchChangelogIntent,
    GetTransitionsIntent,
    Intent,
    LinkIssuesIntent,
    LogWorkIntent,
    PCMLookupIntent,
    PCMSelectIntent,
    SearchIntent,
    ShowIssueDetailIntent,
    SprintLookupIntent,
    UpdateIntent,
)

DEFAULT_ACTION_MARKER = "ACTION:"

DEFAULT_COMPLETION_PHRASES: tuple[str, ...] = (
    "task complete",
    "task completed",
    "task is complete",
    "goal achieved",
    "goal complete",
    "goal completed",
    "goal has been achieved",
    "all done",
    "objective complete",
)

_KEYWORD_LINE = re.compile(r"^([A-Z][A-Z_]*)\s*:\s*(.*)$")
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)\s*([dhm])")

_SECONDS_PER_UNIT = {
    "d": 8 * 3600,  # 8-hour workday
    "h": 3600,
    "m": 60,
}


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class ParsedResponse:
    text: str
    narration: str
    actions: list[Action] = field(default_factory=list)
    intents: list[Intent] = field(default_factory=list)
    is_complete: bool = False
    decode_failures: int = 0
    skipped_lines: int = 0

    @property
    def uses_structured_dialect(self) -> bool:
        return bool(self.actions)

    @property
    def commands(self) -> list[Action]:
        """What the loop executes, in parse order."""
        if self.actions:
            return list(self.actions)
        return [intent.to_action() for intent in self.intents]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def parse_duration(text: str) -> int | None:
    """
    "2h" -> 7200, "1h 30m" -> 5400, "1.5h" -> 5400, "1d" -> 28800.
    Bare numbers have no unit and are rejected.
    """
    parts = _DURATION_PART.findall(text.strip().lower())
    if not parts:
        return None
    total = sum(float(amount) * _SECONDS_PER_UNIT[unit] for amount, unit in parts)
    return int(round(total)) or None


def _split_args(rest: str) -> list[str]:
    parts = [p.strip() for p in rest.split("|")]
    return [p for p in parts if p]


def _key_values(parts: list[str]) -> dict[str, str]:
    fields: dict[str, str] = {}
    for part in parts:
        key, sep, value = part.partition("=")
        key, value = key.strip(), value.strip()
        if sep and key and value:
            fields[key] = value
    return fields


def _select_args(parts: list[str]) -> tuple[str, int] | None:
    """[key,] option number."""
    if len(parts) == 1 and parts[0].isdigit():
        return "", int(parts[0])
    if len(parts) == 2 and parts[1].isdigit():
        return parts[0], int(parts[1])
    return None


# ---------------------------------------------------------------------------
# Legacy keyword decoders
# Each takes the raw remainder after "KEYWORD:" and returns an Intent,
# or None when the argument count/shape is wrong.
# ---------------------------------------------------------------------------

def _search(rest: str) -> Intent | None:
    query = rest.strip()
    return SearchIntent(jql=query) if query else None


def _update(rest: str) -> Intent | None:
    parts = _split_args(rest)
    if len(parts) < 2:
        return None
    fields = _key_values(parts[1:])
    if not fields:
        return None
    return UpdateIntent(issue_key=parts[0], fields=fields)


def _create(rest: str) -> Intent | None:
    fields = _key_values(_split_args(rest))
    return CreateIntent(fields=fields) if fields else None


def _log(rest: str) -> Intent | None:
    parts = _split_args(rest)
    if len(parts) < 2:
        return None
    time_text = _key_values(parts[1:]).get("time", parts[1])
    seconds = parse_duration(time_text)
    if seconds is None:
        return None
    return LogWorkIntent(issue_key=parts[0], time_seconds=seconds)


def _status(rest: str) -> Intent | None:
    parts = _split_args(rest)
    if len(parts) < 2:
        return None
    return ChangeStatusIntent(issue_key=parts[0], new_status=parts[1], fields=_key_values(parts[2:]))


def _comment(rest: str) -> Intent | None:
    key, sep, text = rest.partition("|")
    key, text = key.strip(), text.strip()
    if not sep or not key or not text:
        return None
    return AddCommentIntent(issue_key=key, comment=text)


def _single_key(factory: Callable[[str], Intent]) -> Callable[[str], Intent | None]:
    def decode(rest: str) -> Intent | None:
        parts = _split_args(rest)
        if len(parts) != 1:
            return None
        return factory(parts[0])
    return decode


def _pair(factory: Callable[[str, str], Intent]) -> Callable[[str], Intent | None]:
    def decode(rest: str) -> Intent | None:
        parts = _split_args(rest)
        if len(parts) < 2:
            return None
        return factory(parts[0], parts[1])
    return decode


def _link(rest: str) -> Intent | None:
    parts = _split_args(rest)
    if len(parts) < 3:
        return None
    return LinkIssuesIntent(issue_key=parts[0], linked_issue=parts[1], link_type=parts[2])


def _sprint(rest: str) -> Intent | None:
    parts = _split_args(rest)
    if not parts or len(parts) > 2:
        return None
    project = _key_values(parts[1:]).get("project") if len(parts) == 2 else None
    if len(parts) == 2 and not project:
        return None
    return SprintLookupIntent(query=parts[0], project_key=project)


def _select(factory: Callable[[str, int], Intent]) -> Callable[[str], Intent | None]:
    def decode(rest: str) -> Intent | None:
        args = _select_args(_split_args(rest))
        if args is None:
            return None
        return factory(*args)
    return decode


LEGACY_DECODERS: dict[str, Callable[[str], Intent | None]] = {
    "JQL": _search,
    "SEARCH": _search,
    "UPDATE": _update,
    "CREATE": _create,
    "LOG": _log,
    "STATUS": _status,
    "COMMENT": _comment,
    "DELETE": _single_key(lambda key: DeleteIssueIntent(issue_key=key)),
    "ASSIGN": _pair(lambda key, who: AssignIssueIntent(issue_key=key, assignee=who)),
    "WATCH": _pair(lambda key, who: AddWatcherIntent(issue_key=key, watcher=who)),
    "LINK": _link,
    "CHANGELOG": _single_key(lambda key: FetchChangelogIntent(issue_key=key)),
    "DETAIL": _single_key(lambda key: ShowIssueDetailIntent(issue_key=key)),
    "GET_TRANSITIONS": _single_key(lambda key: GetTransitionsIntent(issue_key=key)),
    "SPRINT": _sprint,
    "COMPONENTS": _single_key(lambda key: ComponentLookupIntent(project_key=key)),
    "CLASSIFY": _pair(lambda key, q: ClassificationLookupIntent(issue_key=key, query=q)),
    "SELECT_CLASSIFICATION": _select(lambda key, n: ClassificationSelectIntent(issue_key=key, option_index=n)),
    "PCM": _pair(lambda key, q: PCMLookupIntent(issue_key=key, query=q)),
    "SELECT_PCM": _select(lambda key, n: PCMSelectIntent(issue_key=key, option_index=n)),
}


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class CommandParser:
    """
    Stateless decoder for model output. Safe to share between runs.
    """

    def __init__(
        self,
        action_marker: str = DEFAULT_ACTION_MARKER,
        completion_phrases: tuple[str, ...] | list[str] = DEFAULT_COMPLETION_PHRASES,
    ):
        self.action_marker = action_marker
        self.completion_phrases = tuple(p.lower() for p in completion_phrases if p.strip())

    def parse(self, text: str) -> ParsedResponse:
        actions: list[Action] = []
        intents: list[Intent] = []
        narration_lines: list[str] = []
        decode_failures = 0
        skipped = 0

        for line in text.splitlines():
            trimmed = _unwrap(line)

            if trimmed.startswith(self.action_marker):
                action = self.decode_action(trimmed[len(self.action_marker):])
                if action is None:
                    decode_failures += 1
                else:
                    actions.append(action)
                continue

            match = _KEYWORD_LINE.match(trimmed)
            if match and match.group(1) in LEGACY_DECODERS:
                keyword, rest = match.group(1), match.group(2)
                intent = LEGACY_DECODERS[keyword](rest)
                if intent is None:
                    skipped += 1
                    logger.debug(f"[PARSER] Skipping malformed {keyword} line: {trimmed[:120]}")
                else:
                    intents.append(intent)
                continue

            narration_lines.append(line)

        if actions and intents:
            logger.debug(f"[PARSER] {len(actions)} actions parsed; ignoring {len(intents)} legacy intents")

        return ParsedResponse(
            text=text,
            narration=_clean_narration(narration_lines),
            actions=actions,
            intents=intents,
            is_complete=self.detect_completion(text),
            decode_failures=decode_failures,
            skipped_lines=skipped,
        )

    def decode_action(self, payload: str) -> Action | None:
        """Strictly decode one structured action payload. None on failure."""
        try:
            data = json.loads(payload.strip())
        except json.JSONDecodeError as e:
            logger.warning(f"[PARSER] Invalid action JSON ({e.msg}): {payload.strip()[:200]}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"[PARSER] Action payload is not an object: {payload.strip()[:200]}")
            return None

        tool = data.get("tool")
        arguments = data.get("arguments", data.get("args", {}))
        if not isinstance(tool, str) or not tool.strip():
            logger.warning(f"[PARSER] Action without tool name: {payload.strip()[:200]}")
            return None
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            logger.warning(f"[PARSER] Action arguments for '{tool}' are not an object")
            return None

        return Action(tool=tool.strip(), arguments=arguments)

    def detect_completion(self, text: str) -> bool:
        lowered = text.lower()
        return any(phrase in lowered for phrase in self.completion_phrases)


def _unwrap(line: str) -> str:
    """Strip whitespace and inline-code backticks the model wraps commands in."""
    trimmed = line.strip()
    if len(trimmed) >= 2 and trimmed.startswith("`") and trimmed.endswith("`") and not trimmed.startswith("```"):
        trimmed = trimmed.strip("`").strip()
    return trimmed


def _clean_narration(lines: list[str]) -> str:
    cleaned: list[str] = []
    for line in lines:
        if not line.strip():
            if cleaned and not cleaned[-1].strip():
                continue
            cleaned.append("")
        else:
            cleaned.append(line.rstrip())
    return "\n".join(cleaned).strip()
