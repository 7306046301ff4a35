"""
Indigo: the conversational planner driving the orchestration loop.

Renders the per-turn AIContext into a system prompt (tracker state,
tools, command formats), builds first-turn or continuation messages,
and streams the reply. The reply is parsed only once complete.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Sequence

from indigo.agents import BaseAgent
from indigo.models import AIContext, HistoryEntry, IssueDetails
from indigo.parser import CommandParser, ParsedResponse
from indigo.router import RouterResponse

CONTINUATION_PROMPT = (
    "Given the results above, decide the next step toward the goal. "
    "If the goal has been achieved, summarize the outcome and say TASK COMPLETE."
)

MAX_COMMENTS_PER_ISSUE = 3
MAX_DESCRIPTION_CHARS = 800


@dataclass
class AssistantTurn:
    context: AIContext
    prior_messages: Sequence[dict[str, str]] = field(default_factory=list)


LEGACY_FORMATS = """Legacy one-line commands are also understood:
- JQL: <query>
- CREATE: project=X | summary=Y | type=Z | sprint=current | epic=<name>
- UPDATE: <key> | field=value | field2=value2
- STATUS: <key> | <status>
- COMMENT: <key> | <comment text>
- LOG: <key> | time=<duration>    (e.g. 2h, 1h 30m, 1d)
- ASSIGN: <key> | <email>
- WATCH: <key> | <email>
- LINK: <key> | <linked-key> | <link-type>
- DELETE: <key>
- CHANGELOG: <key>
- DETAIL: <key>
- GET_TRANSITIONS: <key>
- SPRINT: <name, id, 'current' or month> | project=<KEY>
- COMPONENTS: <project>
- CLASSIFY: <key> | <query>    then SELECT_CLASSIFICATION: <key> | <number>
- PCM: <key> | <query>         then SELECT_PCM: <key> | <number>"""


class AssistantAgent(BaseAgent):
    role = "assistant"

    system_prompt = """You are Indigo, an assistant that manages Jira issues from natural language.

You work in steps. Each reply may contain any number of actions; they run in order and you will
see every result before your next step. Later actions may depend on earlier ones, so only emit
actions whose inputs you already know.

{context}

{tools}

## Action Format
Put each action on its own line, as a single line of JSON:
{marker} {{"tool": "<tool name>", "arguments": {{...}}}}

{legacy}

Rules:
- Explain what you are doing in plain language alongside the actions.
- Use exact issue keys. Search first if you don't know them.
- For sprint, "current" means the active sprint.
- Ask the user instead of guessing when a request is ambiguous.
- When the user's goal has been fully achieved, summarize the outcome and say TASK COMPLETE.
  Do not say TASK COMPLETE in a reply that still contains actions to run."""

    def __init__(self, router, tools_prompt: str = "", parser: CommandParser | None = None):
        super().__init__(router)
        self.tools_prompt = tools_prompt
        self.parser = parser or CommandParser()

    # --- Prompt rendering ---

    def render_system_prompt(self, context: AIContext) -> str:
        return self.system_prompt.format(
            context=render_context(context),
            tools=self.tools_prompt.strip() or "## Available Tools\n(none registered)",
            marker=self.parser.action_marker,
            legacy=LEGACY_FORMATS,
        )

    def build_messages(self, turn: AssistantTurn) -> list[dict[str, str]]:
        context = turn.context
        messages = [self._system_msg(self.render_system_prompt(context))]

        if not context.is_continuation:
            for msg in turn.prior_messages:
                if msg.get("role") in ("user", "assistant") and msg.get("content"):
                    messages.append({"role": msg["role"], "content": msg["content"]})
            messages.append(self._user_msg(context.user_goal))
            return messages

        messages.append(self._user_msg(
            f"Original goal: {context.user_goal}\n\n"
            f"{render_history(context.action_history)}\n\n"
            f"{CONTINUATION_PROMPT}"
        ))
        return messages

    def parse_response(self, response: RouterResponse, turn: AssistantTurn) -> ParsedResponse:
        return self.parser.parse(response.content)

    async def stream_turn(
        self,
        turn: AssistantTurn,
        on_chunk: Callable[[str], None] | None = None,
    ) -> RouterResponse:
        """Stream one reply; chunks go to on_chunk, the full text comes back."""
        return await self.router.stream(
            role=self.role,
            messages=self.build_messages(turn),
            on_chunk=on_chunk,
        )


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------

def render_context(context: AIContext) -> str:
    lines = [
        "## Current Context",
        f"- Current user: {context.current_user}",
        f"- Available projects: {', '.join(context.projects) or 'unknown'}",
        f"- Active filters: {context.filters.describe()}",
    ]
    if context.statuses:
        lines.append(f"- Statuses: {', '.join(context.statuses)}")
    if context.resolutions:
        lines.append(f"- Resolutions: {', '.join(context.resolutions)}")
    if context.sprints:
        lines.append("- Sprints: " + ", ".join(f"{s.name} ({s.state}, id {s.id})" for s in context.sprints))
    if context.epics:
        lines.append("- Epics: " + ", ".join(f"{e.key} {e.summary}" for e in context.epics))

    lines.append(f"- Visible issues ({len(context.visible_issues)}):")
    for issue in context.visible_issues:
        assignee = issue.assignee or "unassigned"
        lines.append(f"  - {issue.key}: {issue.summary} [{issue.status}] ({assignee})")

    if context.selected_issues:
        lines.append("- Selected issues: " + ", ".join(i.key for i in context.selected_issues))
    for details in context.selected_issue_details:
        lines.extend(_render_details(details))

    return "\n".join(lines)


def _render_details(details: IssueDetails) -> list[str]:
    issue = details.issue
    lines = [f"### {issue.key}: {issue.summary}", f"Status: {issue.status} | Type: {issue.issue_type or '?'}"]
    if details.description:
        description = details.description.strip()
        if len(description) > MAX_DESCRIPTION_CHARS:
            description = description[:MAX_DESCRIPTION_CHARS] + "..."
        lines.append(f"Description: {description}")
    for comment in details.comments[-MAX_COMMENTS_PER_ISSUE:]:
        lines.append(f"Comment by {comment.author}: {comment.body.strip()}")
    return lines


def render_history(history: Sequence[HistoryEntry]) -> str:
    if not history:
        return "No actions have been executed yet."
    lines = ["Actions executed so far:"]
    for i, entry in enumerate(history, start=1):
        lines.append(f"{i}. {entry.action.describe()}")
        lines.append(f"   {entry.result.render()}")
    return "\n".join(lines)
