"""
INDIGO Tool Registry

The reference ActionExecutor: one Tool per tool name, each with a typed
argument schema and an async handler. The registry

  - validates arguments against the tool's schema,
  - turns tracker rejections and tool errors into failed ToolResults,
  - turns ClarificationNeeded into a clarification ToolResult,
  - lets TrackerTransportError propagate to abort the turn,

and renders the tools section of the assistant's system prompt.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from loguru import logger
from pydantic import ValidationError

from indigo.interfaces import TrackerError, TrackerTransportError
from indigo.models import Action, ToolArguments, ToolResult


class ToolError(Exception):
    """A tool refused to run (bad input, nothing pending, not found)."""
    pass


class ClarificationNeeded(Exception):
    """The operation cannot run until the user answers a question."""

    def __init__(self, question: str):
        super().__init__(question)
        self.question = question


Handler = Callable[[Any], Awaitable[ToolResult]]


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    args_model: type[ToolArguments]
    handler: Handler
    capability: str = "jira"

    def parameters(self) -> list[tuple[str, str, bool, str]]:
        """(wire name, type label, required, description) per argument."""
        params = []
        for field_name, info in self.args_model.model_fields.items():
            params.append((
                info.alias or field_name,
                _type_label(info.annotation),
                info.is_required(),
                info.description or "",
            ))
        return params

    def describe(self) -> str:
        lines = [f"**{self.name}**", self.description]
        params = self.parameters()
        if params:
            lines.append("Parameters:")
            for name, type_label, required, description in params:
                flag = "required" if required else "optional"
                lines.append(f"- `{name}` ({type_label}) ({flag}): {description}")
        return "\n".join(lines)


def _type_label(annotation: Any) -> str:
    text = annotation.__name__ if isinstance(annotation, type) else str(annotation)
    if text.startswith("dict"):
        return "object"
    if text.startswith("list"):
        return "array"
    if text.startswith("int"):
        return "integer"
    return "string"


def _format_validation_error(e: ValidationError) -> str:
    problems = []
    for err in e.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "arguments"
        problems.append(f"{location}: {err.get('msg', 'invalid')}")
    return "; ".join(problems)


class ToolRegistry:
    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning(f"[TOOLS] Replacing already registered tool '{tool.name}'")
        self._tools[tool.name] = tool

    def register_all(self, tools: list[Tool]) -> None:
        for tool in tools:
            self.register(tool)
        logger.debug(f"[TOOLS] {len(self._tools)} tools registered")

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    async def execute(self, action: Action) -> ToolResult:
        tool = self._tools.get(action.tool)
        if tool is None:
            logger.warning(f"[TOOLS] Unknown tool '{action.tool}'")
            return ToolResult.failure(f"Unknown tool '{action.tool}'. Available tools: {', '.join(self._tools)}")

        try:
            args = action.typed_arguments(tool.args_model)
        except ValidationError as e:
            message = f"Invalid arguments for {tool.name}: {_format_validation_error(e)}"
            logger.warning(f"[TOOLS] {message}")
            return ToolResult.failure(message)

        logger.debug(f"[TOOLS] Executing {action.describe()}")
        try:
            result = await tool.handler(args)
        except ClarificationNeeded as e:
            logger.info(f"[TOOLS] {tool.name} needs clarification: {e.question}")
            return ToolResult.needs_clarification(e.question)
        except ToolError as e:
            logger.info(f"[TOOLS] {tool.name} refused: {e}")
            return ToolResult.failure(str(e))
        except TrackerTransportError:
            raise
        except TrackerError as e:
            logger.warning(f"[TOOLS] Tracker rejected {tool.name}: {e}")
            return ToolResult.failure(f"{tool.name} failed: {e}")

        logger.debug(f"[TOOLS] {tool.name} -> {'ok' if result.success else 'failed'}")
        return result

    def generate_tools_prompt(self) -> str:
        sections = ["## Available Tools", ""]
        by_capability: dict[str, list[Tool]] = {}
        for tool in self._tools.values():
            by_capability.setdefault(tool.capability, []).append(tool)

        for capability, tools in by_capability.items():
            sections.append(f"### {capability}")
            sections.append("")
            for tool in tools:
                sections.append(tool.describe())
                sections.append("")

        return "\n".join(sections).rstrip() + "\n"
