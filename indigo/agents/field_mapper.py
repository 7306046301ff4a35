"""
Field Mapper: the strict value-mapping agent behind the Field Validator.

Gets the user's raw field values plus the full allowed-value catalog for
the operation and answers with either a fenced JSON object mapping
field -> allowed value, or CLARIFICATION_NEEDED: <question>.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from indigo.agents import BaseAgent
from indigo.models import FieldMeta
from indigo.router import RouterResponse

CLARIFICATION_MARKER = "CLARIFICATION_NEEDED:"

_FENCED_BLOCK = re.compile(r"```[a-zA-Z]*\s*\n?(.*?)```", re.DOTALL)


@dataclass
class FieldMappingRequest:
    operation: str                       # "create", "update", "transition"
    context_label: str                   # e.g. "project SETI, issue type Bug"
    values: dict[str, Any]
    fields: list[FieldMeta] = field(default_factory=list)


@dataclass
class FieldMapping:
    mapped: dict[str, Any] | None = None
    clarification: str | None = None
    parse_error: str | None = None


def extract_clarification(content: str) -> str | None:
    idx = content.find(CLARIFICATION_MARKER)
    if idx < 0:
        return None
    question = content[idx + len(CLARIFICATION_MARKER):].strip().splitlines()
    return question[0].strip() if question and question[0].strip() else "Please clarify the requested values."


def extract_fenced_json(content: str) -> Any:
    """
    Parse the first fenced code block as JSON.
    Raises ValueError if there is no fenced block or it isn't valid JSON.
    """
    found = _FENCED_BLOCK.search(content)
    if not found:
        raise ValueError("no fenced JSON block in response")
    try:
        return json.loads(found.group(1).strip())
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON in fenced block: {e.msg}") from e


class FieldMapperAgent(BaseAgent):
    role = "field_mapper"

    system_prompt = """You map user-provided issue field values onto the exact allowed values an issue tracker accepts.

Rules:
- For every field that has allowed values, pick the ONE allowed value the user most plausibly meant.
- Copy allowed values exactly as written, including case and punctuation.
- Only include fields you are mapping. Never invent fields.
- For required fields the user did not supply, only fill them if the user's wording clearly implies a value.
- If a value is genuinely ambiguous or matches nothing, do not guess. Reply with a single line:
  CLARIFICATION_NEEDED: <one short question for the user>

Otherwise reply with ONLY a fenced JSON object:
```json
{"field_key": "Allowed Value"}
```
"""

    def build_messages(self, context: FieldMappingRequest) -> list[dict[str, str]]:
        catalog_lines = []
        for meta in context.fields:
            flag = "required" if meta.required else "optional"
            values = ", ".join(f'"{v}"' for v in meta.allowed_values) if meta.allowed_values else "free text"
            catalog_lines.append(f"- {meta.key} ({meta.name}, {flag}): {values}")

        user_content = f"""Operation: {context.operation}
Context: {context.context_label}

User values:
{json.dumps(context.values, indent=2, default=str, ensure_ascii=False)}

Allowed values per field:
{chr(10).join(catalog_lines) if catalog_lines else '- none'}

Map the user values now."""

        return [self._system_msg(), self._user_msg(user_content)]

    def parse_response(self, response: RouterResponse, context: FieldMappingRequest) -> FieldMapping:
        content = response.content.strip()

        # The marker wins over any JSON in the same reply
        question = extract_clarification(content)
        if question:
            logger.info(f"[MAPPER] Clarification requested: {question}")
            return FieldMapping(clarification=question)

        try:
            payload = extract_fenced_json(content)
        except ValueError as e:
            logger.warning(f"[MAPPER] {e}")
            logger.debug(f"[MAPPER] Raw response: {content[:500]}")
            return FieldMapping(parse_error=str(e))

        if not isinstance(payload, dict):
            logger.warning(f"[MAPPER] Expected a JSON object, got {type(payload).__name__}")
            return FieldMapping(parse_error="mapping payload is not an object")

        logger.debug(f"[MAPPER] Mapped {len(payload)} fields ({response.tokens_used} tokens)")
        return FieldMapping(mapped=payload)
