"""
INDIGO Field Validator

Maps free-form field values onto the allowed-value catalogs the tracker
enforces, before a create, update or transition is submitted.

Protocol:
  1. Fetch field metadata for the exact operation context.
  2. Fast path: values that equal an allowed value case-insensitively are
     normalized locally. If nothing is left to map, no model call.
  3. Otherwise one round-trip to the field_mapper model.
  4. Clarification marker first, then the first fenced JSON block.
  5. Fail open: any malfunction returns the original values unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from loguru import logger

from indigo.agents.field_mapper import FieldMapperAgent, FieldMappingRequest
from indigo.interfaces import MetadataProvider, TrackerError
from indigo.models import FieldMeta, TransitionInfo
from indigo.router import RouterError


@dataclass
class ValidationOutcome:
    fields: dict[str, Any]
    clarification: str | None = None
    mapped: bool = False
    fallback_reason: str | None = None

    @property
    def needs_clarification(self) -> bool:
        return self.clarification is not None


def _canonical(value: Any, allowed: Sequence[str]) -> str | None:
    if not isinstance(value, str):
        return None
    wanted = value.strip().lower()
    for option in allowed:
        if option.lower() == wanted:
            return option
    return None


class FieldValidator:
    def __init__(self, mapper: FieldMapperAgent, metadata: MetadataProvider):
        self.mapper = mapper
        self.metadata = metadata

    async def validate_create_fields(
        self,
        project_key: str,
        issue_type: str,
        fields: dict[str, Any],
    ) -> ValidationOutcome:
        try:
            metas = await self.metadata.create_field_meta(project_key, issue_type)
        except TrackerError as e:
            return self._fail_open(fields, f"create metadata unavailable: {e}")
        return await self._validate("create", f"project {project_key}, issue type {issue_type}", fields, metas)

    async def validate_update_fields(self, issue_key: str, fields: dict[str, Any]) -> ValidationOutcome:
        try:
            metas = await self.metadata.edit_field_meta(issue_key)
        except TrackerError as e:
            return self._fail_open(fields, f"edit metadata unavailable: {e}")
        return await self._validate("update", f"issue {issue_key}", fields, metas)

    async def validate_transition_fields(
        self,
        issue_key: str,
        transition: TransitionInfo,
        fields: dict[str, Any],
    ) -> ValidationOutcome:
        """Transition metadata travels with the (freshly fetched) transition."""
        metas = [f.as_field_meta() for f in transition.fields]
        label = f"issue {issue_key}, transition '{transition.name}' -> '{transition.target_status}'"
        return await self._validate("transition", label, fields, metas, fill_required=True)

    # --- Core ---

    async def _validate(
        self,
        operation: str,
        label: str,
        fields: dict[str, Any],
        metas: Sequence[FieldMeta],
        fill_required: bool = False,
    ) -> ValidationOutcome:
        by_alias = _meta_index(metas)
        normalized = dict(fields)
        pending: list[str] = []

        for key, value in fields.items():
            meta = by_alias.get(key.lower())
            # Resolved ids and lists are already canonical
            if meta is None or not meta.allowed_values or not isinstance(value, str):
                continue
            canonical = _canonical(value, meta.allowed_values)
            if canonical is not None:
                normalized[key] = canonical
            else:
                pending.append(key)

        present = {id(by_alias[k.lower()]) for k in fields if k.lower() in by_alias}
        missing = [
            m for m in metas
            if fill_required and m.required and m.allowed_values and id(m) not in present
        ]

        if not pending and not missing:
            return ValidationOutcome(fields=normalized)

        logger.debug(
            f"[VALIDATOR] {operation}: mapping {pending or '-'}"
            f"{f', missing required {[m.key for m in missing]}' if missing else ''}"
        )

        request = FieldMappingRequest(operation=operation, context_label=label, values=dict(fields), fields=list(metas))
        try:
            mapping = await self.mapper.run(request)
        except RouterError as e:
            return self._fail_open(fields, f"field mapper unavailable: {e}")

        if mapping.clarification:
            return ValidationOutcome(fields=dict(fields), clarification=mapping.clarification)
        if mapping.mapped is None:
            return self._fail_open(fields, mapping.parse_error or "unusable mapper response")

        merged = dict(normalized)
        user_key_for = {id(by_alias[k.lower()]): k for k in fields if k.lower() in by_alias}
        for key, value in mapping.mapped.items():
            meta = by_alias.get(str(key).lower())
            if meta is None:
                if key in fields:
                    merged[key] = value
                else:
                    logger.debug(f"[VALIDATOR] Ignoring mapped field '{key}' not in metadata")
                continue

            target = user_key_for.get(id(meta), meta.key)
            if meta.allowed_values:
                canonical = _canonical(value, meta.allowed_values)
                if canonical is None:
                    logger.warning(f"[VALIDATOR] Discarding '{value}' for {meta.key}: not an allowed value")
                    continue
                merged[target] = canonical
            else:
                merged[target] = value

        logger.info(f"[VALIDATOR] {operation}: mapped {len(mapping.mapped)} field(s) for {label}")
        return ValidationOutcome(fields=merged, mapped=True)

    @staticmethod
    def _fail_open(fields: dict[str, Any], reason: str) -> ValidationOutcome:
        logger.warning(f"[VALIDATOR] Passing values through unmapped: {reason}")
        return ValidationOutcome(fields=dict(fields), fallback_reason=reason)


def _meta_index(metas: Sequence[FieldMeta]) -> dict[str, FieldMeta]:
    """Field metadata reachable by key or display name, case-insensitively."""
    index: dict[str, FieldMeta] = {}
    for meta in metas:
        index.setdefault(meta.key.lower(), meta)
        index.setdefault(meta.name.lower(), meta)
    return index
