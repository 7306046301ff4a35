"""
INDIGO Entity Resolver

Maps free-text references (status names, sprint names, epic names,
component names) to canonical tracker identifiers through one shared
six-step pipeline:

  1. Exact case-insensitive name
  2. Exact transition action name          (transitions only)
  3. Synonym group membership
  4. Query contained in candidate
  5. Candidate contained in query          (transitions and epics only)
  6. Bag-of-words overlap score

match() is pure: same query and candidates in the same order give the
same result. EntityResolver adds catalog lookup, cache escalation and
data-quality reporting on top.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from loguru import logger

from indigo.cache import CatalogCache
from indigo.event_bus import EventBus
from indigo.interfaces import MetadataProvider
from indigo.models import Component, Epic, Sprint, TransitionInfo


class EntityKind(str, Enum):
    TRANSITION = "transition"
    SPRINT = "sprint"
    EPIC = "epic"
    COMPONENT = "component"


class MatchStrategy(str, Enum):
    EXACT_ID = "exact_id"
    EXACT_NAME = "exact_name"
    EXACT_ACTION = "exact_action"
    SYNONYM = "synonym"
    SUBSTRING = "substring"
    REVERSE_SUBSTRING = "reverse_substring"
    WORD_OVERLAP = "word_overlap"


@dataclass(frozen=True)
class Candidate:
    id: str
    name: str
    action_name: str | None = None


@dataclass(frozen=True)
class MatchResult:
    query: str
    kind: EntityKind
    candidate: Candidate | None = None
    strategy: MatchStrategy | None = None
    score: int = 0

    @property
    def matched(self) -> bool:
        return self.candidate is not None

    @property
    def id(self) -> str | None:
        return self.candidate.id if self.candidate else None

    @property
    def name(self) -> str | None:
        return self.candidate.name if self.candidate else None


# Order matters: the first group containing the query wins.
SYNONYM_GROUPS: tuple[tuple[str, ...], ...] = (
    (
        "done", "complete", "completed", "finish", "finished", "close", "closed",
        "resolve", "resolved", "cancel", "cancelled", "canceled", "won't do",
    ),
    (
        "in progress", "start", "started", "begin", "working", "doing",
        "in development", "in dev", "active",
    ),
    (
        "to do", "todo", "open", "backlog", "new", "reopen", "reopened",
        "not started", "selected for development",
    ),
    ("in review", "review", "code review", "under review", "ready for review", "awaiting review"),
    ("qa", "testing", "in qa", "in testing", "test", "verify", "verification"),
    ("blocked", "on hold", "waiting", "impeded", "paused"),
)

_ISSUE_KEY = re.compile(r"^[A-Z][A-Z0-9]+-\d+$")


def _norm(text: str | None) -> str:
    return (text or "").strip().lower()


def _synonym_group(query: str) -> tuple[str, ...] | None:
    for group in SYNONYM_GROUPS:
        if query in group:
            return group
    return None


def _texts(candidate: Candidate, kind: EntityKind) -> list[str]:
    texts = [_norm(candidate.name)]
    if kind is EntityKind.TRANSITION and candidate.action_name:
        texts.append(_norm(candidate.action_name))
    return texts


def _token_hits(query_tokens: list[str], text: str) -> int:
    tokens = text.split()
    return sum(1 for qt in query_tokens if any(qt in t for t in tokens))


def match(query: str, candidates: Sequence[Candidate], kind: EntityKind) -> MatchResult:
    """Run the six-step pipeline. Candidate order is significant."""
    q = _norm(query)
    if not q or not candidates:
        return MatchResult(query=query, kind=kind)

    # 1. exact canonical name
    for c in candidates:
        if _norm(c.name) == q:
            return MatchResult(query, kind, c, MatchStrategy.EXACT_NAME)

    # 2. exact transition action name
    if kind is EntityKind.TRANSITION:
        for c in candidates:
            if c.action_name and _norm(c.action_name) == q:
                return MatchResult(query, kind, c, MatchStrategy.EXACT_ACTION)

    # 3. synonym group
    group = _synonym_group(q)
    if group:
        others = [member for member in group if member != q]
        for c in candidates:
            if any(other in text for text in _texts(c, kind) for other in others):
                return MatchResult(query, kind, c, MatchStrategy.SYNONYM)

    # 4. query inside candidate
    for c in candidates:
        if any(q in text for text in _texts(c, kind)):
            return MatchResult(query, kind, c, MatchStrategy.SUBSTRING)

    # 5. candidate inside query
    if kind in (EntityKind.TRANSITION, EntityKind.EPIC):
        for c in candidates:
            name = _norm(c.name)
            if name and name in q:
                return MatchResult(query, kind, c, MatchStrategy.REVERSE_SUBSTRING)

    # 6. word overlap, first seen wins ties
    query_tokens = q.split()
    best: Candidate | None = None
    best_score = 0
    for c in candidates:
        if kind is EntityKind.TRANSITION:
            score = 2 * _token_hits(query_tokens, _norm(c.name)) + _token_hits(query_tokens, _norm(c.action_name))
        else:
            score = _token_hits(query_tokens, _norm(c.name))
        if score > best_score:
            best, best_score = c, score

    if best is not None:
        return MatchResult(query, kind, best, MatchStrategy.WORD_OVERLAP, best_score)

    return MatchResult(query=query, kind=kind)


# ---------------------------------------------------------------------------
# Candidate adapters
# ---------------------------------------------------------------------------

def transition_candidates(transitions: Iterable[TransitionInfo]) -> list[Candidate]:
    return [Candidate(id=t.id, name=t.target_status, action_name=t.name) for t in transitions]


def sprint_candidates(sprints: Iterable[Sprint]) -> list[Candidate]:
    return [Candidate(id=str(s.id), name=s.name) for s in sprints]


def epic_candidates(epics: Iterable[Epic]) -> list[Candidate]:
    return [Candidate(id=e.key, name=e.summary) for e in epics]


def component_candidates(components: Iterable[Component]) -> list[Candidate]:
    return [Candidate(id=c.id or c.name, name=c.name) for c in components]


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class EntityResolver:
    """
    Catalog-aware front end to match().

    Sprint and epic lookups search the cache first; on a full miss the
    whole catalog for the active projects is fetched from the metadata
    provider, stored, and the pipeline re-run on the larger set.
    Components are cached per project after their first fetch.
    """

    def __init__(
        self,
        metadata: MetadataProvider,
        cache: CatalogCache | None = None,
        bus: EventBus | None = None,
    ):
        self.metadata = metadata
        self.cache = cache or CatalogCache()
        self.bus = bus

    def resolve_transition(self, query: str, transitions: Sequence[TransitionInfo]) -> MatchResult:
        """Transitions are passed in fresh by the caller; never cached."""
        result = match(query, transition_candidates(transitions), EntityKind.TRANSITION)
        self._log(result)
        return result

    async def load_sprints(self, projects: Sequence[str] = ()) -> list[Sprint]:
        """Full sprint catalog for the projects, fetched once per cache lifetime."""
        if not self.cache.has_all_sprints(projects):
            self.cache.store_sprints(projects, await self.metadata.fetch_sprints(list(projects)))
        return self.cache.sprints(projects)

    async def load_components(self, project: str) -> list[Component]:
        components = self.cache.components(project)
        if components is None:
            components = await self.metadata.fetch_components(project)
            self.cache.store_components(project, components)
        return components

    async def resolve_sprint(self, query: str, projects: Sequence[str] = ()) -> MatchResult:
        q = query.strip()
        result = self._sprint_by_id(q, self.cache.sprints(projects))
        if result is None:
            result = match(q, sprint_candidates(self.cache.sprints(projects)), EntityKind.SPRINT)

        if not result.matched and not self.cache.has_all_sprints(projects):
            logger.debug(f"[RESOLVER] Sprint '{q}' not in cache, fetching catalog for {list(projects) or 'all'}")
            self.cache.store_sprints(projects, await self.metadata.fetch_sprints(list(projects)))
            sprints = self.cache.sprints(projects)
            result = self._sprint_by_id(q, sprints) or match(q, sprint_candidates(sprints), EntityKind.SPRINT)

        self._log(result)
        return result

    async def resolve_epic(self, query: str, projects: Sequence[str] = ()) -> MatchResult:
        q = query.strip()
        result = self._match_epic(q, self.cache.epics(projects))
        if not result.matched and not self.cache.has_all_epics(projects):
            logger.debug(f"[RESOLVER] Epic '{q}' not in cache, fetching catalog for {list(projects) or 'all'}")
            self.cache.store_epics(projects, await self.metadata.fetch_epics(list(projects)))
            result = self._match_epic(q, self.cache.epics(projects))

        self._log(result)
        return result

    async def resolve_component(self, query: str, project: str) -> MatchResult:
        components = await self.load_components(project)
        result = match(query, component_candidates(components), EntityKind.COMPONENT)
        self._log(result)
        return result

    def fallback(self, result: MatchResult, context: str = "") -> str:
        """
        Record that a call site is going ahead with the raw query after a
        no-match. Returns the raw query for convenience.
        """
        logger.warning(
            f"[RESOLVER] Data quality: no {result.kind.value} matched '{result.query}'"
            f"{f' ({context})' if context else ''}; using raw value"
        )
        if self.bus:
            self.bus.emit(
                event_type="data_quality.fallback",
                source="resolver",
                payload={"kind": result.kind.value, "query": result.query, "context": context},
            )
        return result.query

    @staticmethod
    def _sprint_by_id(query: str, sprints: Iterable[Sprint]) -> MatchResult | None:
        if not query.isdigit():
            return None
        for sprint in sprints:
            if str(sprint.id) == query:
                return MatchResult(query, EntityKind.SPRINT, Candidate(str(sprint.id), sprint.name), MatchStrategy.EXACT_ID)
        return None

    @staticmethod
    def _match_epic(query: str, epics: Iterable[Epic]) -> MatchResult:
        """Exact names outrank keys; a key only counts if the catalog holds it."""
        epics = list(epics)
        result = match(query, epic_candidates(epics), EntityKind.EPIC)
        if result.strategy is MatchStrategy.EXACT_NAME:
            return result

        key = query.upper()
        if _ISSUE_KEY.match(key):
            for epic in epics:
                if epic.key.upper() == key:
                    return MatchResult(query, EntityKind.EPIC, Candidate(epic.key, epic.summary), MatchStrategy.EXACT_ID)
        return result

    @staticmethod
    def _log(result: MatchResult) -> None:
        if result.matched:
            logger.debug(
                f"[RESOLVER] {result.kind.value} '{result.query}' -> '{result.name}' "
                f"({result.strategy.value}{f', score {result.score}' if result.score else ''})"
            )
        else:
            logger.debug(f"[RESOLVER] {result.kind.value} '{result.query}': no match")
