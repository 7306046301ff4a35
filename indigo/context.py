"""
Context Builder: produces the immutable AIContext for one turn.

A fresh snapshot is taken from the StateProvider every turn; history and
goal come from the orchestrator. When given the catalog cache, it also
keeps the cache in step with the user's project scope and filters and
seeds it with the sprints and epics the application already loaded.
"""

from __future__ import annotations

from typing import Sequence

from loguru import logger

from indigo.cache import CatalogCache
from indigo.interfaces import StateProvider
from indigo.models import AIContext, HistoryEntry, IssueFilters, TrackerSnapshot


class ContextBuilder:
    def __init__(
        self,
        state: StateProvider,
        max_visible_issues: int = 20,
        cache: CatalogCache | None = None,
    ):
        self.state = state
        self.max_visible_issues = max_visible_issues
        self.cache = cache
        self._last_filters: IssueFilters | None = None

    def build(
        self,
        goal: str,
        history: Sequence[HistoryEntry] = (),
        iteration: int = 1,
    ) -> AIContext:
        snapshot = self.state.snapshot()
        if self.cache is not None:
            self._sync_cache(snapshot)

        visible = tuple(snapshot.visible_issues[: self.max_visible_issues])
        if len(snapshot.visible_issues) > len(visible):
            logger.debug(f"[CONTEXT] Showing {len(visible)} of {len(snapshot.visible_issues)} visible issues")

        return AIContext(
            current_user=snapshot.current_user,
            selected_issues=tuple(snapshot.selected_issues),
            selected_issue_details=tuple(snapshot.selected_issue_details),
            filters=snapshot.filters,
            visible_issues=visible,
            projects=tuple(snapshot.projects),
            statuses=tuple(snapshot.statuses),
            resolutions=tuple(snapshot.resolutions),
            sprints=tuple(snapshot.sprints),
            epics=tuple(snapshot.epics),
            action_history=tuple(history),
            user_goal=goal,
            iteration=iteration,
        )

    def _sync_cache(self, snapshot: TrackerSnapshot) -> None:
        if self._last_filters is not None and snapshot.filters != self._last_filters:
            self.cache.on_filter_change()
        self._last_filters = snapshot.filters

        self.cache.on_scope_change(snapshot.filters.projects or snapshot.projects)
        self.cache.seed(snapshot.sprints, snapshot.epics)
