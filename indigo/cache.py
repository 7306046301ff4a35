"""
Catalog cache for entity resolution.

Holds sprint, epic and component catalogs per project so repeated
lookups in one session don't refetch them. One instance is injected
into the EntityResolver; nothing here is process-global.

Invalidation:
  - on_scope_change(projects): the active project set changed
  - on_filter_change():        the user changed the issue filters
  - invalidate():              explicit reset

Transitions are never cached.
"""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger

from indigo.models import Component, Epic, Sprint

_UNSCOPED = ""


class CatalogCache:
    def __init__(self):
        self._sprints: dict[str, list[Sprint]] = {}
        self._epics: dict[str, list[Epic]] = {}
        self._components: dict[str, list[Component]] = {}
        self._complete: set[tuple[str, str]] = set()
        self._scope: tuple[str, ...] = ()

    # --- Invalidation ---

    @property
    def scope(self) -> tuple[str, ...]:
        return self._scope

    def on_scope_change(self, projects: Iterable[str]) -> bool:
        """Returns True if the scope actually changed and the cache was cleared."""
        new_scope = tuple(sorted({p.upper() for p in projects if p}))
        if new_scope == self._scope:
            return False
        logger.debug(f"[CACHE] Project scope {self._scope} -> {new_scope}, invalidating")
        self.invalidate()
        self._scope = new_scope
        return True

    def on_filter_change(self) -> None:
        logger.debug("[CACHE] Filters changed, invalidating")
        self.invalidate()

    def invalidate(self) -> None:
        logger.debug(f"[CACHE] Dropping {self.stats()}")
        self._sprints.clear()
        self._epics.clear()
        self._components.clear()
        self._complete.clear()

    # --- Seeding from the application's already-loaded lists ---

    def seed(self, sprints: Iterable[Sprint] = (), epics: Iterable[Epic] = ()) -> None:
        """Add partial, already-loaded entries. Never marks a catalog complete."""
        for sprint in sprints:
            _add_unique(self._sprints.setdefault(_bucket(sprint.project), []), sprint, lambda s: s.id)
        for epic in epics:
            _add_unique(self._epics.setdefault(_bucket(epic.project), []), epic, lambda e: e.key)

    # --- Sprints ---

    def sprints(self, projects: Iterable[str] = ()) -> list[Sprint]:
        return _collect(self._sprints, projects)

    def store_sprints(self, projects: Iterable[str], sprints: Iterable[Sprint]) -> None:
        projects = list(projects) or [_UNSCOPED]
        for sprint in sprints:
            bucket = _bucket(sprint.project) if sprint.project else _bucket(projects[0])
            _add_unique(self._sprints.setdefault(bucket, []), sprint, lambda s: s.id)
        for project in projects:
            self._complete.add(("sprint", _bucket(project)))

    def has_all_sprints(self, projects: Iterable[str]) -> bool:
        return _is_complete(self._complete, "sprint", projects)

    # --- Epics ---

    def epics(self, projects: Iterable[str] = ()) -> list[Epic]:
        return _collect(self._epics, projects)

    def store_epics(self, projects: Iterable[str], epics: Iterable[Epic]) -> None:
        projects = list(projects) or [_UNSCOPED]
        for epic in epics:
            bucket = _bucket(epic.project) if epic.project else _bucket(projects[0])
            _add_unique(self._epics.setdefault(bucket, []), epic, lambda e: e.key)
        for project in projects:
            self._complete.add(("epic", _bucket(project)))

    def has_all_epics(self, projects: Iterable[str]) -> bool:
        return _is_complete(self._complete, "epic", projects)

    # --- Components (always fetched per project, so always complete) ---

    def components(self, project: str) -> list[Component] | None:
        return self._components.get(_bucket(project))

    def store_components(self, project: str, components: Iterable[Component]) -> None:
        self._components[_bucket(project)] = list(components)

    def stats(self) -> dict[str, int]:
        return {
            "sprints": sum(len(v) for v in self._sprints.values()),
            "epics": sum(len(v) for v in self._epics.values()),
            "component_projects": len(self._components),
        }


def _bucket(project: str | None) -> str:
    return (project or _UNSCOPED).upper()


def _add_unique(items: list, item, key) -> None:
    ident = key(item)
    if all(key(existing) != ident for existing in items):
        items.append(item)


def _collect(store: dict[str, list], projects: Iterable[str]) -> list:
    wanted = [_bucket(p) for p in projects]
    if not wanted:
        return [item for bucket in store.values() for item in bucket]
    # Unscoped entries are visible to every project
    keys = wanted + ([_UNSCOPED] if _UNSCOPED not in wanted else [])
    return [item for key in keys for item in store.get(key, [])]


def _is_complete(complete: set[tuple[str, str]], kind: str, projects: Iterable[str]) -> bool:
    buckets = [_bucket(p) for p in projects] or [_UNSCOPED]
    return all((kind, b) in complete for b in buckets)
