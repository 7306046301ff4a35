"""
INDIGO Collaborator Interfaces

The core never talks HTTP. It reaches the outside world through these
capability protocols:

  - ActionExecutor   : one capability per tool name
  - ModelClient      : blocking + streaming chat (implemented by Router)
  - MetadataProvider : allowed-value catalogs and canonical enumerations
  - TrackerClient    : tracker CRUD, owned by the embedding application
  - StateProvider    : read-only snapshot of what the user is looking at
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

from indigo.models import (
    Action,
    Component,
    Epic,
    FieldMeta,
    IssueDetails,
    IssueSummary,
    SelectionOption,
    Sprint,
    ToolResult,
    TrackerSnapshot,
    TransitionInfo,
)

if TYPE_CHECKING:
    from indigo.router import RouterResponse


class TrackerError(Exception):
    """The tracker rejected a request (bad field, missing permission, 4xx)."""
    pass


class TrackerTransportError(Exception):
    """The tracker could not be reached. Aborts the current turn."""
    pass


@runtime_checkable
class ActionExecutor(Protocol):
    async def execute(self, action: Action) -> ToolResult: ...


class ModelClient(Protocol):
    async def complete(
        self,
        role: str,
        messages: list[dict[str, str]],
        **kwargs: Any,
    ) -> "RouterResponse": ...

    async def stream(
        self,
        role: str,
        messages: list[dict[str, str]],
        on_chunk: Callable[[str], None] | None = None,
        **kwargs: Any,
    ) -> "RouterResponse": ...


class MetadataProvider(Protocol):
    async def fetch_transitions(self, issue_key: str) -> list[TransitionInfo]: ...

    async def fetch_sprints(self, project_keys: list[str]) -> list[Sprint]: ...

    async def fetch_epics(self, project_keys: list[str]) -> list[Epic]: ...

    async def fetch_components(self, project_key: str) -> list[Component]: ...

    async def create_field_meta(self, project_key: str, issue_type: str) -> list[FieldMeta]: ...

    async def edit_field_meta(self, issue_key: str) -> list[FieldMeta]: ...


class TrackerClient(Protocol):
    async def search(self, jql: str) -> list[IssueSummary]: ...

    async def create_issue(self, fields: dict[str, Any]) -> str: ...

    async def update_issue(self, issue_key: str, fields: dict[str, Any]) -> None: ...

    async def log_work(self, issue_key: str, time_spent_seconds: int) -> None: ...

    async def transition_issue(self, issue_key: str, transition_id: str, fields: dict[str, Any]) -> None: ...

    async def add_comment(self, issue_key: str, comment: str) -> None: ...

    async def delete_issue(self, issue_key: str) -> None: ...

    async def assign_issue(self, issue_key: str, assignee: str) -> None: ...

    async def add_watcher(self, issue_key: str, watcher: str) -> None: ...

    async def link_issues(self, issue_key: str, linked_issue_key: str, link_type: str) -> None: ...

    async def fetch_changelog(self, issue_key: str) -> str: ...

    async def fetch_issue_details(self, issue_key: str) -> IssueDetails: ...

    async def search_classification_options(self, query: str) -> list[SelectionOption]: ...

    async def update_classification(self, issue_key: str, parent_value: str, child_value: str | None) -> None: ...

    async def search_pcm_options(self, query: str) -> list[SelectionOption]: ...

    async def update_pcm(self, issue_key: str, object_id: str | None) -> None: ...


class StateProvider(Protocol):
    def snapshot(self) -> TrackerSnapshot: ...
