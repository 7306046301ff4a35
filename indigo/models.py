"""
INDIGO Data Model

Everything that crosses a component seam lives here:
  - Tracker catalog types (issues, sprints, epics, components, field metadata)
  - Parsed commands: structured Actions and legacy Intents
  - ToolResult, one per executed Action
  - TrackerSnapshot / AIContext, the read-only per-turn view of the world

Snapshot-style models are frozen and use tuples so a context handed to
the model cannot be mutated behind the loop's back.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Tracker catalog
# ---------------------------------------------------------------------------

class IssueSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    summary: str = ""
    status: str = ""
    assignee: str | None = None
    issue_type: str = ""
    project: str = ""
    epic: str | None = None
    priority: str | None = None
    sprint_ids: tuple[int, ...] = ()


class IssueComment(BaseModel):
    model_config = ConfigDict(frozen=True)

    author: str
    created: str = ""
    body: str = ""


class IssueDetails(BaseModel):
    """Full details for a selected issue: description, comments, history."""
    model_config = ConfigDict(frozen=True)

    issue: IssueSummary
    description: str | None = None
    comments: tuple[IssueComment, ...] = ()
    changelog: str = ""


class Sprint(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    state: str = "unknown"
    start_date: str | None = None
    end_date: str | None = None
    goal: str | None = None
    project: str | None = None

    @property
    def is_active(self) -> bool:
        return self.state.lower() == "active"


class Epic(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    summary: str
    project: str | None = None


class Component(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str
    description: str | None = None
    lead: str | None = None


class IssueFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    projects: tuple[str, ...] = ()
    statuses: tuple[str, ...] = ()
    assignees: tuple[str, ...] = ()
    issue_types: tuple[str, ...] = ()
    epics: tuple[str, ...] = ()
    sprints: tuple[int, ...] = ()
    show_only_my_issues: bool = False

    def describe(self) -> str:
        parts = []
        if self.projects:
            parts.append(f"Projects: {', '.join(self.projects)}")
        if self.statuses:
            parts.append(f"Statuses: {', '.join(self.statuses)}")
        if self.assignees:
            parts.append(f"Assignees: {', '.join(self.assignees)}")
        if self.issue_types:
            parts.append(f"Types: {', '.join(self.issue_types)}")
        if self.show_only_my_issues:
            parts.append("Only my issues")
        return " | ".join(parts) if parts else "No active filters"


class FieldMeta(BaseModel):
    """One field from create/edit metadata, with its allowed-value catalog."""
    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    required: bool = False
    allowed_values: tuple[str, ...] = ()


class TransitionField(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    required: bool = True
    allowed_values: tuple[str, ...] = ()

    def as_field_meta(self) -> FieldMeta:
        return FieldMeta(
            key=self.key,
            name=self.name,
            required=self.required,
            allowed_values=self.allowed_values,
        )


class TransitionInfo(BaseModel):
    """
    A workflow edge: the transition's own action name and the status it
    leads to. Always fetched fresh; workflow metadata can change between
    requests.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    target_status: str
    fields: tuple[TransitionField, ...] = ()

    @property
    def required_fields(self) -> tuple[TransitionField, ...]:
        return tuple(f for f in self.fields if f.required)

    def describe(self) -> str:
        info = f"'{self.name}' -> '{self.target_status}'"
        required = []
        for f in self.required_fields:
            if f.allowed_values:
                required.append(f"{f.name}: [{', '.join(f.allowed_values)}]")
            else:
                required.append(f.name)
        if required:
            info += f" (required: {', '.join(required)})"
        return info


class SelectionOption(BaseModel):
    """A pending choice offered to the user (classification or PCM object)."""
    model_config = ConfigDict(frozen=True)

    display: str
    value: str
    child_value: str | None = None


# ---------------------------------------------------------------------------
# Tool Results
# ---------------------------------------------------------------------------

class ToolResult(BaseModel):
    success: bool
    message: str | None = None
    data: Any = None

    @classmethod
    def ok(cls, message: str | None = None, data: Any = None) -> "ToolResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failure(cls, message: str) -> "ToolResult":
        return cls(success=False, message=message)

    @classmethod
    def needs_clarification(cls, question: str) -> "ToolResult":
        """The operation did not run; the user has to answer first."""
        return cls(
            success=False,
            message=f"Clarification needed: {question}",
            data={"clarification": question},
        )

    @property
    def clarification(self) -> str | None:
        if not self.success and isinstance(self.data, dict):
            return self.data.get("clarification")
        return None

    def render(self, max_data_chars: int = 1500) -> str:
        """One-line-ish rendering used when feeding results back to the model."""
        mark = "OK" if self.success else "FAILED"
        text = f"{mark}: {self.message or ('done' if self.success else 'no details')}"
        if self.data not in (None, [], {}, ""):
            payload = self.data if isinstance(self.data, str) else json.dumps(self.data, default=str)
            if len(payload) > max_data_chars:
                payload = payload[:max_data_chars] + " ... (truncated)"
            text += f"\n   data: {payload}"
        return text


# ---------------------------------------------------------------------------
# Action argument schemas
# ---------------------------------------------------------------------------

class ToolArguments(BaseModel):
    """Generic open-ended argument bag; also the base of every tool schema."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class SearchIssuesArgs(ToolArguments):
    jql: str = Field(description="JQL query string (e.g. 'project = SETI AND assignee = currentUser()')")


class CreateIssueArgs(ToolArguments):
    project: str = Field(description="Project key (e.g. 'SETI')")
    summary: str = Field(description="Issue summary/title")
    type: str | None = Field(default=None, description="Issue type (e.g. 'Story', 'Bug', 'Task')")
    description: str | None = Field(default=None, description="Issue description")
    assignee: str | None = Field(default=None, description="Assignee email or account ID")
    sprint: str | int | None = Field(default=None, description="Sprint name, ID, or 'current'")
    epic: str | None = Field(default=None, description="Epic key or name")
    components: list[str] | str | None = Field(default=None, description="Component names")
    priority: str | None = Field(default=None, description="Priority name")


class UpdateIssueArgs(ToolArguments):
    issue_key: str = Field(alias="issueKey", description="Issue key (e.g. 'SETI-123')")
    fields: dict[str, Any] = Field(description='Fields to update (e.g. {"summary": "New title", "priority": "High"})')


class LogWorkArgs(ToolArguments):
    issue_key: str = Field(alias="issueKey", description="Issue key (e.g. 'SETI-123')")
    time_seconds: int = Field(alias="timeSeconds", description="Time spent in seconds (e.g. 3600 for 1 hour)")


class ChangeStatusArgs(ToolArguments):
    issue_key: str = Field(alias="issueKey", description="Issue key (e.g. 'SETI-123')")
    new_status: str = Field(alias="newStatus", description="Target status name (e.g. 'In Progress', 'Done')")
    fields: dict[str, Any] = Field(
        default_factory=dict,
        description="Values for fields the transition requires (e.g. {\"resolution\": \"Won't Do\"})",
    )


class AddCommentArgs(ToolArguments):
    issue_key: str = Field(alias="issueKey", description="Issue key (e.g. 'SETI-123')")
    comment: str = Field(description="Comment text to add")


class AssignIssueArgs(ToolArguments):
    issue_key: str = Field(alias="issueKey", description="Issue key (e.g. 'SETI-123')")
    assignee: str = Field(description="User email or account ID")


class IssueKeyArgs(ToolArguments):
    issue_key: str = Field(alias="issueKey", description="Issue key (e.g. 'SETI-123')")


class AddWatcherArgs(ToolArguments):
    issue_key: str = Field(alias="issueKey", description="Issue key (e.g. 'SETI-123')")
    watcher: str = Field(description="User email or account ID")


class LinkIssuesArgs(ToolArguments):
    issue_key: str = Field(alias="issueKey", description="Source issue key (e.g. 'SETI-123')")
    linked_issue: str = Field(alias="linkedIssue", description="Target issue key to link to")
    link_type: str = Field(alias="linkType", description="Link type (e.g. 'Blocks', 'Relates')")


class ProjectKeyArgs(ToolArguments):
    project_key: str = Field(alias="projectKey", description="Project key (e.g. 'SETI')")


class SprintLookupArgs(ToolArguments):
    query: str = Field(description="Sprint name, ID, state ('active', 'current') or month")
    project_key: str | None = Field(default=None, alias="projectKey", description="Project key to scope the search")


class OptionSearchArgs(ToolArguments):
    issue_key: str = Field(alias="issueKey", description="Issue key (e.g. 'SETI-123')")
    query: str = Field(description="Free-text search for the option")


class OptionSelectArgs(ToolArguments):
    issue_key: str = Field(default="", alias="issueKey", description="Issue key; empty to reuse the pending one")
    option_index: int = Field(alias="optionIndex", description="1-based number of the option to apply")


class UpdateClassificationArgs(ToolArguments):
    issue_key: str = Field(alias="issueKey", description="Issue key (e.g. 'SETI-123')")
    parent_value: str = Field(alias="parentValue", description="Parent category value")
    child_value: str | None = Field(default=None, alias="childValue", description="Child sub-category value")


class UpdatePCMArgs(ToolArguments):
    issue_key: str = Field(alias="issueKey", description="Issue key (e.g. 'SETI-123')")
    object_id: str | None = Field(default=None, alias="objectId", description="PCM object ID (omit to clear)")


TOOL_ARGUMENTS: dict[str, type[ToolArguments]] = {
    "search_issues": SearchIssuesArgs,
    "create_issue": CreateIssueArgs,
    "update_issue": UpdateIssueArgs,
    "log_work": LogWorkArgs,
    "change_status": ChangeStatusArgs,
    "add_comment": AddCommentArgs,
    "assign_issue": AssignIssueArgs,
    "delete_issue": IssueKeyArgs,
    "add_watcher": AddWatcherArgs,
    "link_issues": LinkIssuesArgs,
    "get_transitions": IssueKeyArgs,
    "fetch_changelog": IssueKeyArgs,
    "show_issue_detail": IssueKeyArgs,
    "get_components": ProjectKeyArgs,
    "lookup_sprint": SprintLookupArgs,
    "search_classification": OptionSearchArgs,
    "select_classification": OptionSelectArgs,
    "update_classification": UpdateClassificationArgs,
    "search_pcm": OptionSearchArgs,
    "select_pcm": OptionSelectArgs,
    "update_pcm": UpdatePCMArgs,
}


class Action(BaseModel):
    """One executable instruction: tool name + argument map."""
    tool: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    def typed_arguments(self, schema: type[ToolArguments] | None = None) -> ToolArguments:
        """
        Validate arguments against a tool schema: the one given, else the
        known schema for this tool, else the generic bag.
        Raises pydantic.ValidationError on bad arguments.
        """
        schema = schema or TOOL_ARGUMENTS.get(self.tool, ToolArguments)
        return schema.model_validate(self.arguments)

    def describe(self) -> str:
        return f"{self.tool}({json.dumps(self.arguments, default=str, ensure_ascii=False)})"


class HistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: Action
    result: ToolResult


# ---------------------------------------------------------------------------
# Legacy Intents
# ---------------------------------------------------------------------------

class _BaseIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    def to_action(self) -> Action:
        raise NotImplementedError


class SearchIntent(_BaseIntent):
    kind: Literal["search"] = "search"
    jql: str

    def to_action(self) -> Action:
        return Action(tool="search_issues", arguments={"jql": self.jql})


class UpdateIntent(_BaseIntent):
    kind: Literal["update"] = "update"
    issue_key: str
    fields: dict[str, str]

    def to_action(self) -> Action:
        return Action(tool="update_issue", arguments={"issueKey": self.issue_key, "fields": dict(self.fields)})


class CreateIntent(_BaseIntent):
    kind: Literal["create"] = "create"
    fields: dict[str, str]

    def to_action(self) -> Action:
        return Action(tool="create_issue", arguments=dict(self.fields))


class LogWorkIntent(_BaseIntent):
    kind: Literal["log_work"] = "log_work"
    issue_key: str
    time_seconds: int

    def to_action(self) -> Action:
        return Action(tool="log_work", arguments={"issueKey": self.issue_key, "timeSeconds": self.time_seconds})


class ChangeStatusIntent(_BaseIntent):
    kind: Literal["change_status"] = "change_status"
    issue_key: str
    new_status: str
    fields: dict[str, str] = Field(default_factory=dict)

    def to_action(self) -> Action:
        arguments: dict[str, Any] = {"issueKey": self.issue_key, "newStatus": self.new_status}
        if self.fields:
            arguments["fields"] = dict(self.fields)
        return Action(tool="change_status", arguments=arguments)


class AddCommentIntent(_BaseIntent):
    kind: Literal["add_comment"] = "add_comment"
    issue_key: str
    comment: str

    def to_action(self) -> Action:
        return Action(tool="add_comment", arguments={"issueKey": self.issue_key, "comment": self.comment})


class DeleteIssueIntent(_BaseIntent):
    kind: Literal["delete_issue"] = "delete_issue"
    issue_key: str

    def to_action(self) -> Action:
        return Action(tool="delete_issue", arguments={"issueKey": self.issue_key})


class AssignIssueIntent(_BaseIntent):
    kind: Literal["assign_issue"] = "assign_issue"
    issue_key: str
    assignee: str

    def to_action(self) -> Action:
        return Action(tool="assign_issue", arguments={"issueKey": self.issue_key, "assignee": self.assignee})


class AddWatcherIntent(_BaseIntent):
    kind: Literal["add_watcher"] = "add_watcher"
    issue_key: str
    watcher: str

    def to_action(self) -> Action:
        return Action(tool="add_watcher", arguments={"issueKey": self.issue_key, "watcher": self.watcher})


class LinkIssuesIntent(_BaseIntent):
    kind: Literal["link_issues"] = "link_issues"
    issue_key: str
    linked_issue: str
    link_type: str

    def to_action(self) -> Action:
        return Action(
            tool="link_issues",
            arguments={"issueKey": self.issue_key, "linkedIssue": self.linked_issue, "linkType": self.link_type},
        )


class FetchChangelogIntent(_BaseIntent):
    kind: Literal["fetch_changelog"] = "fetch_changelog"
    issue_key: str

    def to_action(self) -> Action:
        return Action(tool="fetch_changelog", arguments={"issueKey": self.issue_key})


class ShowIssueDetailIntent(_BaseIntent):
    kind: Literal["show_issue_detail"] = "show_issue_detail"
    issue_key: str

    def to_action(self) -> Action:
        return Action(tool="show_issue_detail", arguments={"issueKey": self.issue_key})


class GetTransitionsIntent(_BaseIntent):
    kind: Literal["get_transitions"] = "get_transitions"
    issue_key: str

    def to_action(self) -> Action:
        return Action(tool="get_transitions", arguments={"issueKey": self.issue_key})


class SprintLookupIntent(_BaseIntent):
    kind: Literal["sprint_lookup"] = "sprint_lookup"
    query: str
    project_key: str | None = None

    def to_action(self) -> Action:
        arguments: dict[str, Any] = {"query": self.query}
        if self.project_key:
            arguments["projectKey"] = self.project_key
        return Action(tool="lookup_sprint", arguments=arguments)


class ComponentLookupIntent(_BaseIntent):
    kind: Literal["component_lookup"] = "component_lookup"
    project_key: str

    def to_action(self) -> Action:
        return Action(tool="get_components", arguments={"projectKey": self.project_key})


class ClassificationLookupIntent(_BaseIntent):
    kind: Literal["classification_lookup"] = "classification_lookup"
    issue_key: str
    query: str

    def to_action(self) -> Action:
        return Action(tool="search_classification", arguments={"issueKey": self.issue_key, "query": self.query})


class ClassificationSelectIntent(_BaseIntent):
    kind: Literal["classification_select"] = "classification_select"
    issue_key: str = ""
    option_index: int

    def to_action(self) -> Action:
        return Action(
            tool="select_classification",
            arguments={"issueKey": self.issue_key, "optionIndex": self.option_index},
        )


class PCMLookupIntent(_BaseIntent):
    kind: Literal["pcm_lookup"] = "pcm_lookup"
    issue_key: str
    query: str

    def to_action(self) -> Action:
        return Action(tool="search_pcm", arguments={"issueKey": self.issue_key, "query": self.query})


class PCMSelectIntent(_BaseIntent):
    kind: Literal["pcm_select"] = "pcm_select"
    issue_key: str = ""
    option_index: int

    def to_action(self) -> Action:
        return Action(tool="select_pcm", arguments={"issueKey": self.issue_key, "optionIndex": self.option_index})


Intent = Annotated[
    Union[
        SearchIntent,
        UpdateIntent,
        CreateIntent,
        LogWorkIntent,
        ChangeStatusIntent,
        AddCommentIntent,
        DeleteIssueIntent,
        AssignIssueIntent,
        AddWatcherIntent,
        LinkIssuesIntent,
        FetchChangelogIntent,
        ShowIssueDetailIntent,
        GetTransitionsIntent,
        SprintLookupIntent,
        ComponentLookupIntent,
        ClassificationLookupIntent,
        ClassificationSelectIntent,
        PCMLookupIntent,
        PCMSelectIntent,
    ],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

class TrackerSnapshot(BaseModel):
    """Read-only view of the embedding application's tracker state."""
    model_config = ConfigDict(frozen=True)

    current_user: str = "unknown"
    selected_issues: tuple[IssueSummary, ...] = ()
    selected_issue_details: tuple[IssueDetails, ...] = ()
    filters: IssueFilters = Field(default_factory=IssueFilters)
    visible_issues: tuple[IssueSummary, ...] = ()
    projects: tuple[str, ...] = ()
    statuses: tuple[str, ...] = ()
    resolutions: tuple[str, ...] = ()
    sprints: tuple[Sprint, ...] = ()
    epics: tuple[Epic, ...] = ()


class AIContext(BaseModel):
    """
    Immutable point-in-time snapshot for one orchestration turn.
    Rebuilt every turn; never mutated in place.
    """
    model_config = ConfigDict(frozen=True)

    current_user: str = "unknown"
    selected_issues: tuple[IssueSummary, ...] = ()
    selected_issue_details: tuple[IssueDetails, ...] = ()
    filters: IssueFilters = Field(default_factory=IssueFilters)
    visible_issues: tuple[IssueSummary, ...] = ()
    projects: tuple[str, ...] = ()
    statuses: tuple[str, ...] = ()
    resolutions: tuple[str, ...] = ()
    sprints: tuple[Sprint, ...] = ()
    epics: tuple[Epic, ...] = ()
    action_history: tuple[HistoryEntry, ...] = ()
    user_goal: str = ""
    iteration: int = 1

    @property
    def is_continuation(self) -> bool:
        return self.iteration > 1 or bool(self.action_history)
