"""
In-memory tracker for dry runs and tests.

SandboxTracker implements TrackerClient, MetadataProvider and
StateProvider over a YAML fixture, so the whole loop can run without a
Jira instance. It rejects values outside the configured allowed-value
catalogs the way the real tracker does, and records every write.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import BaseModel, Field

from indigo.interfaces import TrackerError, TrackerTransportError
from indigo.models import (
    Component,
    Epic,
    FieldMeta,
    IssueComment,
    IssueDetails,
    IssueFilters,
    IssueSummary,
    SelectionOption,
    Sprint,
    TrackerSnapshot,
    TransitionField,
    TransitionInfo,
)


# ---------------------------------------------------------------------------
# Fixture schema
# ---------------------------------------------------------------------------

class FixtureIssue(BaseModel):
    key: str
    summary: str = ""
    status: str = "To Do"
    assignee: str | None = None
    issue_type: str = "Story"
    priority: str | None = None
    epic: str | None = None
    description: str | None = None
    comments: list[IssueComment] = Field(default_factory=list)
    fields: dict[str, Any] = Field(default_factory=dict)

    @property
    def project(self) -> str:
        return self.key.split("-", 1)[0]


class FixtureTransition(BaseModel):
    id: str
    name: str
    to: str
    fields: list[TransitionField] = Field(default_factory=list)


class SandboxFixture(BaseModel):
    current_user: str = "me@example.com"
    projects: list[str] = Field(default_factory=list)
    statuses: list[str] = Field(default_factory=list)
    resolutions: list[str] = Field(default_factory=list)
    filters: IssueFilters = Field(default_factory=IssueFilters)
    selected: list[str] = Field(default_factory=list)
    issues: list[FixtureIssue] = Field(default_factory=list)
    sprints: list[Sprint] = Field(default_factory=list)
    epics: list[Epic] = Field(default_factory=list)
    components: dict[str, list[str]] = Field(default_factory=dict)
    workflow: list[FixtureTransition] = Field(default_factory=list)
    allowed_values: dict[str, list[str]] = Field(default_factory=dict)
    required_fields: list[str] = Field(default_factory=lambda: ["project", "summary", "issuetype"])
    classification_options: list[SelectionOption] = Field(default_factory=list)
    pcm_options: list[SelectionOption] = Field(default_factory=list)
    # Sprints/epics the "application" has already loaded into its lists
    preloaded_sprints: int | None = None
    preloaded_epics: int | None = None


_JQL_CLAUSE = re.compile(r'^\s*(\w+)\s*(=|~|!=)\s*"?([^"]*?)"?\s*$', re.IGNORECASE)


class SandboxTracker:
    def __init__(self, fixture: SandboxFixture | None = None):
        self.fixture = fixture or SandboxFixture()
        self.issues: dict[str, FixtureIssue] = {i.key.upper(): i for i in self.fixture.issues}
        self.calls: list[tuple[str, tuple]] = []
        self.worklog: dict[str, int] = {}
        self.watchers: dict[str, list[str]] = {}
        self.links: list[tuple[str, str, str]] = []
        self.changes: dict[str, list[str]] = {}
        self.unreachable: set[str] = set()
        self._counters: dict[str, int] = {}

    @classmethod
    def from_yaml(cls, path: Path) -> "SandboxTracker":
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(SandboxFixture(**data))

    # --- Helpers ---

    def _call(self, name: str, *args: Any) -> None:
        if name in self.unreachable or "*" in self.unreachable:
            raise TrackerTransportError(f"sandbox: {name} unreachable")
        self.calls.append((name, args))

    def _issue(self, key: str) -> FixtureIssue:
        issue = self.issues.get(key.upper())
        if issue is None:
            raise TrackerError(f"Issue {key} does not exist")
        return issue

    def _check_allowed(self, fields: dict[str, Any]) -> None:
        catalogs = {k.lower(): v for k, v in self.fixture.allowed_values.items()}
        for key, value in fields.items():
            allowed = catalogs.get(key.lower())
            if allowed and isinstance(value, str) and value not in allowed:
                raise TrackerError(f"Field '{key}': '{value}' is not a valid option")

    def _record(self, key: str, change: str) -> None:
        self.changes.setdefault(key.upper(), []).append(change)

    def _summary(self, issue: FixtureIssue) -> IssueSummary:
        return IssueSummary(
            key=issue.key,
            summary=issue.summary,
            status=issue.status,
            assignee=issue.assignee,
            issue_type=issue.issue_type,
            project=issue.project,
            epic=issue.epic,
            priority=issue.priority,
        )

    def _field_meta(self) -> list[FieldMeta]:
        metas = [
            FieldMeta(key=key, name=key.replace("_", " ").title(), required=key in self.fixture.required_fields,
                      allowed_values=tuple(values))
            for key, values in self.fixture.allowed_values.items()
        ]
        known = {m.key for m in metas}
        metas.extend(
            FieldMeta(key=key, name=key.title(), required=True)
            for key in self.fixture.required_fields if key not in known
        )
        return metas

    # --- StateProvider ---

    def snapshot(self) -> TrackerSnapshot:
        visible = [self._summary(i) for i in self.issues.values()]
        selected = [self.issues[k.upper()] for k in self.fixture.selected if k.upper() in self.issues]
        sprints = self.fixture.sprints
        epics = self.fixture.epics
        if self.fixture.preloaded_sprints is not None:
            sprints = sprints[: self.fixture.preloaded_sprints]
        if self.fixture.preloaded_epics is not None:
            epics = epics[: self.fixture.preloaded_epics]

        return TrackerSnapshot(
            current_user=self.fixture.current_user,
            selected_issues=tuple(self._summary(i) for i in selected),
            selected_issue_details=tuple(
                IssueDetails(issue=self._summary(i), description=i.description, comments=tuple(i.comments))
                for i in selected
            ),
            filters=self.fixture.filters,
            visible_issues=tuple(visible),
            projects=tuple(self.fixture.projects),
            statuses=tuple(self.fixture.statuses),
            resolutions=tuple(self.fixture.resolutions),
            sprints=tuple(sprints),
            epics=tuple(epics),
        )

    # --- MetadataProvider ---

    async def fetch_transitions(self, issue_key: str) -> list[TransitionInfo]:
        self._call("fetch_transitions", issue_key)
        issue = self._issue(issue_key)
        return [
            TransitionInfo(id=t.id, name=t.name, target_status=t.to, fields=tuple(t.fields))
            for t in self.fixture.workflow
            if t.to.lower() != issue.status.lower()
        ]

    async def fetch_sprints(self, project_keys: list[str]) -> list[Sprint]:
        self._call("fetch_sprints", tuple(project_keys))
        wanted = {p.upper() for p in project_keys}
        return [s for s in self.fixture.sprints if not wanted or not s.project or s.project.upper() in wanted]

    async def fetch_epics(self, project_keys: list[str]) -> list[Epic]:
        self._call("fetch_epics", tuple(project_keys))
        wanted = {p.upper() for p in project_keys}
        return [e for e in self.fixture.epics if not wanted or not e.project or e.project.upper() in wanted]

    async def fetch_components(self, project_key: str) -> list[Component]:
        self._call("fetch_components", project_key)
        names = self.fixture.components.get(project_key.upper(), [])
        return [Component(id=str(i), name=name) for i, name in enumerate(names, start=1)]

    async def create_field_meta(self, project_key: str, issue_type: str) -> list[FieldMeta]:
        self._call("create_field_meta", project_key, issue_type)
        return self._field_meta()

    async def edit_field_meta(self, issue_key: str) -> list[FieldMeta]:
        self._call("edit_field_meta", issue_key)
        self._issue(issue_key)
        return [m.model_copy(update={"required": False}) for m in self._field_meta()]

    # --- TrackerClient ---

    async def search(self, jql: str) -> list[IssueSummary]:
        self._call("search", jql)
        clauses = re.split(r"\s+AND\s+", re.split(r"\s+ORDER\s+BY\s+", jql, flags=re.IGNORECASE)[0],
                           flags=re.IGNORECASE)
        found = list(self.issues.values())
        for clause in filter(None, (c.strip() for c in clauses)):
            m = _JQL_CLAUSE.match(clause)
            if not m:
                logger.debug(f"[SANDBOX] Ignoring unsupported JQL clause: {clause}")
                continue
            field_name, op, value = m.group(1).lower(), m.group(2), m.group(3).strip()
            if value.lower() == "currentuser()":
                value = self.fixture.current_user
            found = [i for i in found if _clause_matches(i, field_name, op, value)]
        return [self._summary(i) for i in found]

    async def create_issue(self, fields: dict[str, Any]) -> str:
        self._call("create_issue", dict(fields))
        for required in self.fixture.required_fields:
            if not fields.get(required):
                raise TrackerError(f"Field '{required}' is required")
        self._check_allowed(fields)

        project = str(fields["project"]).upper()
        self._counters[project] = self._counters.get(project, 100) + 1
        key = f"{project}-{self._counters[project]}"
        extra = {k: v for k, v in fields.items() if k not in ("project", "summary", "issuetype", "description",
                                                              "assignee", "priority")}
        self.issues[key] = FixtureIssue(
            key=key,
            summary=fields["summary"],
            issue_type=fields.get("issuetype", "Story"),
            description=fields.get("description"),
            assignee=fields.get("assignee"),
            priority=fields.get("priority"),
            fields=extra,
        )
        self._record(key, "created")
        return key

    async def update_issue(self, issue_key: str, fields: dict[str, Any]) -> None:
        self._call("update_issue", issue_key, dict(fields))
        issue = self._issue(issue_key)
        self._check_allowed(fields)
        for key, value in fields.items():
            if key in ("summary", "description", "assignee", "priority"):
                setattr(issue, key, value)
            else:
                issue.fields[key] = value
            self._record(issue_key, f"{key} -> {value}")

    async def log_work(self, issue_key: str, time_spent_seconds: int) -> None:
        self._call("log_work", issue_key, time_spent_seconds)
        self._issue(issue_key)
        self.worklog[issue_key.upper()] = self.worklog.get(issue_key.upper(), 0) + time_spent_seconds
        self._record(issue_key, f"logged {time_spent_seconds}s")

    async def transition_issue(self, issue_key: str, transition_id: str, fields: dict[str, Any]) -> None:
        self._call("transition_issue", issue_key, transition_id, dict(fields))
        issue = self._issue(issue_key)
        transition = next((t for t in self.fixture.workflow if t.id == transition_id), None)
        if transition is None:
            raise TrackerError(f"Transition {transition_id} is not valid for {issue_key}")
        for tf in transition.fields:
            value = fields.get(tf.key)
            if tf.required and not value:
                raise TrackerError(f"Field '{tf.key}' is required for transition '{transition.name}'")
            if value and tf.allowed_values and value not in tf.allowed_values:
                raise TrackerError(f"Field '{tf.key}': '{value}' is not a valid option")
        old = issue.status
        issue.status = transition.to
        issue.fields.update(fields)
        self._record(issue_key, f"status {old} -> {transition.to}")

    async def add_comment(self, issue_key: str, comment: str) -> None:
        self._call("add_comment", issue_key, comment)
        issue = self._issue(issue_key)
        issue.comments.append(IssueComment(author=self.fixture.current_user, body=comment))

    async def delete_issue(self, issue_key: str) -> None:
        self._call("delete_issue", issue_key)
        self._issue(issue_key)
        del self.issues[issue_key.upper()]

    async def assign_issue(self, issue_key: str, assignee: str) -> None:
        self._call("assign_issue", issue_key, assignee)
        self._issue(issue_key).assignee = assignee
        self._record(issue_key, f"assignee -> {assignee}")

    async def add_watcher(self, issue_key: str, watcher: str) -> None:
        self._call("add_watcher", issue_key, watcher)
        self._issue(issue_key)
        self.watchers.setdefault(issue_key.upper(), []).append(watcher)

    async def link_issues(self, issue_key: str, linked_issue_key: str, link_type: str) -> None:
        self._call("link_issues", issue_key, linked_issue_key, link_type)
        self._issue(issue_key)
        self._issue(linked_issue_key)
        self.links.append((issue_key.upper(), linked_issue_key.upper(), link_type))

    async def fetch_changelog(self, issue_key: str) -> str:
        self._call("fetch_changelog", issue_key)
        self._issue(issue_key)
        return "\n".join(self.changes.get(issue_key.upper(), []))

    async def fetch_issue_details(self, issue_key: str) -> IssueDetails:
        self._call("fetch_issue_details", issue_key)
        issue = self._issue(issue_key)
        return IssueDetails(
            issue=self._summary(issue),
            description=issue.description,
            comments=tuple(issue.comments),
            changelog="\n".join(self.changes.get(issue_key.upper(), [])),
        )

    async def search_classification_options(self, query: str) -> list[SelectionOption]:
        self._call("search_classification_options", query)
        return _search_options(self.fixture.classification_options, query)

    async def update_classification(self, issue_key: str, parent_value: str, child_value: str | None) -> None:
        self._call("update_classification", issue_key, parent_value, child_value)
        self._issue(issue_key).fields["classification"] = [parent_value, child_value]

    async def search_pcm_options(self, query: str) -> list[SelectionOption]:
        self._call("search_pcm_options", query)
        return _search_options(self.fixture.pcm_options, query)

    async def update_pcm(self, issue_key: str, object_id: str | None) -> None:
        self._call("update_pcm", issue_key, object_id)
        self._issue(issue_key).fields["pcm"] = object_id


def _clause_matches(issue: FixtureIssue, field_name: str, op: str, value: str) -> bool:
    actual = {
        "key": issue.key,
        "issuekey": issue.key,
        "project": issue.project,
        "status": issue.status,
        "assignee": issue.assignee or "",
        "type": issue.issue_type,
        "issuetype": issue.issue_type,
        "priority": issue.priority or "",
        "summary": issue.summary,
        "text": f"{issue.summary} {issue.description or ''}",
    }.get(field_name)
    if actual is None:
        return True
    if op == "~":
        return value.lower() in actual.lower()
    equal = actual.lower() == value.lower()
    return equal if op == "=" else not equal


def _search_options(options: list[SelectionOption], query: str) -> list[SelectionOption]:
    tokens = [t for t in query.lower().split() if t]
    return [o for o in options if any(t in o.display.lower() for t in tokens)]
