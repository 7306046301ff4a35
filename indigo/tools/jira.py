"""
Jira tools: the tracker capability surface exposed to the assistant.

Write paths resolve entity references (sprint, epic, components, target
status) and validate enumerated field values before the tracker call.
Classification and PCM lookups keep up to five pending options per
toolbox; a toolbox belongs to one run.
"""

from __future__ import annotations

import calendar
from typing import Any, Sequence

from loguru import logger

from indigo.config_loader import TrackerConfig
from indigo.interfaces import MetadataProvider, StateProvider, TrackerClient
from indigo.models import (
    AddCommentArgs,
    AddWatcherArgs,
    AssignIssueArgs,
    ChangeStatusArgs,
    CreateIssueArgs,
    IssueKeyArgs,
    LinkIssuesArgs,
    LogWorkArgs,
    OptionSearchArgs,
    OptionSelectArgs,
    ProjectKeyArgs,
    SearchIssuesArgs,
    SelectionOption,
    Sprint,
    SprintLookupArgs,
    ToolResult,
    UpdateClassificationArgs,
    UpdateIssueArgs,
    UpdatePCMArgs,
)
from indigo.resolver import EntityResolver
from indigo.tools import ClarificationNeeded, Tool, ToolError, ToolRegistry
from indigo.validator import FieldValidator

MAX_PENDING_OPTIONS = 5
MAX_SEARCH_RESULTS = 50

_CURRENT_SPRINT = ("current", "active", "current sprint", "active sprint")
_MONTHS = {name.lower(): i for i, name in enumerate(calendar.month_name) if name}
_MONTHS.update({name.lower(): i for i, name in enumerate(calendar.month_abbr) if name})


def format_duration(seconds: int) -> str:
    hours, rest = divmod(seconds, 3600)
    minutes = rest // 60
    if hours and minutes:
        return f"{hours}h {minutes}m"
    return f"{hours}h" if hours else f"{minutes}m"


def project_of(issue_key: str) -> str:
    return issue_key.split("-", 1)[0].upper()


class JiraToolbox:
    def __init__(
        self,
        tracker: TrackerClient,
        metadata: MetadataProvider,
        resolver: EntityResolver,
        validator: FieldValidator,
        config: TrackerConfig | None = None,
        state: StateProvider | None = None,
    ):
        self.tracker = tracker
        self.metadata = metadata
        self.resolver = resolver
        self.validator = validator
        self.config = config or TrackerConfig()
        self.state = state

        self._pending_classification: tuple[str, list[SelectionOption]] | None = None
        self._pending_pcm: tuple[str, list[SelectionOption]] | None = None

    def tools(self) -> list[Tool]:
        return [
            Tool("search_issues", "Search for Jira issues using JQL", SearchIssuesArgs, self.search_issues),
            Tool("create_issue", "Create a new Jira issue", CreateIssueArgs, self.create_issue),
            Tool("update_issue", "Update fields on an existing Jira issue", UpdateIssueArgs, self.update_issue),
            Tool("log_work", "Log time spent on a Jira issue", LogWorkArgs, self.log_work),
            Tool("change_status", "Move an issue to a new workflow status", ChangeStatusArgs, self.change_status),
            Tool("add_comment", "Add a comment to an issue", AddCommentArgs, self.add_comment),
            Tool("assign_issue", "Assign an issue to a user", AssignIssueArgs, self.assign_issue),
            Tool("delete_issue", "Delete an issue permanently", IssueKeyArgs, self.delete_issue),
            Tool("add_watcher", "Add a watcher to an issue", AddWatcherArgs, self.add_watcher),
            Tool("link_issues", "Link two issues", LinkIssuesArgs, self.link_issues),
            Tool("get_transitions", "List the status transitions available for an issue", IssueKeyArgs,
                 self.get_transitions),
            Tool("fetch_changelog", "Fetch the change history of an issue", IssueKeyArgs, self.fetch_changelog),
            Tool("show_issue_detail", "Show description, comments and history of an issue", IssueKeyArgs,
                 self.show_issue_detail),
            Tool("get_components", "List the components of a project", ProjectKeyArgs, self.get_components),
            Tool("lookup_sprint", "Find sprints by name, ID, state or month", SprintLookupArgs, self.lookup_sprint),
            Tool("search_classification", "Search request classification options for an issue", OptionSearchArgs,
                 self.search_classification),
            Tool("select_classification", "Apply a classification option from the last search", OptionSelectArgs,
                 self.select_classification),
            Tool("update_classification", "Set request classification (parent and child category)",
                 UpdateClassificationArgs, self.update_classification),
            Tool("search_pcm", "Search PCM master objects for an issue", OptionSearchArgs, self.search_pcm),
            Tool("select_pcm", "Apply a PCM object from the last search", OptionSelectArgs, self.select_pcm),
            Tool("update_pcm", "Set or clear the PCM master object of an issue", UpdatePCMArgs, self.update_pcm),
        ]

    def register(self, registry: ToolRegistry) -> ToolRegistry:
        registry.register_all(self.tools())
        return registry

    # -----------------------------------------------------------------------
    # Entity helpers
    # -----------------------------------------------------------------------

    def _active_projects(self, explicit: str | None = None) -> list[str]:
        if explicit:
            return [explicit.upper()]
        if self.state is None:
            return []
        snapshot = self.state.snapshot()
        return list(snapshot.filters.projects or snapshot.projects)

    async def _sprint_value(self, value: Any, projects: Sequence[str]) -> int | str | None:
        """
        Sprint id for a user sprint reference. "current" means the single
        active sprint: several is a question for the user, none drops the field.
        """
        if value is None or value == "":
            return None
        if isinstance(value, int) or str(value).strip().isdigit():
            return int(value)

        text = str(value).strip()
        if text.lower() in _CURRENT_SPRINT:
            active = [s for s in await self.resolver.load_sprints(projects) if s.is_active]
            if len(active) > 1:
                names = ", ".join(s.name for s in active)
                raise ClarificationNeeded(f"There are several active sprints ({names}). Which one did you mean?")
            if not active:
                logger.warning(f"[TOOLS] No active sprint in {list(projects) or 'scope'}; leaving sprint unset")
                return None
            return active[0].id

        result = await self.resolver.resolve_sprint(text, projects)
        if result.matched:
            return int(result.id)
        return self.resolver.fallback(result, "sprint field")

    async def _epic_value(self, value: str, projects: Sequence[str]) -> str:
        result = await self.resolver.resolve_epic(value, projects)
        if result.matched:
            return result.id
        return self.resolver.fallback(result, "epic field")

    async def _component_values(self, value: Any, project: str) -> list[str]:
        names = [value] if isinstance(value, str) else list(value)
        resolved = []
        for name in (str(n).strip() for n in names):
            if not name:
                continue
            result = await self.resolver.resolve_component(name, project)
            resolved.append(result.name if result.matched else self.resolver.fallback(result, f"component in {project}"))
        return resolved

    async def _resolve_entity_fields(self, fields: dict[str, Any], project: str) -> dict[str, Any]:
        """Swap friendly sprint/epic/components keys for resolved tracker values."""
        resolved = dict(fields)
        projects = [project] if project else []

        if "sprint" in resolved:
            sprint = await self._sprint_value(resolved.pop("sprint"), projects)
            if sprint is not None:
                resolved[self.config.sprint_field] = sprint
        if "epic" in resolved:
            epic = resolved.pop("epic")
            if epic:
                resolved[self.config.epic_field] = await self._epic_value(str(epic), projects)
        if "components" in resolved:
            components = resolved.pop("components")
            if components:
                resolved["components"] = await self._component_values(components, project)
        return resolved

    # -----------------------------------------------------------------------
    # Issue CRUD
    # -----------------------------------------------------------------------

    async def search_issues(self, args: SearchIssuesArgs) -> ToolResult:
        issues = await self.tracker.search(args.jql)
        shown = issues[:MAX_SEARCH_RESULTS]
        data = [
            {"key": i.key, "summary": i.summary, "status": i.status, "assignee": i.assignee}
            for i in shown
        ]
        message = f"Found {len(issues)} issue(s)"
        if len(issues) > len(shown):
            message += f", showing first {len(shown)}"
        return ToolResult.ok(message, data=data)

    async def create_issue(self, args: CreateIssueArgs) -> ToolResult:
        project = args.project.upper()
        issue_type = args.type or self.config.default_issue_type

        fields: dict[str, Any] = {"project": project, "summary": args.summary, "issuetype": issue_type}
        for name in ("description", "assignee", "priority", "sprint", "epic", "components"):
            value = getattr(args, name)
            if value not in (None, "", []):
                fields[name] = value
        fields.update(args.model_extra or {})

        fields = await self._resolve_entity_fields(fields, project)

        outcome = await self.validator.validate_create_fields(project, issue_type, fields)
        if outcome.needs_clarification:
            return ToolResult.needs_clarification(outcome.clarification)

        key = await self.tracker.create_issue(outcome.fields)
        logger.info(f"[TOOLS] Created {key} in {project}")
        return ToolResult.ok(f"Created {key}: {args.summary}", data={"key": key})

    async def update_issue(self, args: UpdateIssueArgs) -> ToolResult:
        if not args.fields:
            raise ToolError(f"No fields given to update on {args.issue_key}")

        fields = await self._resolve_entity_fields(dict(args.fields), project_of(args.issue_key))

        outcome = await self.validator.validate_update_fields(args.issue_key, fields)
        if outcome.needs_clarification:
            return ToolResult.needs_clarification(outcome.clarification)

        await self.tracker.update_issue(args.issue_key, outcome.fields)
        return ToolResult.ok(f"Updated {args.issue_key}: {', '.join(outcome.fields)}")

    async def log_work(self, args: LogWorkArgs) -> ToolResult:
        if args.time_seconds <= 0:
            raise ToolError(f"Time spent must be positive, got {args.time_seconds}s")
        await self.tracker.log_work(args.issue_key, args.time_seconds)
        return ToolResult.ok(f"Logged {format_duration(args.time_seconds)} on {args.issue_key}")

    async def change_status(self, args: ChangeStatusArgs) -> ToolResult:
        transitions = await self.metadata.fetch_transitions(args.issue_key)
        if not transitions:
            raise ToolError(f"No transitions are available for {args.issue_key}")

        result = self.resolver.resolve_transition(args.new_status, transitions)
        if not result.matched:
            available = "; ".join(t.describe() for t in transitions)
            return ToolResult.failure(
                f"No transition to '{args.new_status}' for {args.issue_key}. Available: {available}"
            )

        transition = next(t for t in transitions if t.id == result.id)
        fields = dict(args.fields)
        if transition.fields:
            outcome = await self.validator.validate_transition_fields(args.issue_key, transition, fields)
            if outcome.needs_clarification:
                return ToolResult.needs_clarification(outcome.clarification)
            fields = outcome.fields

            supplied = {k.lower() for k in fields}
            missing = [
                f for f in transition.required_fields
                if f.key.lower() not in supplied and f.name.lower() not in supplied
            ]
            if missing:
                wanted = "; ".join(
                    f"{f.name} ({', '.join(f.allowed_values)})" if f.allowed_values else f.name for f in missing
                )
                raise ClarificationNeeded(f"Moving {args.issue_key} to {transition.target_status} requires: {wanted}")

        await self.tracker.transition_issue(args.issue_key, transition.id, fields)
        logger.info(f"[TOOLS] {args.issue_key} -> {transition.target_status} via '{transition.name}'")
        return ToolResult.ok(
            f"Moved {args.issue_key} to {transition.target_status}",
            data={"transition": transition.name, "status": transition.target_status},
        )

    async def add_comment(self, args: AddCommentArgs) -> ToolResult:
        if not args.comment.strip():
            raise ToolError("Comment text is empty")
        await self.tracker.add_comment(args.issue_key, args.comment)
        return ToolResult.ok(f"Added comment to {args.issue_key}")

    async def assign_issue(self, args: AssignIssueArgs) -> ToolResult:
        await self.tracker.assign_issue(args.issue_key, args.assignee)
        return ToolResult.ok(f"Assigned {args.issue_key} to {args.assignee}")

    async def delete_issue(self, args: IssueKeyArgs) -> ToolResult:
        await self.tracker.delete_issue(args.issue_key)
        logger.info(f"[TOOLS] Deleted {args.issue_key}")
        return ToolResult.ok(f"Deleted {args.issue_key}")

    async def add_watcher(self, args: AddWatcherArgs) -> ToolResult:
        await self.tracker.add_watcher(args.issue_key, args.watcher)
        return ToolResult.ok(f"Added {args.watcher} as watcher on {args.issue_key}")

    async def link_issues(self, args: LinkIssuesArgs) -> ToolResult:
        await self.tracker.link_issues(args.issue_key, args.linked_issue, args.link_type)
        return ToolResult.ok(f"Linked {args.issue_key} {args.link_type} {args.linked_issue}")

    # -----------------------------------------------------------------------
    # Read-only lookups
    # -----------------------------------------------------------------------

    async def get_transitions(self, args: IssueKeyArgs) -> ToolResult:
        transitions = await self.metadata.fetch_transitions(args.issue_key)
        if not transitions:
            return ToolResult.ok(f"No transitions available for {args.issue_key}", data=[])
        return ToolResult.ok(
            f"{len(transitions)} transition(s) for {args.issue_key}",
            data=[t.describe() for t in transitions],
        )

    async def fetch_changelog(self, args: IssueKeyArgs) -> ToolResult:
        changelog = await self.tracker.fetch_changelog(args.issue_key)
        return ToolResult.ok(f"Changelog for {args.issue_key}", data=changelog or "No changes recorded")

    async def show_issue_detail(self, args: IssueKeyArgs) -> ToolResult:
        details = await self.tracker.fetch_issue_details(args.issue_key)
        return ToolResult.ok(
            f"{details.issue.key}: {details.issue.summary} [{details.issue.status}]",
            data=details.model_dump(mode="json"),
        )

    async def get_components(self, args: ProjectKeyArgs) -> ToolResult:
        components = await self.resolver.load_components(args.project_key.upper())
        return ToolResult.ok(
            f"{len(components)} component(s) in {args.project_key.upper()}",
            data=[c.name for c in components],
        )

    async def lookup_sprint(self, args: SprintLookupArgs) -> ToolResult:
        projects = self._active_projects(args.project_key)
        query = args.query.strip()
        lowered = query.lower()

        if lowered in _CURRENT_SPRINT:
            found = [s for s in await self.resolver.load_sprints(projects) if s.is_active]
        elif lowered in ("future", "closed"):
            found = [s for s in await self.resolver.load_sprints(projects) if s.state.lower() == lowered]
        elif lowered in _MONTHS:
            found = [s for s in await self.resolver.load_sprints(projects) if _sprint_month(s) == _MONTHS[lowered]]
        else:
            result = await self.resolver.resolve_sprint(query, projects)
            if not result.matched:
                return ToolResult.failure(f"No sprint matching '{query}'")
            found = [s for s in await self.resolver.load_sprints(projects) if str(s.id) == result.id]

        if not found:
            return ToolResult.failure(f"No sprint matching '{query}'")
        return ToolResult.ok(
            f"{len(found)} sprint(s) matching '{query}'",
            data=[
                {"id": s.id, "name": s.name, "state": s.state, "start": s.start_date, "end": s.end_date, "goal": s.goal}
                for s in found
            ],
        )

    # -----------------------------------------------------------------------
    # Classification / PCM
    # -----------------------------------------------------------------------

    async def search_classification(self, args: OptionSearchArgs) -> ToolResult:
        options = (await self.tracker.search_classification_options(args.query))[:MAX_PENDING_OPTIONS]
        if not options:
            return ToolResult.failure(f"No classification options match '{args.query}'")
        self._pending_classification = (args.issue_key, options)
        return ToolResult.ok(
            f"Classification options for {args.issue_key} (reply with SELECT_CLASSIFICATION):",
            data=_numbered(options),
        )

    async def select_classification(self, args: OptionSelectArgs) -> ToolResult:
        issue_key, option = _pick(self._pending_classification, args, "classification")
        await self.tracker.update_classification(issue_key, option.value, option.child_value)
        self._pending_classification = None
        return ToolResult.ok(f"Set classification of {issue_key} to {option.display}")

    async def update_classification(self, args: UpdateClassificationArgs) -> ToolResult:
        await self.tracker.update_classification(args.issue_key, args.parent_value, args.child_value)
        label = args.parent_value + (f" > {args.child_value}" if args.child_value else "")
        return ToolResult.ok(f"Set classification of {args.issue_key} to {label}")

    async def search_pcm(self, args: OptionSearchArgs) -> ToolResult:
        options = (await self.tracker.search_pcm_options(args.query))[:MAX_PENDING_OPTIONS]
        if not options:
            return ToolResult.failure(f"No PCM objects match '{args.query}'")
        self._pending_pcm = (args.issue_key, options)
        return ToolResult.ok(
            f"PCM objects for {args.issue_key} (reply with SELECT_PCM):",
            data=_numbered(options),
        )

    async def select_pcm(self, args: OptionSelectArgs) -> ToolResult:
        issue_key, option = _pick(self._pending_pcm, args, "PCM")
        await self.tracker.update_pcm(issue_key, option.value)
        self._pending_pcm = None
        return ToolResult.ok(f"Set PCM object of {issue_key} to {option.display}")

    async def update_pcm(self, args: UpdatePCMArgs) -> ToolResult:
        await self.tracker.update_pcm(args.issue_key, args.object_id)
        if args.object_id:
            return ToolResult.ok(f"Set PCM object of {args.issue_key} to {args.object_id}")
        return ToolResult.ok(f"Cleared PCM object of {args.issue_key}")


def _numbered(options: list[SelectionOption]) -> list[str]:
    return [f"{i}. {opt.display}" for i, opt in enumerate(options, start=1)]


def _pick(
    pending: tuple[str, list[SelectionOption]] | None,
    args: OptionSelectArgs,
    label: str,
) -> tuple[str, SelectionOption]:
    if pending is None:
        raise ToolError(f"No pending {label} options. Search first.")
    pending_key, options = pending
    if not 1 <= args.option_index <= len(options):
        raise ToolError(f"Option {args.option_index} is out of range (1-{len(options)})")
    issue_key = args.issue_key or pending_key
    return issue_key, options[args.option_index - 1]


def _sprint_month(sprint: Sprint) -> int | None:
    if not sprint.start_date or len(sprint.start_date) < 7:
        return None
    month = sprint.start_date[5:7]
    return int(month) if month.isdigit() else None
