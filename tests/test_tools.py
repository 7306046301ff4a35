import pytest

from indigo.agents.field_mapper import FieldMapperAgent
from indigo.interfaces import TrackerTransportError
from indigo.models import Action, LogWorkArgs, Sprint, ToolArguments
from indigo.resolver import EntityResolver
from indigo.tools import ToolRegistry
from indigo.tools.jira import JiraToolbox, format_duration
from indigo.validator import FieldValidator


@pytest.fixture
def registry(sandbox, make_router):
    resolver = EntityResolver(sandbox)
    validator = FieldValidator(FieldMapperAgent(make_router()), sandbox)
    return JiraToolbox(sandbox, sandbox, resolver, validator, state=sandbox).register(ToolRegistry())


def act(tool, **arguments):
    return Action(tool=tool, arguments=arguments)


# --- Registry ---

def test_every_tool_is_registered(registry):
    assert len(registry) == 21
    assert "change_status" in registry
    prompt = registry.generate_tools_prompt()
    assert prompt.startswith("## Available Tools")
    assert "- `issueKey` (string) (required)" in prompt
    assert "- `timeSeconds` (integer) (required)" in prompt


@pytest.mark.asyncio
async def test_unknown_tool_and_bad_arguments(registry):
    unknown = await registry.execute(act("reticulate_splines"))
    assert not unknown.success
    assert "Available tools: search_issues" in unknown.message

    bad = await registry.execute(act("log_work", issueKey="SETI-1"))
    assert not bad.success
    assert bad.message.startswith("Invalid arguments for log_work: timeSeconds")


def test_typed_arguments_pick_schema_by_tool():
    typed = act("log_work", issueKey="SETI-1", timeSeconds=5400).typed_arguments()
    assert isinstance(typed, LogWorkArgs)
    assert typed.time_seconds == 5400

    bag = act("reticulate_splines", depth=3).typed_arguments()
    assert type(bag) is ToolArguments
    assert bag.model_dump() == {"depth": 3}


@pytest.mark.asyncio
async def test_tracker_rejection_becomes_failure(registry):
    result = await registry.execute(act("assign_issue", issueKey="SETI-404", assignee="ana@example.com"))
    assert not result.success
    assert result.message == "assign_issue failed: Issue SETI-404 does not exist"


@pytest.mark.asyncio
async def test_transport_failure_propagates(registry, sandbox):
    sandbox.unreachable.add("search")
    with pytest.raises(TrackerTransportError):
        await registry.execute(act("search_issues", jql="project = SETI"))


# --- Writes ---

@pytest.mark.asyncio
async def test_create_issue_resolves_entities_and_values(registry, sandbox):
    result = await registry.execute(act(
        "create_issue",
        project="seti",
        summary="Crash on launch",
        type="Bug",
        sprint="current",
        epic="authentication",
        components="ios",
        priority="high",
    ))

    assert result.success
    assert result.data == {"key": "SETI-101"}
    created = sandbox.issues["SETI-101"]
    assert created.issue_type == "Bug"
    assert created.priority == "High"
    assert created.fields == {
        "customfield_10020": 42,
        "customfield_10014": "SETI-100",
        "components": ["iOS App"],
    }


@pytest.mark.asyncio
async def test_create_with_unknown_epic_falls_back_to_raw_value(registry, sandbox):
    result = await registry.execute(act("create_issue", project="SETI", summary="Spike", epic="Quantum Stuff"))

    assert result.success
    assert sandbox.issues["SETI-101"].fields["customfield_10014"] == "Quantum Stuff"
    assert sandbox.issues["SETI-101"].issue_type == "Story"


@pytest.mark.asyncio
async def test_several_active_sprints_needs_clarification(registry, sandbox):
    sandbox.fixture.sprints.append(Sprint(id=44, name="SETI Hotfix", state="active", project="SETI"))
    result = await registry.execute(act("create_issue", project="SETI", summary="Patch", sprint="current"))

    assert result.clarification is not None
    assert "SETI Sprint 42, SETI Hotfix" in result.clarification
    assert "SETI-101" not in sandbox.issues


@pytest.mark.asyncio
async def test_update_issue_resolves_sprint_name(registry, sandbox):
    result = await registry.execute(act("update_issue", issueKey="SETI-2", fields={"sprint": "SETI Sprint 43"}))

    assert result.success
    assert sandbox.issues["SETI-2"].fields == {"customfield_10020": 43}


@pytest.mark.asyncio
async def test_update_without_fields_is_refused(registry):
    result = await registry.execute(act("update_issue", issueKey="SETI-2", fields={}))
    assert not result.success
    assert result.message == "No fields given to update on SETI-2"


@pytest.mark.asyncio
async def test_change_status_asks_for_required_resolution(registry, sandbox):
    result = await registry.execute(act("change_status", issueKey="SETI-1", newStatus="close"))

    assert result.clarification == "Moving SETI-1 to Done requires: Resolution (Done, Won't Do, Duplicate)"
    assert sandbox.issues["SETI-1"].status == "To Do"


@pytest.mark.asyncio
async def test_change_status_with_resolution(registry, sandbox):
    result = await registry.execute(act(
        "change_status", issueKey="SETI-1", newStatus="close", fields={"resolution": "won't do"}
    ))

    assert result.success
    assert result.message == "Moved SETI-1 to Done"
    assert sandbox.issues["SETI-1"].status == "Done"
    assert sandbox.issues["SETI-1"].fields["resolution"] == "Won't Do"


@pytest.mark.asyncio
async def test_change_status_without_match_lists_available(registry):
    result = await registry.execute(act("change_status", issueKey="SETI-2", newStatus="teleport"))

    assert not result.success
    assert "Available: 'Send to Review' -> 'In Review'" in result.message


@pytest.mark.asyncio
async def test_simple_writes(registry, sandbox):
    assert (await registry.execute(act("log_work", issueKey="SETI-2", timeSeconds=5400))).message == (
        "Logged 1h 30m on SETI-2"
    )
    assert sandbox.worklog == {"SETI-2": 5400}

    await registry.execute(act("add_watcher", issueKey="SETI-2", watcher="bo@example.com"))
    await registry.execute(act("link_issues", issueKey="SETI-2", linkedIssue="SETI-3", linkType="Blocks"))
    await registry.execute(act("add_comment", issueKey="SETI-3", comment="Looks good"))
    await registry.execute(act("delete_issue", issueKey="SETI-1"))

    assert sandbox.watchers == {"SETI-2": ["bo@example.com"]}
    assert sandbox.links == [("SETI-2", "SETI-3", "Blocks")]
    assert sandbox.issues["SETI-3"].comments[-1].body == "Looks good"
    assert "SETI-1" not in sandbox.issues

    empty = await registry.execute(act("add_comment", issueKey="SETI-3", comment="  "))
    assert not empty.success


# --- Lookups ---

@pytest.mark.asyncio
async def test_lookup_sprint_by_state_month_and_name(registry):
    closed = await registry.execute(act("lookup_sprint", query="closed"))
    assert [s["id"] for s in closed.data] == [41]

    october = await registry.execute(act("lookup_sprint", query="October", projectKey="SETI"))
    assert [s["id"] for s in october.data] == [42, 43]

    by_name = await registry.execute(act("lookup_sprint", query="sprint 43"))
    assert [s["name"] for s in by_name.data] == ["SETI Sprint 43"]

    missing = await registry.execute(act("lookup_sprint", query="zebra"))
    assert not missing.success


@pytest.mark.asyncio
async def test_read_only_lookups(registry):
    transitions = await registry.execute(act("get_transitions", issueKey="SETI-2"))
    assert len(transitions.data) == 3

    components = await registry.execute(act("get_components", projectKey="seti"))
    assert components.data == ["Backend", "Frontend", "iOS App"]

    detail = await registry.execute(act("show_issue_detail", issueKey="SETI-1"))
    assert detail.message == "SETI-1: Fix login bug [To Do]"
    assert detail.data["comments"][0]["body"] == "Repro on 17.2"

    found = await registry.execute(act("search_issues", jql="assignee = currentUser()"))
    assert found.message == "Found 1 issue(s)"
    assert found.data[0]["key"] == "SETI-2"

    changelog = await registry.execute(act("fetch_changelog", issueKey="SETI-3"))
    assert changelog.data == "No changes recorded"


# --- Classification / PCM ---

@pytest.mark.asyncio
async def test_classification_search_then_select(registry, sandbox):
    nothing_pending = await registry.execute(act("select_classification", optionIndex=1))
    assert nothing_pending.message == "No pending classification options. Search first."

    search = await registry.execute(act("search_classification", issueKey="SETI-1", query="hardware"))
    assert search.data == ["1. Hardware > Laptop", "2. Hardware > Monitor"]

    out_of_range = await registry.execute(act("select_classification", optionIndex=3))
    assert out_of_range.message == "Option 3 is out of range (1-2)"

    picked = await registry.execute(act("select_classification", optionIndex=2))
    assert picked.success
    assert sandbox.issues["SETI-1"].fields["classification"] == ["Hardware", "Monitor"]

    again = await registry.execute(act("select_classification", optionIndex=1))
    assert not again.success


@pytest.mark.asyncio
async def test_pcm_select_and_clear(registry, sandbox):
    await registry.execute(act("search_pcm", issueKey="SETI-3", query="payments"))
    picked = await registry.execute(act("select_pcm", issueKey="", optionIndex=2))

    assert picked.message == "Set PCM object of SETI-3 to PCM-9 Payments Reporting"
    assert sandbox.issues["SETI-3"].fields["pcm"] == "9"

    cleared = await registry.execute(act("update_pcm", issueKey="SETI-3"))
    assert cleared.message == "Cleared PCM object of SETI-3"
    assert sandbox.issues["SETI-3"].fields["pcm"] is None


def test_format_duration():
    assert format_duration(5400) == "1h 30m"
    assert format_duration(7200) == "2h"
    assert format_duration(900) == "15m"
