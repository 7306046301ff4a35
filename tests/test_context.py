from indigo.agents.assistant import CONTINUATION_PROMPT, AssistantAgent, AssistantTurn, render_context
from indigo.cache import CatalogCache
from indigo.context import ContextBuilder
from indigo.models import Action, Component, HistoryEntry, IssueFilters, ToolResult
from indigo.sandbox import FixtureIssue, SandboxFixture, SandboxTracker


def test_visible_issues_are_capped():
    issues = [FixtureIssue(key=f"SETI-{n}", summary=f"Issue {n}") for n in range(1, 31)]
    builder = ContextBuilder(SandboxTracker(SandboxFixture(projects=["SETI"], issues=issues)), max_visible_issues=20)

    context = builder.build("what is open?")

    assert len(context.visible_issues) == 20
    assert context.visible_issues[0].key == "SETI-1"
    assert context.user_goal == "what is open?"
    assert not context.is_continuation


def test_history_makes_a_continuation(sandbox):
    entry = HistoryEntry(
        action=Action(tool="search_issues", arguments={"jql": "project = SETI"}),
        result=ToolResult.ok("Found 3 issues"),
    )
    context = ContextBuilder(sandbox).build("close my bugs", history=[entry], iteration=2)

    assert context.is_continuation
    assert context.action_history == (entry,)
    assert context.iteration == 2


def test_cache_follows_scope_and_filters(sandbox):
    cache = CatalogCache()
    builder = ContextBuilder(sandbox, cache=cache)

    builder.build("hi")
    assert cache.scope == ("SETI",)
    assert len(cache.sprints(["SETI"])) == 3
    cache.store_components("SETI", [Component(name="Backend")])

    builder.build("hi again")
    assert cache.components("SETI") is not None

    sandbox.fixture.filters = IssueFilters(statuses=("To Do",))
    builder.build("filtered")
    assert cache.components("SETI") is None
    # reseeded from the snapshot after the reset
    assert len(cache.sprints(["SETI"])) == 3


def test_render_context_includes_selected_details(sandbox):
    sandbox.fixture.selected = ["SETI-1"]
    text = render_context(ContextBuilder(sandbox).build("summarize"))

    assert "- Current user: me@example.com" in text
    assert "SETI-2: Add dark mode [In Progress] (me@example.com)" in text
    assert "### SETI-1: Fix login bug" in text
    assert "Comment by ana: Repro on 17.2" in text


def test_first_turn_messages_carry_prior_conversation(sandbox, make_router):
    agent = AssistantAgent(make_router(), tools_prompt="## Available Tools\n- search_issues")
    context = ContextBuilder(sandbox).build("assign SETI-3 to me")
    prior = [
        {"role": "user", "content": "show my issues"},
        {"role": "assistant", "content": "You have two."},
        {"role": "system", "content": "ignored"},
    ]

    messages = agent.build_messages(AssistantTurn(context, prior))

    assert messages[0]["role"] == "system"
    assert "search_issues" in messages[0]["content"]
    assert 'ACTION: {"tool": "<tool name>"' in messages[0]["content"]
    assert [m["role"] for m in messages[1:]] == ["user", "assistant", "user"]
    assert messages[-1]["content"] == "assign SETI-3 to me"


def test_continuation_restates_goal_and_results(sandbox, make_router):
    agent = AssistantAgent(make_router())
    entry = HistoryEntry(
        action=Action(tool="assign_issue", arguments={"issueKey": "SETI-3", "assignee": "me@example.com"}),
        result=ToolResult.failure("assign_issue failed: no permission"),
    )
    context = ContextBuilder(sandbox).build("assign SETI-3 to me", history=[entry], iteration=2)

    messages = agent.build_messages(AssistantTurn(context, [{"role": "user", "content": "old"}]))

    assert len(messages) == 2
    body = messages[1]["content"]
    assert body.startswith("Original goal: assign SETI-3 to me")
    assert "FAILED: assign_issue failed: no permission" in body
    assert body.endswith(CONTINUATION_PROMPT)
