import pytest

from indigo.cache import CatalogCache
from indigo.event_bus import EventBus
from indigo.models import Epic, Sprint, TransitionInfo
from indigo.resolver import (
    Candidate,
    EntityKind,
    EntityResolver,
    MatchStrategy,
    match,
    transition_candidates,
)


CLOSE_TRANSITIONS = [
    TransitionInfo(id="31", name="Resolve Issue", target_status="Done"),
    TransitionInfo(id="51", name="Won't Fix", target_status="Closed"),
]


def test_close_resolves_to_first_terminal_candidate():
    result = match("close", transition_candidates(CLOSE_TRANSITIONS), EntityKind.TRANSITION)

    assert result.matched
    assert result.id == "31"
    assert result.strategy is MatchStrategy.SYNONYM


def test_exact_name_beats_every_later_step():
    transitions = [
        TransitionInfo(id="1", name="Finish", target_status="Closed"),
        TransitionInfo(id="2", name="Close", target_status="Done"),
    ]
    result = match("done", transition_candidates(transitions), EntityKind.TRANSITION)

    assert result.id == "2"
    assert result.strategy is MatchStrategy.EXACT_NAME


def test_exact_action_name_for_transitions():
    transitions = [
        TransitionInfo(id="11", name="Start Progress", target_status="In Progress"),
        TransitionInfo(id="21", name="Send to Review", target_status="In Review"),
    ]
    result = match("send to review", transition_candidates(transitions), EntityKind.TRANSITION)

    assert result.id == "21"
    assert result.strategy is MatchStrategy.EXACT_ACTION


def test_synonym_step_needs_exact_group_membership():
    candidates = [Candidate(id="1", name="Released"), Candidate(id="2", name="Done")]

    # "closing" is no group member, so the synonym step must not fire
    result = match("closing", candidates, EntityKind.SPRINT)
    assert result.strategy is not MatchStrategy.SYNONYM


def test_case_and_padding_do_not_change_result():
    candidates = transition_candidates(CLOSE_TRANSITIONS)
    baseline = match("won't fix", candidates, EntityKind.TRANSITION)

    assert baseline.id == "51"
    for variant in ("  Won't Fix ", "WON'T FIX", "won't fix\n"):
        again = match(variant, candidates, EntityKind.TRANSITION)
        assert (again.id, again.strategy) == (baseline.id, baseline.strategy)


def test_substring_and_reverse_substring():
    epics = [Candidate(id="SETI-100", name="Authentication Overhaul"), Candidate(id="SETI-200", name="Mobile Apps")]

    assert match("overhaul", epics, EntityKind.EPIC).strategy is MatchStrategy.SUBSTRING
    reverse = match("the mobile apps epic", epics, EntityKind.EPIC)
    assert reverse.id == "SETI-200"
    assert reverse.strategy is MatchStrategy.REVERSE_SUBSTRING
    # reverse containment is not tried for sprints
    sprints = [Candidate(id="42", name="Sprint 42")]
    assert match("put it in sprint 42 please", sprints, EntityKind.SPRINT).strategy is MatchStrategy.WORD_OVERLAP


def test_word_overlap_tie_goes_to_first_candidate():
    candidates = [Candidate(id="a", name="Payments Backend"), Candidate(id="b", name="Payments Frontend")]
    result = match("payments api", candidates, EntityKind.COMPONENT)

    assert result.id == "a"
    assert result.strategy is MatchStrategy.WORD_OVERLAP
    assert result.score == 1


def test_word_overlap_weights_target_status_over_action():
    transitions = [
        TransitionInfo(id="1", name="Ship to staging", target_status="Deployed"),
        TransitionInfo(id="2", name="Approve", target_status="Staging Approved"),
    ]
    result = match("staging approval", transition_candidates(transitions), EntityKind.TRANSITION)

    assert result.id == "2"
    assert result.score == 2


def test_no_match_and_empty_inputs():
    assert not match("zzz", [Candidate(id="1", name="Done")], EntityKind.SPRINT).matched
    assert not match("", [Candidate(id="1", name="Done")], EntityKind.SPRINT).matched
    assert not match("done", [], EntityKind.SPRINT).matched


def test_match_is_deterministic():
    candidates = transition_candidates(CLOSE_TRANSITIONS)
    results = {match("finish", candidates, EntityKind.TRANSITION) for _ in range(5)}
    assert len(results) == 1


@pytest.mark.asyncio
async def test_sprint_escalates_to_full_catalog_once(sandbox):
    cache = CatalogCache()
    cache.seed(sprints=[Sprint(id=42, name="SETI Sprint 42", state="active", project="SETI")])
    resolver = EntityResolver(sandbox, cache)

    hit = await resolver.resolve_sprint("sprint 42", ["SETI"])
    assert hit.id == "42"
    assert not [c for c in sandbox.calls if c[0] == "fetch_sprints"]

    miss = await resolver.resolve_sprint("43", ["SETI"])
    assert miss.id == "43"
    assert len([c for c in sandbox.calls if c[0] == "fetch_sprints"]) == 1

    await resolver.resolve_sprint("nothing like it", ["SETI"])
    assert len([c for c in sandbox.calls if c[0] == "fetch_sprints"]) == 1


@pytest.mark.asyncio
async def test_numeric_sprint_id(sandbox):
    resolver = EntityResolver(sandbox)
    result = await resolver.resolve_sprint("41", ["SETI"])

    assert result.name == "SETI Sprint 41"
    assert result.strategy is MatchStrategy.EXACT_ID


@pytest.mark.asyncio
async def test_epic_key_must_exist_in_catalog(sandbox):
    resolver = EntityResolver(sandbox)

    known = await resolver.resolve_epic("seti-200", ["SETI"])
    assert known.id == "SETI-200"
    assert known.name == "Mobile Apps"
    assert known.strategy is MatchStrategy.EXACT_ID

    unknown = await resolver.resolve_epic("SETI-999", ["SETI"])
    assert not unknown.matched
    assert len([c for c in sandbox.calls if c[0] == "fetch_epics"]) == 1


@pytest.mark.asyncio
async def test_epic_named_like_a_key_is_found_by_name(sandbox):
    sandbox.fixture.epics.append(Epic(key="SETI-300", summary="Q3-2024", project="SETI"))
    resolver = EntityResolver(sandbox)

    result = await resolver.resolve_epic("Q3-2024", ["SETI"])

    assert result.id == "SETI-300"
    assert result.strategy is MatchStrategy.EXACT_NAME


@pytest.mark.asyncio
async def test_cached_epic_key_skips_fetch(sandbox):
    cache = CatalogCache()
    cache.seed(epics=[Epic(key="SETI-100", summary="Authentication Overhaul", project="SETI")])
    resolver = EntityResolver(sandbox, cache)

    result = await resolver.resolve_epic("seti-100", ["SETI"])

    assert result.id == "SETI-100"
    assert sandbox.calls == []


@pytest.mark.asyncio
async def test_epic_by_name_and_components_cached(sandbox):
    resolver = EntityResolver(sandbox)

    epic = await resolver.resolve_epic("authentication", ["SETI"])
    assert epic.id == "SETI-100"

    first = await resolver.resolve_component("ios", "SETI")
    second = await resolver.resolve_component("backend", "seti")
    assert first.name == "iOS App"
    assert second.name == "Backend"
    assert len([c for c in sandbox.calls if c[0] == "fetch_components"]) == 1


def test_fallback_emits_data_quality_event(sandbox):
    bus = EventBus()
    seen = []
    bus.subscribe(seen.append)
    resolver = EntityResolver(sandbox, bus=bus)

    miss = resolver.resolve_transition("teleport", [])
    raw = resolver.fallback(miss, context="SETI-1")

    assert raw == "teleport"
    assert len(seen) == 1
    assert seen[0].event_type == "data_quality.fallback"
    assert seen[0].payload == {"kind": "transition", "query": "teleport", "context": "SETI-1"}
