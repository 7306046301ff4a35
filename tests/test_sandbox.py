import pytest

from indigo.interfaces import TrackerError, TrackerTransportError
from indigo.sandbox import SandboxTracker


def test_from_yaml_round_trip(fixture_file):
    tracker = SandboxTracker.from_yaml(fixture_file)

    assert set(tracker.issues) == {"SETI-1", "SETI-2", "SETI-3"}
    assert tracker.fixture.workflow[2].fields[0].allowed_values == ("Done", "Won't Do", "Duplicate")


def test_snapshot_respects_preloaded_catalogs(sandbox):
    sandbox.fixture.preloaded_sprints = 1
    sandbox.fixture.preloaded_epics = 0
    snapshot = sandbox.snapshot()

    assert [s.id for s in snapshot.sprints] == [41]
    assert snapshot.epics == ()
    assert snapshot.projects == ("SETI",)


@pytest.mark.asyncio
async def test_transitions_exclude_current_status(sandbox):
    transitions = await sandbox.fetch_transitions("SETI-1")
    assert [t.target_status for t in transitions] == ["In Progress", "In Review", "Done"]


@pytest.mark.asyncio
async def test_jql_subset(sandbox):
    assert [i.key for i in await sandbox.search('project = SETI AND status != "To Do" ORDER BY key')] == [
        "SETI-2", "SETI-3"
    ]
    assert [i.key for i in await sandbox.search("text ~ safari")] == ["SETI-1"]


@pytest.mark.asyncio
async def test_rejections(sandbox):
    with pytest.raises(TrackerError, match="summary"):
        await sandbox.create_issue({"project": "SETI", "issuetype": "Bug"})
    with pytest.raises(TrackerError, match="not a valid option"):
        await sandbox.update_issue("SETI-1", {"priority": "Urgent"})
    with pytest.raises(TrackerError, match="required for transition"):
        await sandbox.transition_issue("SETI-1", "31", {})

    sandbox.unreachable.add("*")
    with pytest.raises(TrackerTransportError):
        await sandbox.fetch_epics(["SETI"])
