from collections import deque

import pytest
import yaml

from indigo.config_loader import IndigoConfig
from indigo.models import IssueComment, SelectionOption, Sprint, Epic, TransitionField
from indigo.router import BudgetTracker, ModelTransportError, RouterResponse
from indigo.sandbox import FixtureIssue, FixtureTransition, SandboxFixture, SandboxTracker


class FakeRouter:
    """Scripted stand-in for Router: queued replies per call shape."""

    def __init__(self, stream_replies=(), complete_replies=()):
        self.stream_replies = deque(stream_replies)
        self.complete_replies = deque(complete_replies)
        self.stream_calls: list[dict] = []
        self.complete_calls: list[dict] = []
        self.budget = BudgetTracker()

    def _next(self, queue):
        reply = queue.popleft() if queue else ""
        if isinstance(reply, Exception):
            raise reply
        return RouterResponse(content=reply, model="fake/model", tokens_used=10)

    async def complete(self, role, messages, **kwargs):
        self.complete_calls.append({"role": role, "messages": messages})
        return self._next(self.complete_replies)

    async def stream(self, role, messages, on_chunk=None, **kwargs):
        self.stream_calls.append({"role": role, "messages": messages})
        response = self._next(self.stream_replies)
        if on_chunk:
            for word in response.content.split(" "):
                on_chunk(word + " ")
        return response


def make_fixture() -> SandboxFixture:
    return SandboxFixture(
        current_user="me@example.com",
        projects=["SETI"],
        statuses=["To Do", "In Progress", "In Review", "Done"],
        resolutions=["Done", "Won't Do", "Duplicate"],
        issues=[
            FixtureIssue(key="SETI-1", summary="Fix login bug", status="To Do", issue_type="Bug",
                         description="Login fails on Safari",
                         comments=[IssueComment(author="ana", body="Repro on 17.2")]),
            FixtureIssue(key="SETI-2", summary="Add dark mode", status="In Progress", assignee="me@example.com"),
            FixtureIssue(key="SETI-3", summary="Write release notes", status="In Review"),
        ],
        sprints=[
            Sprint(id=41, name="SETI Sprint 41", state="closed", start_date="2026-09-01", project="SETI"),
            Sprint(id=42, name="SETI Sprint 42", state="active", start_date="2026-10-06", project="SETI"),
            Sprint(id=43, name="SETI Sprint 43", state="future", start_date="2026-10-20", project="SETI"),
        ],
        epics=[
            Epic(key="SETI-100", summary="Authentication Overhaul", project="SETI"),
            Epic(key="SETI-200", summary="Mobile Apps", project="SETI"),
        ],
        components={"SETI": ["Backend", "Frontend", "iOS App"]},
        workflow=[
            FixtureTransition(id="11", name="Start Progress", to="In Progress"),
            FixtureTransition(id="21", name="Send to Review", to="In Review"),
            FixtureTransition(
                id="31", name="Resolve Issue", to="Done",
                fields=[TransitionField(key="resolution", name="Resolution",
                                        allowed_values=("Done", "Won't Do", "Duplicate"))],
            ),
            FixtureTransition(id="41", name="Reopen", to="To Do"),
        ],
        allowed_values={"priority": ["Highest", "High", "Medium", "Low"]},
        classification_options=[
            SelectionOption(display="Hardware > Laptop", value="Hardware", child_value="Laptop"),
            SelectionOption(display="Hardware > Monitor", value="Hardware", child_value="Monitor"),
            SelectionOption(display="Software > License", value="Software", child_value="License"),
        ],
        pcm_options=[
            SelectionOption(display="PCM-7 Payments Gateway", value="7"),
            SelectionOption(display="PCM-9 Payments Reporting", value="9"),
        ],
    )


@pytest.fixture
def sandbox() -> SandboxTracker:
    return SandboxTracker(make_fixture())


@pytest.fixture
def config() -> IndigoConfig:
    return IndigoConfig()


@pytest.fixture
def transport_error() -> ModelTransportError:
    return ModelTransportError("connection reset")


@pytest.fixture
def make_router():
    return FakeRouter


@pytest.fixture
def fixture_file(tmp_path):
    path = tmp_path / "tracker.yaml"
    path.write_text(yaml.safe_dump(make_fixture().model_dump(mode="json"), sort_keys=False))
    return path
