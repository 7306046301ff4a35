"""
INDIGO Controller: The Orchestration Loop

It is NOT smart. It is deterministic.

Per turn:
  BUILDING_CONTEXT -> PROMPTING_MODEL -> PARSING_RESPONSE
    -> EXECUTING_ACTIONS -> FOLDING_RESULTS -> (next turn | DONE)

Responsibilities:
  - Build a fresh AIContext every turn
  - Stream the model reply; parse only the complete text
  - Execute actions sequentially, in parse order
  - Fold each result into history before the next action runs
  - Enforce stop conditions (completion, iteration cap, no commands,
    clarification, transport/config/budget failures)

It never talks to the tracker directly. Actions go through the executor.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Sequence

from loguru import logger

from indigo.agents.assistant import AssistantAgent, AssistantTurn
from indigo.agents.field_mapper import FieldMapperAgent
from indigo.cache import CatalogCache
from indigo.config_loader import IndigoConfig
from indigo.context import ContextBuilder
from indigo.event_bus import EventBus
from indigo.interfaces import ActionExecutor, MetadataProvider, StateProvider, TrackerClient, TrackerTransportError
from indigo.models import Action, HistoryEntry, ToolResult
from indigo.parser import CommandParser
from indigo.resolver import EntityResolver
from indigo.router import (
    BudgetExceededError,
    BudgetTracker,
    ModelNotConfiguredError,
    ModelTransportError,
    Router,
)
from indigo.tools import ToolRegistry
from indigo.tools.jira import JiraToolbox
from indigo.validator import FieldValidator


class RunState(str, Enum):
    AWAITING_GOAL = "awaiting_goal"
    BUILDING_CONTEXT = "building_context"
    PROMPTING_MODEL = "prompting_model"
    PARSING_RESPONSE = "parsing_response"
    EXECUTING_ACTIONS = "executing_actions"
    FOLDING_RESULTS = "folding_results"
    DONE = "done"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    MAX_ITERATIONS = "max_iterations"
    AWAITING_USER = "awaiting_user"
    NEEDS_CLARIFICATION = "needs_clarification"
    TRANSPORT_ERROR = "transport_error"
    NOT_CONFIGURED = "not_configured"
    BUDGET_EXCEEDED = "budget_exceeded"


@dataclass
class RunResult:
    run_id: str
    goal: str
    status: RunStatus = RunStatus.MAX_ITERATIONS
    iterations: int = 0
    history: list[HistoryEntry] = field(default_factory=list)
    narrations: list[str] = field(default_factory=list)
    skipped_actions: list[Action] = field(default_factory=list)
    decode_failures: int = 0
    clarification: str | None = None
    error: str | None = None
    budget: dict[str, Any] = field(default_factory=dict)

    @property
    def final_message(self) -> str:
        return self.narrations[-1] if self.narrations else ""

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "goal": self.goal,
            "status": self.status.value,
            "iterations": self.iterations,
            "actions": [
                {"action": e.action.describe(), "success": e.result.success, "message": e.result.message}
                for e in self.history
            ],
            "skipped_actions": [a.describe() for a in self.skipped_actions],
            "clarification": self.clarification,
            "error": self.error,
            "budget": self.budget,
        }


class Orchestrator:
    """
    One Orchestrator per run. History, pending selections and the
    snapshot taken each turn belong to that run only.
    """

    def __init__(
        self,
        assistant: AssistantAgent,
        executor: ActionExecutor,
        context_builder: ContextBuilder,
        config: IndigoConfig | None = None,
        parser: CommandParser | None = None,
        bus: EventBus | None = None,
        on_chunk: Callable[[str], None] | None = None,
    ):
        self.assistant = assistant
        self.executor = executor
        self.context_builder = context_builder
        self.config = config or IndigoConfig()
        self.parser = parser or assistant.parser
        self.bus = bus
        self.on_chunk = on_chunk

        self.state = RunState.AWAITING_GOAL
        self._run_id: str | None = None
        self._budget_start = None

    async def run(
        self,
        goal: str,
        max_iterations: int | None = None,
        prior_messages: Sequence[dict[str, str]] = (),
    ) -> RunResult:
        self._run_id = uuid.uuid4().hex[:8]
        budget = self._budget()
        self._budget_start = budget.snapshot() if budget is not None else None
        result = RunResult(run_id=self._run_id, goal=goal)
        limit = max_iterations if max_iterations is not None else self.config.limits.max_iterations
        window = self.config.limits.history_window
        prior = list(prior_messages)[-window:] if window > 0 else []

        logger.info(f"[LOOP] Run {self._run_id} started: {goal[:120]}")
        self._emit("loop.started", {"goal": goal, "max_iterations": limit})

        for iteration in range(1, limit + 1):
            result.iterations = iteration

            self._transition(RunState.BUILDING_CONTEXT, iteration)
            context = self.context_builder.build(goal, result.history, iteration)

            self._transition(RunState.PROMPTING_MODEL, iteration)
            try:
                response = await self.assistant.stream_turn(AssistantTurn(context, prior), self.on_chunk)
            except ModelNotConfiguredError as e:
                return self._finish(result, RunStatus.NOT_CONFIGURED, error=str(e))
            except BudgetExceededError as e:
                return self._finish(result, RunStatus.BUDGET_EXCEEDED, error=str(e))
            except ModelTransportError as e:
                return self._finish(result, RunStatus.TRANSPORT_ERROR, error=str(e))

            self._transition(RunState.PARSING_RESPONSE, iteration)
            parsed = self.parser.parse(response.content)
            result.decode_failures += parsed.decode_failures
            if parsed.narration:
                result.narrations.append(parsed.narration)
            commands = parsed.commands

            if parsed.is_complete:
                if commands:
                    logger.warning(f"[LOOP] Completion signalled; skipping {len(commands)} queued action(s)")
                    result.skipped_actions.extend(commands)
                return self._finish(result, RunStatus.COMPLETED)

            if not commands:
                logger.info("[LOOP] Reply carried no commands; handing back to the user")
                return self._finish(result, RunStatus.AWAITING_USER)

            self._transition(RunState.EXECUTING_ACTIONS, iteration)
            for index, action in enumerate(commands):
                try:
                    tool_result = await self.executor.execute(action)
                except TrackerTransportError as e:
                    logger.warning(f"[LOOP] Tracker unreachable during {action.tool}: {e}")
                    self._fold(result, action, ToolResult.failure(f"Tracker unreachable: {e}"), iteration)
                    result.skipped_actions.extend(commands[index + 1:])
                    break

                self._fold(result, action, tool_result, iteration)

                if tool_result.clarification:
                    result.clarification = tool_result.clarification
                    result.skipped_actions.extend(commands[index + 1:])
                    return self._finish(result, RunStatus.NEEDS_CLARIFICATION)

        logger.warning(f"[LOOP] Iteration cap ({limit}) reached without completion")
        return self._finish(result, RunStatus.MAX_ITERATIONS)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _fold(self, result: RunResult, action: Action, tool_result: ToolResult, iteration: int) -> None:
        self._transition(RunState.FOLDING_RESULTS, iteration)
        result.history.append(HistoryEntry(action=action, result=tool_result))
        logger.info(
            f"[LOOP] {action.tool}: {'OK' if tool_result.success else 'FAILED'}"
            f"{f' - {tool_result.message}' if tool_result.message else ''}"
        )
        self._emit("loop.result", {
            "iteration": iteration,
            "tool": action.tool,
            "arguments": action.arguments,
            "success": tool_result.success,
            "message": tool_result.message,
        })

    def _finish(self, result: RunResult, status: RunStatus, error: str | None = None) -> RunResult:
        result.status = status
        result.error = error
        budget = self._budget()
        if budget is not None:
            result.budget = budget.summary(since=self._budget_start)

        self.state = RunState.DONE
        log = logger.error if error else logger.info
        log(f"[LOOP] Run {result.run_id} finished: {status.value} after {result.iterations} iteration(s)"
            f"{f' ({error})' if error else ''}")
        self._emit("loop.finished", {
            "status": status.value,
            "iterations": result.iterations,
            "actions": len(result.history),
            "skipped": len(result.skipped_actions),
            "error": error,
        })
        return result

    def _budget(self) -> BudgetTracker | None:
        return getattr(self.assistant.router, "budget", None)

    def _transition(self, state: RunState, iteration: int) -> None:
        self.state = state
        logger.debug(f"[LOOP] turn {iteration}: {state.value}")
        self._emit("loop.state", {"state": state.value, "iteration": iteration})

    def _emit(self, event_type: str, payload: dict[str, Any]) -> None:
        if self.bus:
            self.bus.emit(event_type=event_type, source="loop", payload=payload, run_id=self._run_id)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def build_orchestrator(
    config: IndigoConfig,
    tracker: TrackerClient,
    metadata: MetadataProvider,
    state: StateProvider,
    router: Router | None = None,
    cache: CatalogCache | None = None,
    bus: EventBus | None = None,
    on_chunk: Callable[[str], None] | None = None,
) -> Orchestrator:
    """
    Assemble a ready-to-run Orchestrator over the given collaborators.
    A fresh toolbox is built every call so pending selections never leak
    between runs. A shared router or catalog cache is allowed, but only
    a router of its own gives the run its own budget cap.
    """
    router = router or Router(config)
    parser = CommandParser(config.parser.action_marker, config.parser.completion_phrases)

    cache = cache or CatalogCache()
    resolver = EntityResolver(metadata, cache, bus)
    validator = FieldValidator(FieldMapperAgent(router), metadata)
    toolbox = JiraToolbox(tracker, metadata, resolver, validator, config.tracker, state)
    registry = toolbox.register(ToolRegistry())

    assistant = AssistantAgent(router, registry.generate_tools_prompt(), parser)
    context_builder = ContextBuilder(state, config.limits.max_visible_issues, cache)

    return Orchestrator(
        assistant=assistant,
        executor=registry,
        context_builder=context_builder,
        config=config,
        parser=parser,
        bus=bus,
        on_chunk=on_chunk,
    )
