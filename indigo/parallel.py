"""
INDIGO Parallel Runner

Runs independent goals concurrently. Each goal gets its own
Orchestrator from the factory, so history, pending selections and
per-turn snapshots are never shared between runs. Concurrency is
bounded by a semaphore; actions inside one run stay sequential.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from loguru import logger
from rich.console import Console
from rich.table import Table

from indigo.controller import Orchestrator, RunStatus

console = Console()


async def _run_single_goal(
    goal: str,
    factory: Callable[[], Orchestrator],
    semaphore: asyncio.Semaphore,
    max_iterations: int | None,
) -> dict[str, Any]:
    async with semaphore:
        try:
            orchestrator = factory()
            result = await orchestrator.run(goal, max_iterations=max_iterations)
            return result.to_dict()
        except Exception as e:
            logger.error(f"[PARALLEL] Goal failed: {goal[:60]} - {e}")
            return {
                "goal": goal,
                "status": "error",
                "error": str(e),
            }


async def run_goals(
    goals: list[str],
    factory: Callable[[], Orchestrator],
    max_concurrency: int = 3,
    max_iterations: int | None = None,
    show_summary: bool = True,
) -> list[dict[str, Any]]:
    """Run every goal to a stop condition. Results keep the input order."""
    if show_summary:
        _print_parallel_header(len(goals), max_concurrency)

    semaphore = asyncio.Semaphore(max(1, max_concurrency))
    results = await asyncio.gather(*(
        _run_single_goal(goal, factory, semaphore, max_iterations) for goal in goals
    ))

    for result in results:
        _log_goal_completion(result)
    if show_summary:
        _print_parallel_summary(list(results))
    return list(results)


# --- Helpers ---

def _print_parallel_header(count: int, workers: int):
    console.print(f"\n[bold]INDIGO batch: {count} goals, {workers} at a time[/]")
    console.print("[dim]Each goal runs in its own orchestration loop.[/]\n")


def _log_goal_completion(result: dict):
    status = result.get("status", "unknown")
    if status == RunStatus.COMPLETED.value:
        logger.info(f"[PARALLEL] {result.get('goal', '?')[:60]}: {status}")
    else:
        logger.warning(f"[PARALLEL] {result.get('goal', '?')[:60]}: {status}")


def _print_parallel_summary(results: list[dict]) -> None:
    table = Table(title="Batch Results", border_style="blue")
    table.add_column("Goal")
    table.add_column("Status")
    table.add_column("Turns")
    table.add_column("Actions")
    table.add_column("Cost")

    for r in results:
        status = r.get("status", "unknown")
        color = {
            RunStatus.COMPLETED.value: "green",
            RunStatus.AWAITING_USER.value: "yellow",
            RunStatus.NEEDS_CLARIFICATION.value: "yellow",
        }.get(status, "red")
        budget = r.get("budget", {})
        cost = f"${budget.get('estimated_cost', 0):.4f}"
        table.add_row(
            r.get("goal", "?")[:60],
            f"[{color}]{status}[/]",
            str(r.get("iterations", "-")),
            str(len(r.get("actions", []))),
            cost,
        )

    console.print(table)

    total_cost = sum(r.get("budget", {}).get("estimated_cost", 0) for r in results)
    successes = sum(1 for r in results if r.get("status") == RunStatus.COMPLETED.value)
    console.print(f"\n[bold]{successes}/{len(results)} completed | Total cost: ${total_cost:.4f}[/]")
