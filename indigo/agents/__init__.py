"""
INDIGO Agents

Each agent is:
  - A system prompt
  - A message builder over a typed context
  - A response parser

Agents are stateless between runs. State lives in the orchestrator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from indigo.interfaces import ModelClient
from indigo.router import RouterResponse


class BaseAgent(ABC):
    """
    Base class for INDIGO agents.

    Subclasses define:
      - role: str, maps to a router model
      - system_prompt: str
      - build_messages()
      - parse_response()
    """

    role: str = "unknown"
    system_prompt: str = "You are a helpful assistant."

    def __init__(self, router: ModelClient):
        self.router = router

    async def run(self, context: Any, **kwargs) -> Any:
        """Execute the agent: build messages -> call model -> parse."""
        messages = self.build_messages(context)
        response = await self.router.complete(
            role=self.role,
            messages=messages,
            **kwargs,
        )
        return self.parse_response(response, context)

    @abstractmethod
    def build_messages(self, context: Any) -> list[dict[str, str]]:
        ...

    @abstractmethod
    def parse_response(self, response: RouterResponse, context: Any) -> Any:
        ...

    def _system_msg(self, content: str | None = None) -> dict[str, str]:
        return {"role": "system", "content": content or self.system_prompt}

    def _user_msg(self, content: str) -> dict[str, str]:
        return {"role": "user", "content": content}
