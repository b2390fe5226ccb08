"""Action registry — the default executor for directive calls."""

import inspect
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from ..llm.protocol import DirectiveCall

logger = logging.getLogger("clawrelay.actions.registry")


class ActionExecutor(Protocol):
    """Runs a directive call and returns text for the user."""

    async def execute(self, call: DirectiveCall) -> str:
        ...

    def catalog(self) -> str:
        ...


@dataclass
class Action:
    name: str
    description: str
    handler: Callable                   # sync or async, called with **args
    parameters: Optional[dict] = None   # name -> short description, for the catalog
    enabled: bool = True


class ActionRegistry:
    """Manages the actions the model may call."""

    def __init__(self, builtin_help: bool = True):
        self._actions: dict[str, Action] = {}
        if builtin_help:
            self.register("help", "List all available tools.", self._help)

    def register(
        self,
        name: str,
        description: str,
        handler: Callable,
        parameters: Optional[dict] = None,
    ):
        """Register a new action."""
        self._actions[name] = Action(
            name=name,
            description=description,
            handler=handler,
            parameters=parameters,
        )

    def unregister(self, name: str):
        """Remove an action."""
        self._actions.pop(name, None)

    def get(self, name: str) -> Optional[Action]:
        return self._actions.get(name)

    def list_actions(self) -> list[Action]:
        return [a for a in self._actions.values() if a.enabled]

    def catalog(self) -> str:
        """Tool catalog for the system prompt, one line per action."""
        lines = []
        for action in self.list_actions():
            params = ""
            if action.parameters:
                params = " args: " + ", ".join(
                    f"{k} ({v})" for k, v in action.parameters.items()
                )
            lines.append(f"- {action.name}: {action.description}{params}")
        return "\n".join(lines)

    async def execute(self, call: DirectiveCall) -> str:
        """Execute an action by name. Errors come back as text."""
        action = self.get(call.tool)
        if not action:
            return f'Unknown tool: "{call.tool}".'
        if not action.enabled:
            return f'Tool "{call.tool}" is disabled.'

        logger.info(f"Executing tool: {call.tool}")
        try:
            result = action.handler(**call.args)
            if inspect.isawaitable(result):
                result = await result
        except TypeError as e:
            return f'Tool "{call.tool}" argument error: {e}'
        except Exception as e:
            logger.error(f"Error executing tool '{call.tool}': {e}")
            return f'Tool "{call.tool}" failed: {e}'

        text = result if isinstance(result, str) else str(result)
        logger.debug(f"Tool result ({call.tool}): {text[:200]}")
        return text

    async def _help(self) -> str:
        if not self._actions:
            return "No tools available."
        return "Available tools:\n" + self.catalog()
