"""Action executor: one entry point for every action type."""

from typing import Any, Dict, Optional

import httpx

from core.exceptions import ActionError, ValidationError
from core.schemas import parse_action
from tasks.registry import ActionRegistry, get_action_registry


class ActionExecutor:
    """Runs a single action against a context and returns its text output.

    Args:
        client: Optional shared httpx client (tests inject a MockTransport one)
        registry: Action registry, defaults to the process-wide one
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        registry: Optional[ActionRegistry] = None,
    ):
        self._client = client
        self._registry = registry or get_action_registry()

    async def execute(
        self,
        action: Any,
        context: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Execute ``action`` and return its output.

        Raises:
            ActionError: The action failed or its definition is invalid.
        """
        try:
            typed = parse_action(action)
        except ValidationError as exc:
            raise ActionError(exc.message) from exc

        action_class = self._registry.get(typed.type)
        if action_class is None:
            raise ActionError(f"Unknown action type: {typed.type}")

        result = await action_class(client=self._client, timeout=timeout).run(typed, context)
        if not result.success:
            raise ActionError(result.error or "Action failed")
        return result.output
