"""Inline Python script action.

The code runs in a child interpreter (``script_runner.py``) as the body of
``def script(console, context)``. ``console.log/warn/error`` collect output
lines and a ``return`` value becomes the action output, JSON encoded. A
script that runs past its timeout is killed.

Scripts only see a reduced set of builtins plus ``json``, ``math``, ``re``
and ``datetime``. That keeps honest scripts tidy; it is not a sandbox, and
script code must come from trusted operators.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from app.config import get_settings
from core.constants import ActionType
from core.exceptions import ActionError
from core.schemas import ScriptAction
from tasks.base_task import BaseAction
from workflow.interpolation import interpolate

logger = structlog.get_logger(__name__)

NO_OUTPUT_MESSAGE = "Script executed successfully (no output)"
RUNNER_PATH = str(Path(__file__).with_name("script_runner.py"))


class ScriptTask(BaseAction):
    """Run an inline Python snippet against the execution context.

    Config:
        code: Function body, placeholders allowed
        language: "python"
    """

    action_type = ActionType.SCRIPT.value
    display_name = "Script"
    description = "Run a short Python snippet"

    def __init__(self, client=None, timeout: Optional[float] = None):
        super().__init__(client=client, timeout=timeout)
        if timeout is None:
            self.timeout = get_settings().SCRIPT_TIMEOUT_SECONDS

    async def execute(self, action: ScriptAction, context: Dict[str, Any]) -> str:
        code = interpolate(action.code, context)
        request = json.dumps({"code": code, "context": context}, default=str).encode("utf-8")

        process = await asyncio.create_subprocess_exec(
            sys.executable, "-I", RUNNER_PATH,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(request), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ActionError(f"Script timed out after {self.timeout}s") from exc
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()

        try:
            reply = json.loads(stdout)
        except ValueError as exc:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise ActionError(f"Script error: {detail or f'exit code {process.returncode}'}") from exc

        if not reply.get("ok"):
            logger.debug("Script raised", error=reply.get("error"))
            raise ActionError(f"Script error: {reply.get('error')}")
        if reply.get("result") is not None:
            return reply["result"]
        if reply.get("lines"):
            return "\n".join(reply["lines"])
        return NO_OUTPUT_MESSAGE


SCRIPT_TASK_TYPES = {
    ScriptTask.action_type: ScriptTask,
}
