"""Webhook receiver: runs the workflow that owns the token in the URL."""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request

from app.dependencies import get_workflow_engine
from core.exceptions import NotFoundError, ValidationError
from workflow.engine import WorkflowEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhooks"])


async def _read_payload(request: Request) -> dict[str, Any]:
    """JSON body as a dict; other JSON values are wrapped as ``{"body": value}``."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        raise ValidationError("Webhook body must be valid JSON")
    if not isinstance(payload, dict):
        payload = {"body": payload}
    return payload


@router.post("/webhooks/{token}", summary="Run a workflow from its webhook")
async def receive_webhook(
    token: str,
    request: Request,
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> dict[str, Any]:
    """Run the active workflow owning ``token`` with the request body as payload.

    The call returns once the run finishes. A workflow that is already
    running answers 409 through the engine exception handler.
    """
    payload = await _read_payload(request)
    execution = await engine.run_by_webhook_token(token, payload)
    if execution is None:
        logger.info("Webhook rejected: unknown or inactive token")
        raise NotFoundError("Invalid webhook token or workflow not found")

    return {
        "success": True,
        "execution_id": execution.id,
        "status": execution.status,
    }
