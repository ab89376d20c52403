"""HTTP request and outbound webhook actions."""

from typing import Any, Dict

import httpx
import structlog

from core.constants import ActionType, HttpMethod
from core.exceptions import ActionError
from core.schemas import HttpRequestAction, WebhookAction
from tasks.auth import apply_auth
from tasks.base_task import BaseAction
from workflow.interpolation import interpolate

logger = structlog.get_logger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}


class HttpRequestTask(BaseAction):
    """Send an HTTP request and return the response body as text.

    Config:
        url: Target URL, placeholders allowed
        method: GET, POST, PUT, PATCH or DELETE (default: GET)
        headers: Extra headers, overlaid on a JSON content type
        body: Raw request body, placeholders allowed; ignored for GET
        auth: none | basic | bearer | api_key | oauth2_client_credentials
    """

    action_type = ActionType.HTTP_REQUEST.value
    display_name = "HTTP Request"
    description = "Call an HTTP API and capture the response body"

    async def execute(self, action: HttpRequestAction, context: Dict[str, Any]) -> str:
        headers = {**JSON_HEADERS, **action.headers}
        url = interpolate(action.url, context)
        body = interpolate(action.body, context) if action.body is not None else None

        kwargs: Dict[str, Any] = {"headers": headers, "timeout": self.timeout}
        if body and action.method != HttpMethod.GET:
            kwargs["content"] = body

        async with self.http_client() as client:
            url = await apply_auth(action.auth, url, headers, client, timeout=self.timeout)
            try:
                response = await client.request(action.method.value, url, **kwargs)
            except httpx.TimeoutException as exc:
                raise ActionError(f"Request timed out after {self.timeout}s: {url}") from exc
            except httpx.HTTPError as exc:
                raise ActionError(f"Request failed: {exc}") from exc

        if not response.is_success:
            raise ActionError(f"HTTP {response.status_code}: {response.text}")

        logger.debug("HTTP response", url=url, status_code=response.status_code)
        return response.text


class WebhookTask(BaseAction):
    """POST an interpolated JSON payload to a webhook URL.

    Config:
        url: Webhook endpoint
        payload: JSON text, placeholders allowed (default: "{}")
    """

    action_type = ActionType.WEBHOOK.value
    display_name = "Webhook"
    description = "Post a JSON payload to a webhook"

    async def execute(self, action: WebhookAction, context: Dict[str, Any]) -> str:
        payload = interpolate(action.payload or "{}", context)

        async with self.http_client() as client:
            try:
                response = await client.post(
                    action.url,
                    content=payload,
                    headers=dict(JSON_HEADERS),
                    timeout=self.timeout,
                )
            except httpx.TimeoutException as exc:
                raise ActionError(f"Webhook timed out after {self.timeout}s") from exc
            except httpx.HTTPError as exc:
                raise ActionError(f"Webhook request failed: {exc}") from exc

        if not response.is_success:
            raise ActionError(f"Webhook failed with status {response.status_code}")
        return f"Webhook sent successfully ({response.status_code})"


HTTP_TASK_TYPES = {
    HttpRequestTask.action_type: HttpRequestTask,
    WebhookTask.action_type: WebhookTask,
}
