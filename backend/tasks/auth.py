"""Authentication for HTTP actions.

Each scheme mutates the outgoing headers, or the URL for query-string API
keys. OAuth2 client credentials are exchanged for a fresh access token on
every request.
"""

import base64
from typing import Optional
from urllib.parse import quote

import httpx
import structlog

from core.exceptions import ActionError
from core.schemas import (
    ApiKeyAuth,
    BasicAuth,
    BearerAuth,
    NoAuth,
    OAuth2ClientCredentialsAuth,
)

logger = structlog.get_logger(__name__)


def append_query_param(url: str, key: str, value: str) -> str:
    """Append ``key=value`` to ``url``, percent-encoding both parts."""
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{quote(key, safe='')}={quote(value, safe='')}"


async def fetch_oauth2_token(
    auth: OAuth2ClientCredentialsAuth,
    client: httpx.AsyncClient,
    timeout: Optional[float] = None,
) -> str:
    """Run the client-credentials grant against ``auth.token_url``.

    Raises:
        ActionError: On a non-2xx response or a response without a token.
    """
    form = {
        "grant_type": "client_credentials",
        "client_id": auth.client_id,
        "client_secret": auth.client_secret,
    }
    if auth.scope:
        form["scope"] = auth.scope

    try:
        response = await client.post(auth.token_url, data=form, timeout=timeout)
    except httpx.HTTPError as exc:
        raise ActionError(f"OAuth2 token request failed: {exc}") from exc

    if not response.is_success:
        raise ActionError(
            f"OAuth2 token request failed: {response.status_code} - {response.text}"
        )

    try:
        token = response.json().get("access_token")
    except (ValueError, AttributeError):
        token = None
    if not token:
        raise ActionError("OAuth2 token response did not include an access_token")

    logger.debug("OAuth2 token acquired", token_url=auth.token_url)
    return token


async def apply_auth(
    auth,
    url: str,
    headers: dict[str, str],
    client: httpx.AsyncClient,
    timeout: Optional[float] = None,
) -> str:
    """Apply ``auth`` to ``headers`` in place and return the (possibly new) URL."""
    if auth is None or isinstance(auth, NoAuth):
        return url

    if isinstance(auth, BasicAuth):
        creds = base64.b64encode(f"{auth.username}:{auth.password}".encode()).decode()
        headers["Authorization"] = f"Basic {creds}"
    elif isinstance(auth, BearerAuth):
        headers["Authorization"] = f"Bearer {auth.token}"
    elif isinstance(auth, ApiKeyAuth):
        if auth.add_to == "query":
            return append_query_param(url, auth.key, auth.value)
        headers[auth.key] = auth.value
    elif isinstance(auth, OAuth2ClientCredentialsAuth):
        token = await fetch_oauth2_token(auth, client, timeout=timeout)
        headers["Authorization"] = f"Bearer {token}"

    return url
