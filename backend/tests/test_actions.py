"""Tests for action execution: HTTP requests, webhooks, scripts and auth."""

import base64
import json
from urllib.parse import parse_qs

import httpx
import pytest

from core.exceptions import ActionError
from tasks.executor import ActionExecutor
from tasks.implementations.script_task import NO_OUTPUT_MESSAGE
from conftest import json_response


def http_action(**overrides):
    action = {"type": "http_request", "url": "https://api.test/items", "method": "GET"}
    action.update(overrides)
    return action


@pytest.mark.unit
class TestHttpRequest:

    async def test_get_returns_body_and_sends_no_content(self, executor_for):
        executor, transport = executor_for(lambda r: json_response({"id": 42}))
        out = await executor.execute(http_action(body='{"ignored": true}'), {})
        assert json.loads(out) == {"id": 42}
        request = transport.requests[0]
        assert request.method == "GET"
        assert request.content == b""
        assert request.headers["content-type"] == "application/json"

    async def test_post_interpolates_url_and_body(self, executor_for):
        executor, transport = executor_for(lambda r: httpx.Response(201, text="created"))
        action = http_action(
            url="https://api.test/users/{{user.id}}",
            method="post",
            headers={"X-Trace": "abc"},
            body={"name": "{{user.name}}"},
        )
        out = await executor.execute(action, {"user": {"id": 7, "name": "Ann"}})
        assert out == "created"
        request = transport.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.test/users/7"
        assert json.loads(request.content) == {"name": "Ann"}
        assert request.headers["x-trace"] == "abc"

    async def test_user_content_type_overrides_default(self, executor_for):
        executor, transport = executor_for(lambda r: httpx.Response(200, text="ok"))
        await executor.execute(
            http_action(method="PUT", body="a=1", headers={"Content-Type": "text/plain"}), {}
        )
        assert transport.requests[0].headers["content-type"] == "text/plain"

    async def test_non_2xx_raises_with_status_and_body(self, executor_for):
        executor, _ = executor_for(lambda r: httpx.Response(503, text="down"))
        with pytest.raises(ActionError, match="HTTP 503: down"):
            await executor.execute(http_action(), {})

    async def test_transport_error_raises(self, executor_for):
        def boom(request):
            raise httpx.ConnectError("refused", request=request)

        executor, _ = executor_for(boom)
        with pytest.raises(ActionError, match="Request failed"):
            await executor.execute(http_action(), {})

    async def test_invalid_definition_raises_action_error(self, executor_for):
        executor, transport = executor_for(lambda r: httpx.Response(200))
        with pytest.raises(ActionError, match="Invalid action configuration"):
            await executor.execute({"type": "ftp", "url": "x"}, {})
        assert transport.requests == []


@pytest.mark.unit
class TestAuth:

    async def test_basic(self, executor_for):
        executor, transport = executor_for(lambda r: httpx.Response(200, text="ok"))
        await executor.execute(http_action(auth={"type": "basic", "username": "u", "password": "p"}), {})
        expected = "Basic " + base64.b64encode(b"u:p").decode()
        assert transport.requests[0].headers["authorization"] == expected

    async def test_bearer(self, executor_for):
        executor, transport = executor_for(lambda r: httpx.Response(200, text="ok"))
        await executor.execute(http_action(auth={"type": "bearer", "token": "t0k"}), {})
        assert transport.requests[0].headers["authorization"] == "Bearer t0k"

    async def test_api_key_header(self, executor_for):
        executor, transport = executor_for(lambda r: httpx.Response(200, text="ok"))
        await executor.execute(
            http_action(auth={"type": "api_key", "key": "X-Api-Key", "value": "secret"}), {}
        )
        assert transport.requests[0].headers["x-api-key"] == "secret"

    async def test_api_key_query_is_encoded(self, executor_for):
        executor, transport = executor_for(lambda r: httpx.Response(200, text="ok"))
        action = http_action(
            url="https://api.test/items?page=2",
            auth={"type": "api_key", "key": "api key", "value": "a&b=c", "addTo": "query"},
        )
        await executor.execute(action, {})
        query = parse_qs(transport.requests[0].url.query.decode())
        assert query == {"page": ["2"], "api key": ["a&b=c"]}

    async def test_oauth2_client_credentials(self, executor_for):
        def handler(request):
            if request.url.path == "/token":
                return json_response({"access_token": "fresh", "token_type": "bearer"})
            return httpx.Response(200, text="ok")

        executor, transport = executor_for(handler)
        auth = {
            "type": "oauth2_client_credentials",
            "clientId": "cid",
            "clientSecret": "shh",
            "tokenUrl": "https://auth.test/token",
            "scope": "read",
        }
        await executor.execute(http_action(auth=auth), {})

        token_request, api_request = transport.requests
        form = parse_qs(token_request.content.decode())
        assert form == {
            "grant_type": ["client_credentials"],
            "client_id": ["cid"],
            "client_secret": ["shh"],
            "scope": ["read"],
        }
        assert api_request.headers["authorization"] == "Bearer fresh"

    async def test_oauth2_token_failure_stops_the_request(self, executor_for):
        def handler(request):
            if request.url.path == "/token":
                return httpx.Response(401, text="bad client")
            return httpx.Response(200, text="ok")

        executor, transport = executor_for(handler)
        auth = {
            "type": "oauth2_client_credentials",
            "clientId": "cid",
            "clientSecret": "wrong",
            "tokenUrl": "https://auth.test/token",
        }
        with pytest.raises(ActionError, match="401"):
            await executor.execute(http_action(auth=auth), {})
        assert len(transport.requests) == 1

    async def test_oauth2_response_without_token(self, executor_for):
        executor, _ = executor_for(lambda r: json_response({"token_type": "bearer"}))
        auth = {
            "type": "oauth2_client_credentials",
            "clientId": "cid",
            "clientSecret": "x",
            "tokenUrl": "https://auth.test/token",
        }
        with pytest.raises(ActionError, match="access_token"):
            await executor.execute(http_action(auth=auth), {})


@pytest.mark.unit
class TestWebhook:

    async def test_posts_interpolated_payload(self, executor_for):
        executor, transport = executor_for(lambda r: httpx.Response(202))
        action = {"type": "webhook", "url": "https://hooks.test/x", "payload": '{"msg": "{{text}}"}'}
        out = await executor.execute(action, {"text": "hello"})
        assert out == "Webhook sent successfully (202)"
        request = transport.requests[0]
        assert request.method == "POST"
        assert json.loads(request.content) == {"msg": "hello"}

    async def test_default_payload_is_empty_object(self, executor_for):
        executor, transport = executor_for(lambda r: httpx.Response(200))
        await executor.execute({"type": "webhook", "url": "https://hooks.test/x"}, {})
        assert transport.requests[0].content == b"{}"

    async def test_non_2xx_raises(self, executor_for):
        executor, _ = executor_for(lambda r: httpx.Response(500))
        with pytest.raises(ActionError, match="Webhook failed with status 500"):
            await executor.execute({"type": "webhook", "url": "https://hooks.test/x"}, {})


@pytest.mark.unit
class TestScript:

    @pytest.fixture
    def executor(self):
        return ActionExecutor()

    async def test_return_value_is_json(self, executor):
        out = await executor.execute(
            {"type": "script", "code": "return {'total': context['a'] + context['b']}"},
            {"a": 2, "b": 3},
        )
        assert json.loads(out) == {"total": 5}

    async def test_console_lines_without_return(self, executor):
        code = "console.log('one', 1)\nconsole.warn('careful')\nconsole.error('bad')"
        out = await executor.execute({"type": "script", "code": code}, {})
        assert out == "one 1\nWARN: careful\nERROR: bad"

    async def test_no_output(self, executor):
        out = await executor.execute({"type": "script", "code": "x = 1"}, {})
        assert out == NO_OUTPUT_MESSAGE

    async def test_placeholders_are_interpolated_first(self, executor):
        out = await executor.execute({"type": "script", "code": "return '{{name}}'.upper()"}, {"name": "ann"})
        assert json.loads(out) == "ANN"

    async def test_script_cannot_mutate_context(self, executor):
        ctx = {"items": [1]}
        await executor.execute({"type": "script", "code": "context['items'].append(2)"}, ctx)
        assert ctx == {"items": [1]}

    async def test_exception_becomes_action_error(self, executor):
        with pytest.raises(ActionError, match="Script error: boom"):
            await executor.execute({"type": "script", "code": "raise ValueError('boom')"}, {})

    async def test_syntax_error(self, executor):
        with pytest.raises(ActionError, match="Script error"):
            await executor.execute({"type": "script", "code": "return ("}, {})

    async def test_imports_are_unavailable(self, executor):
        with pytest.raises(ActionError, match="Script error"):
            await executor.execute({"type": "script", "code": "import os\nreturn os.getcwd()"}, {})

    async def test_timeout(self, executor):
        code = "n = 0\nfor i in range(20000000):\n    n += i\nreturn n"
        with pytest.raises(ActionError, match="timed out"):
            await executor.execute({"type": "script", "code": code}, {}, timeout=0.01)

    async def test_runaway_scripts_are_killed(self, executor):
        spin = {"type": "script", "code": "while True:\n    pass"}
        for _ in range(8):
            with pytest.raises(ActionError, match="timed out"):
                await executor.execute(spin, {}, timeout=0.2)

        out = await executor.execute({"type": "script", "code": "return 1"}, {}, timeout=10)
        assert json.loads(out) == 1

    async def test_non_json_context_values_are_stringified(self, executor):
        from datetime import date

        out = await executor.execute({"type": "script", "code": "return context['day']"}, {"day": date(2026, 1, 2)})
        assert json.loads(out) == "2026-01-02"


@pytest.mark.unit
class TestScriptRunner:

    def test_result_and_console_lines(self):
        from tasks.implementations.script_runner import run

        reply = run({"code": "console.log('hi')\nreturn [1, 2]", "context": {}})
        assert reply == {"ok": True, "result": "[1, 2]", "lines": ["hi"]}

    def test_syntax_error_reports_line(self):
        from tasks.implementations.script_runner import run

        reply = run({"code": "x = 1\ny = = 2", "context": {}})
        assert not reply["ok"]
        assert reply["error"].endswith("(line 2)")
