"""Shared test configuration for blockflow tests.

Configures the test environment:
- Test keys for `$keys.*` resolution (environment-backed)
- HTTP echo server for the sandbox fetch capability
- Run context, recorder and interpreter fixtures
"""

import json
from collections.abc import Iterator

import pytest
from pytest_httpserver import HTTPServer
from test_keys import setup_test_keys as _setup_keys
from test_keys import teardown_test_keys as _teardown_keys
from test_utils import Recorder, make_dispatcher
from werkzeug.wrappers import Request, Response

from blockflow.engine import (
    Interpreter,
    InterpreterConfig,
    LoopCursor,
    RunContext,
    RunMetadata,
)
from blockflow.engine.sandbox import SandboxPolicy


@pytest.fixture(scope="session", autouse=True)
def setup_test_keys() -> Iterator[None]:
    """Install TEST_KEYS as BLOCKFLOW_KEY_* environment variables for the session."""
    _setup_keys()
    yield
    _teardown_keys()


@pytest.fixture
def context() -> RunContext:
    """Run context populated in every section."""
    return RunContext(
        state={
            "count": 5,
            "name": "Alice",
            "user": {"email": "alice@example.com", "tags": ["admin", "ops"]},
            "items": [{"sku": "A1", "qty": 2}, {"sku": "B2", "qty": 0}],
            "flag": False,
        },
        cache={"token": "cached-token", "page": {"size": 50}},
        artifacts=[{"id": "art_1", "kind": "image"}],
        secrets={"api_key": "sk-live-abcdef123456"},
        event={"type": "webhook", "payload": {"order_id": 42}},
        paths={"temp_dir": "/tmp/blockflow"},
        loops={"rows": LoopCursor(index=3, item={"id": "row_3"})},
        run=RunMetadata(id="run_test", workflow_id="wf_1", version_id="wf_1:v2"),
    )


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def interpreter(recorder: Recorder) -> Interpreter:
    """Interpreter dispatching `record` and `fail` blocks, small step budget."""
    return Interpreter(
        dispatcher=make_dispatcher(recorder),
        config=InterpreterConfig(max_steps=50),
    )


@pytest.fixture
def sandbox_policy() -> SandboxPolicy:
    """Sandbox policy with short timeouts for tests."""
    return SandboxPolicy(default_timeout_ms=10_000, max_timeout_ms=15_000, max_sleep_s=1.0)


@pytest.fixture
def echo_server(httpserver: HTTPServer) -> HTTPServer:
    """
    Local HTTP server for fetch tests.

    Endpoints:
    - GET /get: Echoes request args and headers
    - POST /post: Echoes the JSON body
    - GET /redirect: 302 to /get
    - GET /status/404: Plain 404
    """

    def get_handler(request: Request) -> Response:
        data = {
            "args": dict(request.args),
            "headers": {k: v for k, v in request.headers},
            "url": str(request.url),
        }
        return Response(json.dumps(data), content_type="application/json")

    def post_handler(request: Request) -> Response:
        data = {"json": request.get_json(silent=True), "method": request.method}
        return Response(json.dumps(data), content_type="application/json")

    httpserver.expect_request("/get").respond_with_handler(get_handler)
    httpserver.expect_request("/post", method="POST").respond_with_handler(post_handler)
    httpserver.expect_request("/redirect").respond_with_response(
        Response(status=302, headers={"Location": httpserver.url_for("/get")})
    )
    httpserver.expect_request("/status/404").respond_with_data("missing", status=404)
    return httpserver
