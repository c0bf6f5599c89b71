"""
Test doubles and builders shared across the proxy tests.

The upstream is replaced by an ``httpx.MockTransport`` wrapping a
RecordingUpstream, so every test can assert exactly what (if anything)
reached the upstream.
"""

import inspect
from typing import Callable, Iterable, List, Optional, Tuple

import httpx

from authproxy.config import Settings

TEST_SECRET = "s3cret-token-for-tests"
TEST_UPSTREAM = "http://upstream.test:8080"


def make_settings(**overrides) -> Settings:
    """Build Settings without reading .env, with test defaults."""
    values = {
        "AUTH_TOKEN": TEST_SECRET,
        "UPSTREAM_URL": TEST_UPSTREAM,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def upstream_response(
    status_code: int = 200,
    body: bytes = b"ok",
    headers: Optional[Iterable[Tuple[str, str]]] = None,
) -> httpx.Response:
    """An upstream response whose body is still a stream, like a real one."""
    return httpx.Response(status_code, headers=list(headers or []), stream=httpx.ByteStream(body))


class RecordingUpstream:
    """
    Upstream test double.

    Records every request that reaches it (with its body already read by
    MockTransport) and answers with ``responder(request)``.
    """

    def __init__(self, responder: Optional[Callable] = None):
        self.requests: List[httpx.Request] = []
        self.responder = responder or (lambda request: upstream_response())

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        result = self.responder(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    @property
    def call_count(self) -> int:
        return len(self.requests)

    @property
    def last_request(self) -> httpx.Request:
        assert self.requests, "upstream was never called"
        return self.requests[-1]
