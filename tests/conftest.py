import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from antigravity_router.accounts import Account
from antigravity_router.providers.antigravity_transport import TransportResponse
from antigravity_router.utils import time_utils


class FakeClock:
    def __init__(self, start: float = 1_700_000_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    fake = FakeClock()
    monkeypatch.setattr(time_utils, "now_ms", fake)
    return fake


@pytest.fixture
def make_account():
    def factory(email: str = "a@example.com", **kwargs: Any) -> Account:
        kwargs.setdefault("refresh_token", f"refresh-{email}")
        kwargs.setdefault("project_id", f"project-{email.split('@')[0]}")
        return Account(email=email, **kwargs)

    return factory


class FakeStreamResponse:
    def __init__(self, status_code: int, chunks: Sequence[Union[str, Exception]], headers=None) -> None:
        self.status_code = status_code
        self.headers = headers or {}
        self._chunks = list(chunks)

    async def read_text(self) -> str:
        return "".join(c for c in self._chunks if isinstance(c, str))

    async def aiter_text(self):
        for chunk in self._chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


class FakeTransport:
    """
    Scripted transport. Each queued item is a TransportResponse, a
    FakeStreamResponse or an exception, consumed in call order.
    """

    def __init__(self, responses: Optional[List[Any]] = None) -> None:
        self.responses: List[Any] = list(responses or [])
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    def _next(self, method: str, url: str, headers: Dict[str, str], body: Any) -> Any:
        self.calls.append({"method": method, "url": url, "headers": headers, "body": body})
        if not self.responses:
            raise AssertionError(f"Unexpected call to {url}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def request(self, method, url, headers, body=None) -> TransportResponse:
        item = self._next(method, url, headers, body)
        if isinstance(item, FakeStreamResponse):
            return TransportResponse(item.status_code, item.headers, await item.read_text())
        return item

    @asynccontextmanager
    async def stream(self, method, url, headers, body=None):
        item = self._next(method, url, headers, body)
        if isinstance(item, TransportResponse):
            item = FakeStreamResponse(item.status_code, [item.text], item.headers)
        yield item

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


class RecordingSleep:
    """Replaces asyncio.sleep; advances the fake clock when one is given."""

    def __init__(self, clock: Optional[FakeClock] = None) -> None:
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds * 1000)


@pytest.fixture
def sleeper(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)


def json_response(data: Any, status_code: int = 200, headers=None) -> TransportResponse:
    import json

    return TransportResponse(status_code, headers or {}, json.dumps(data))


def sse_body(*chunks: Dict[str, Any]) -> str:
    import json

    return "".join(f"data: {json.dumps(chunk)}\n\n" for chunk in chunks)


def text_chunk(text: str, finish_reason: Optional[str] = None) -> Dict[str, Any]:
    candidate: Dict[str, Any] = {"content": {"role": "model", "parts": [{"text": text}]}}
    if finish_reason:
        candidate["finishReason"] = finish_reason
    return {"response": {"candidates": [candidate]}}
