"""Tests for noncescan.worker.link."""

from __future__ import annotations

import asyncio
import json
import threading
import time

import pytest
import requests

from noncescan.coordinator.types import REQUEST_RANGE, ErrorReport, ResultReport
from noncescan.worker.link import HttpLink, QueueLink


class FakeResponse:
    def __init__(self, status_code: int = 200, body: object = None):
        self.status_code = status_code
        self._body = body
        self.content = b"" if body is None else json.dumps(body).encode()

    def json(self):
        return self._body


class FakeSession:
    """Replays canned responses (or raises canned exceptions) for POST calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list[tuple[str, object]] = []

    def post(self, url, json=None, timeout=None):  # pylint: disable=redefined-outer-name
        self.calls.append((url, json))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _result() -> ResultReport:
    return ResultReport(
        state="share",
        score="00ff",
        payload="block-data",
        nonce=3,
        timestamp=1000,
        workerId="worker-test",
    )


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr("noncescan.worker.link.random.uniform", lambda a, b: 0)


class TestQueueLink:
    @pytest.mark.asyncio
    async def test_request_range_posts_sentinel(self):
        link = QueueLink()
        assert await link.request_range() is True
        assert await link.get() == REQUEST_RANGE
        assert link.sent == [REQUEST_RANGE]

    @pytest.mark.asyncio
    async def test_report_posts_json(self):
        link = QueueLink()
        await link.report(_result())
        assert json.loads(await link.get()) == _result()


class TestHttpLinkRequestRange:
    @pytest.mark.asyncio
    async def test_accepted_without_body(self):
        session = FakeSession(FakeResponse(204))
        delivered = []
        link = HttpLink(session, "http://coord", "w1", deliver=delivered.append)
        assert await link.request_range() is True
        assert session.calls == [("http://coord/workers/w1/ranges", None)]
        assert delivered == []

    @pytest.mark.asyncio
    async def test_in_band_range_is_delivered(self):
        session = FakeSession(FakeResponse(200, {"startNonce": 0, "endNonce": 100}))
        delivered = []
        link = HttpLink(session, "http://coord", "w1", deliver=delivered.append)
        await link.request_range()
        assert delivered == [{"startNonce": 0, "endNonce": 100}]

    @pytest.mark.asyncio
    async def test_body_without_range_is_not_delivered(self):
        session = FakeSession(FakeResponse(200, {"status": "pending"}))
        delivered = []
        link = HttpLink(session, "http://coord", "w1", deliver=delivered.append)
        await link.request_range()
        assert delivered == []

    @pytest.mark.asyncio
    async def test_retries_until_accepted(self):
        session = FakeSession(
            requests.ConnectionError("refused"),
            FakeResponse(503),
            FakeResponse(202),
        )
        link = HttpLink(session, "http://coord", "w1")
        assert await link.request_range() is True
        assert len(session.calls) == 3


class TestHttpLinkReport:
    @pytest.mark.asyncio
    async def test_report_posts_result(self):
        session = FakeSession(FakeResponse(200, {"acknowledged": True}))
        link = HttpLink(session, "http://coord", "w1")
        assert await link.report(_result()) is True
        assert session.calls == [("http://coord/workers/w1/results", _result())]

    @pytest.mark.asyncio
    async def test_report_failure_status(self):
        session = FakeSession(FakeResponse(500))
        link = HttpLink(session, "http://coord", "w1")
        assert await link.report(_result()) is False

    @pytest.mark.asyncio
    async def test_report_error_is_logged_not_raised(self, caplog):
        session = FakeSession(requests.ConnectionError("refused"))
        link = HttpLink(session, "http://coord", "w1")
        report = ErrorReport(state="error", error="boom", workerId="w1")
        assert await link.report(report) is False
        assert "Error reporting error result" in caplog.text


class SlowSession(FakeSession):
    def post(self, url, json=None, timeout=None):  # pylint: disable=redefined-outer-name
        time.sleep(0.3)
        return super().post(url, json=json, timeout=timeout)


async def _max_tick_gap(coro) -> float:
    ticks: list[float] = []

    async def ticker():
        while True:
            ticks.append(time.monotonic())
            await asyncio.sleep(0.01)

    tick_task = asyncio.create_task(ticker())
    await asyncio.sleep(0)
    try:
        await coro
    finally:
        tick_task.cancel()
    assert len(ticks) > 5
    return max(b - a for a, b in zip(ticks, ticks[1:]))


class TestHttpLinkOffload:
    @pytest.mark.asyncio
    async def test_report_does_not_block_loop(self):
        session = SlowSession(FakeResponse(200))
        link = HttpLink(session, "http://coord", "w1")
        assert await _max_tick_gap(link.report(_result())) < 0.2
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_range_request_does_not_block_loop(self):
        session = SlowSession(FakeResponse(204))
        link = HttpLink(session, "http://coord", "w1")
        assert await _max_tick_gap(link.request_range()) < 0.2

    @pytest.mark.asyncio
    async def test_in_band_range_delivered_on_loop_thread(self):
        session = FakeSession(FakeResponse(200, {"startNonce": 0, "endNonce": 5}))
        threads = []
        link = HttpLink(
            session, "http://coord", "w1", deliver=lambda res: threads.append(threading.get_ident())
        )
        await link.request_range()
        assert threads == [threading.get_ident()]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [200, 201, 202, 204])
    async def test_report_accepts_success_statuses(self, status):
        link = HttpLink(FakeSession(FakeResponse(status)), "http://coord", "w1")
        assert await link.report(_result()) is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [201, 202])
    async def test_range_request_accepts_same_statuses(self, status):
        link = HttpLink(FakeSession(FakeResponse(status)), "http://coord", "w1")
        assert await link.request_range() is True
