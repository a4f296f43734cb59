from __future__ import annotations

import asyncio
import contextlib

import pytest

from noncescan.worker.executor import Executor
from noncescan.worker.link import QueueLink
from noncescan.worker.scoring import ScoringBackend
from noncescan.worker.throttle import ThrottleGovernor


def make_task_message(
    index: int = 1,
    main_factor: int | str = 10,
    share_factor: int | str = 1000,
    **overrides,
) -> dict:
    message = {
        "index": index,
        "previousHash": "00ab",
        "payload": "block-data",
        "mainFactor": main_factor,
        "shareFactor": share_factor,
        "workerId": "worker-test",
    }
    message.update(overrides)
    return message


class StubScorer(ScoringBackend):
    """Returns preset values per nonce and records every nonce scored."""

    def __init__(self, values: dict[int, int] | list[int] | None = None, default: int = 2**256 - 1):
        if isinstance(values, list):
            values = dict(enumerate(values))
        self.values = values or {}
        self.default = default
        self.calls: list[tuple[object, int]] = []
        self.hooks: dict[int, object] = {}

    def digest(self, task, nonce, timestamp):
        self.calls.append((task.index, nonce))
        if (hook := self.hooks.get(nonce)) is not None:
            hook()
        return format(self.values.get(nonce, self.default), "064x")

    @property
    def nonces(self) -> list[int]:
        return [nonce for _, nonce in self.calls]


@pytest.fixture
def link() -> QueueLink:
    return QueueLink()


@pytest.fixture
def scorer() -> StubScorer:
    return StubScorer()


@pytest.fixture
def executor(link, scorer) -> Executor:
    return Executor(link=link, scorer=scorer, governor=ThrottleGovernor(turbo=True))


async def settle(rounds: int = 50):
    """Give the executor loop a chance to run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@contextlib.asynccontextmanager
async def running(executor: Executor):
    runner = asyncio.create_task(executor.run())
    try:
        yield runner
    finally:
        runner.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await runner


async def next_message(link: QueueLink, timeout: float = 1.0) -> str:
    return await asyncio.wait_for(link.get(), timeout=timeout)
