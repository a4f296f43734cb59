from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
from collections import deque
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..coordinator.types import (
    ErrorReport,
    ResultReport,
    message_is_range,
    message_is_turbo,
)
from .scoring import OutcomeState, ScoringUnavailableError, classify
from .task import EMPTY_RANGE, NonceRange, Task
from .throttle import ThrottleGovernor
from .utils import format_error

if TYPE_CHECKING:
    from concurrent.futures import Executor as PoolExecutor
    from typing import Callable, Literal

    from .link import CoordinatorLink
    from .scoring import Outcome, ScoringBackend


logger = logging.getLogger("worker")


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class ScanStatus(enum.Enum):
    EXHAUSTED = "exhausted"
    FOUND = "found"
    PREEMPTED = "preempted"


class Executor:  # pylint: disable=too-many-instance-attributes
    """Scan nonce ranges for a Task and report Valid and Share outcomes.

    All inbound messages go through `deliver`, which only updates state (the
    task, the sticky `updated` flag, the range queue, turbo). The `run` loop
    is the only code that acts on that state.
    """

    def __init__(
        self,
        link: CoordinatorLink,
        scorer: ScoringBackend,
        governor: ThrottleGovernor | None = None,
        pool: PoolExecutor | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.link = link
        self.scorer = scorer
        self.governor = governor if governor is not None else ThrottleGovernor()
        self.pool = pool
        self.clock = clock if clock is not None else wall_clock_ms

        self.task: Task | None = None
        self.updated: bool = False
        self.ranges: deque[NonceRange] = deque()
        self.active: NonceRange = EMPTY_RANGE
        self.idle: bool = False

        self._waiter: asyncio.Future[NonceRange] | None = None
        self._changed = asyncio.Event()

    # Inbound messages

    def deliver(
        self, message: str | bytes | Mapping[str, Any]
    ) -> Literal["turbo", "range", "task"] | None:
        """Route an inbound message into loop state. Returns the route taken."""
        data: Any = message
        if isinstance(message, (str, bytes)):
            try:
                data = json.loads(message)
            except ValueError:
                logger.warning("Ignoring undecodable message: %.80r", message)
                return None
        if not isinstance(data, Mapping):
            logger.warning("Ignoring message of type %s", type(data).__name__)
            return None

        if message_is_turbo(data):
            turbo = data["turboMode"]
            if not isinstance(turbo, bool):
                logger.warning("Ignoring malformed turbo toggle: %r", turbo)
                return None
            self.governor.set_turbo(turbo)
            return "turbo"

        if message_is_range(data):
            try:
                nonce_range = NonceRange.from_message(data)
            except ValueError as e:
                logger.warning("Ignoring malformed range: %s", e)
                return None
            self.push_range(nonce_range)
            return "range"

        try:
            task = Task.from_message(data)
        except ValueError as e:
            logger.warning("Ignoring malformed task definition: %s", e)
            return None
        self.replace_task(task)
        return "task"

    def push_range(self, nonce_range: NonceRange):
        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            logger.debug("Received requested range [%d, %d)", nonce_range.start, nonce_range.end)
            waiter.set_result(nonce_range)
            return
        logger.debug("Queued range [%d, %d)", nonce_range.start, nonce_range.end)
        self.ranges.append(nonce_range)

    def replace_task(self, task: Task):
        if self.task is None:
            logger.info("Received task %s", task.index)
        else:
            logger.info("Task replaced: %s -> %s", self.task.index, task.index)
            self.updated = True
        self.task = task
        self._changed.set()

    # Loop state

    def reset(self):
        """Drop all work belonging to the replaced task."""
        logger.info("Task updated, discarding %d queued ranges", len(self.ranges))
        self.ranges.clear()
        self.active = EMPTY_RANGE
        self.updated = False
        self.idle = False

    async def wait_for_task(self):
        while self.task is None:
            self._changed.clear()
            await self._changed.wait()

    async def wait_for_update(self):
        """Stay idle until a task replacement arrives."""
        self.idle = True
        while not self.updated:
            self._changed.clear()
            await self._changed.wait()

    async def next_range(self) -> NonceRange:
        """Dequeue the next range, requesting one when the queue is empty."""
        if self.ranges:
            return self.ranges.popleft()
        self._waiter = asyncio.get_running_loop().create_future()
        waiter = self._waiter
        try:
            await self.link.request_range()
            nonce_range = await waiter
            # Time spent waiting for work is not scanning time
            self.governor.resume()
            return nonce_range
        finally:
            if self._waiter is waiter:
                self._waiter = None

    # Scoring

    async def _digest(self, task: Task, nonce: int, timestamp: int) -> str | None:
        try:
            if self.pool is not None:
                loop = asyncio.get_running_loop()
                digest = await loop.run_in_executor(
                    self.pool, self.scorer.digest, task, nonce, timestamp
                )
            else:
                digest = self.scorer.digest(task, nonce, timestamp)
                # Let inbound messages land between nonces
                await asyncio.sleep(0)
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise ScoringUnavailableError(f"Scoring failed for nonce {nonce}") from e
        if digest is None:
            raise ScoringUnavailableError("Scoring backend is unavailable")
        return digest

    async def score(self, task: Task, nonce: int) -> Outcome:
        timestamp = self.clock()
        digest = await self._digest(task, nonce, timestamp)
        return classify(digest, task.main_factor, task.share_factor, nonce, timestamp)

    async def report(self, task: Task, outcome: Outcome) -> bool:
        logger.info("Found %s at nonce %d", outcome.state.value, outcome.nonce)
        return await self.link.report(
            ResultReport(
                state=outcome.state.value,  # type: ignore[typeddict-item]
                score=outcome.score,  # type: ignore[typeddict-item]
                payload=task.payload,
                nonce=outcome.nonce,
                timestamp=outcome.timestamp,
                workerId=task.worker_id,
            )
        )

    async def scan(self, task: Task, nonce_range: NonceRange) -> ScanStatus:
        """Score every nonce of the range in ascending order."""
        for nonce in nonce_range:
            if self.updated:
                return ScanStatus.PREEMPTED
            await self.governor.step()
            if self.updated:
                return ScanStatus.PREEMPTED

            outcome = await self.score(task, nonce)
            if self.updated:
                logger.debug("Discarding nonce %d scored against replaced task", nonce)
                return ScanStatus.PREEMPTED

            if not outcome.reportable:
                continue
            await self.report(task, outcome)
            if outcome.state is OutcomeState.VALID:
                return ScanStatus.FOUND
        return ScanStatus.EXHAUSTED

    async def report_error(self, task: Task, exc: Exception) -> bool:
        return await self.link.report(
            ErrorReport(state="error", error=format_error(exc), workerId=task.worker_id)
        )

    # Main loop

    async def run(self):
        """Process ranges until the hosting task is cancelled."""
        await self.wait_for_task()
        while True:
            if self.updated:
                self.reset()

            if self.active.empty:
                self.active = await self.next_range()
                # A replacement may have arrived while waiting
                continue

            task: Task = self.task  # type: ignore[assignment]
            nonce_range = self.active
            logger.debug("Scanning [%d, %d) for task %s", nonce_range.start, nonce_range.end, task.index)
            try:
                status = await self.scan(task, nonce_range)
            except ScoringUnavailableError as exc:
                logger.exception(exc)
                await self.report_error(task, exc)
                self.active = EMPTY_RANGE
                await self.wait_for_update()
                continue

            self.active = EMPTY_RANGE
            if status is ScanStatus.FOUND:
                await self.wait_for_update()
