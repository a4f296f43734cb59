from __future__ import annotations

import abc
import asyncio
import json
import logging
import random
from typing import TYPE_CHECKING

from ..coordinator.types import REQUEST_RANGE, message_is_range

if TYPE_CHECKING:
    from concurrent.futures import Executor as PoolExecutor
    from typing import Any, Callable, Mapping, TypeVar

    import requests

    from ..coordinator.types import RangeRequestResponse, Report

    T = TypeVar("T")


logger = logging.getLogger("worker")

ACCEPTED_STATUS = (200, 201, 202, 204)


class CoordinatorLink(abc.ABC):
    """Outbound channel from an Executor to its Coordinator."""

    @abc.abstractmethod
    async def request_range(self) -> bool:
        """Ask the coordinator for a nonce range."""
        raise NotImplementedError

    @abc.abstractmethod
    async def report(self, report: Report) -> bool:
        """Send a result or error report to the coordinator."""
        raise NotImplementedError


class QueueLink(CoordinatorLink):
    """In-process link that posts serialized messages onto an asyncio queue."""

    def __init__(self):
        self.outbox: asyncio.Queue[str] = asyncio.Queue()
        self.sent: list[str] = []

    def _post(self, message: str):
        self.sent.append(message)
        self.outbox.put_nowait(message)

    async def request_range(self) -> bool:
        self._post(REQUEST_RANGE)
        return True

    async def report(self, report: Report) -> bool:
        self._post(json.dumps(report))
        return True

    async def get(self) -> str:
        return await self.outbox.get()


class HttpLink(CoordinatorLink):
    """Link that talks to the coordinator's HTTP API.

    Blocking `requests` calls run on a thread pool so the event loop keeps
    merging inbound messages while a request is in flight.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        session: requests.Session,
        coordinator_url: str,
        worker_id: str,
        deliver: Callable[[Mapping[str, Any]], object] | None = None,
        timeout: float = 60.0,
        max_backoff: float = 64,
        pool: PoolExecutor | None = None,
    ):
        self.session = session
        self.coordinator_url = coordinator_url
        self.worker_id = worker_id
        self.deliver = deliver
        self.timeout = timeout
        self.max_backoff = max_backoff
        self.pool = pool

    async def _offload(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.pool, func, *args)

    def _send_range_request(self) -> tuple[bool, RangeRequestResponse | None]:
        try:
            response = self.session.post(
                f"{self.coordinator_url}/workers/{self.worker_id}/ranges",
                timeout=self.timeout,
            )
            if response.status_code not in ACCEPTED_STATUS:
                logger.warning("Failed to request range: %d", response.status_code)
                return False, None
            logger.debug("Range requested")
            if response.status_code == 200 and response.content:
                res: RangeRequestResponse = response.json()
                if isinstance(res, dict) and message_is_range(res):
                    return True, res
            return True, None
        except Exception as e:  # pylint: disable=broad-exception-caught
            exc = RuntimeError(f"Error requesting range: {str(e)}")
            exc.__cause__ = e
            logger.exception(exc)
            return False, None

    async def request_range(self) -> bool:
        wait_duration = 1
        while True:
            accepted, res = await self._offload(self._send_range_request)
            if accepted:
                break
            # Back off to avoid hammering the coordinator
            await asyncio.sleep(0.5 * random.uniform(0, wait_duration - 1))
            wait_duration = min(wait_duration * 2, self.max_backoff)
        # Delivered from the loop thread, never from the pool
        if res is not None and self.deliver is not None:
            self.deliver(res)
        return True

    def _send_report(self, report: Report) -> bool:
        try:
            response = self.session.post(
                f"{self.coordinator_url}/workers/{self.worker_id}/results",
                json=report,
                timeout=self.timeout,
            )
            if response.status_code not in ACCEPTED_STATUS:
                logger.warning(
                    "Failed to report %s result: %d",
                    report["state"],
                    response.status_code,
                )
                return False
            logger.info("Reported %s result", report["state"])
            return True
        except Exception as e:  # pylint: disable=broad-exception-caught
            exc = RuntimeError(f"Error reporting {report['state']} result: {str(e)}")
            exc.__cause__ = e
            logger.exception(exc)
            return False

    async def report(self, report: Report) -> bool:
        return await self._offload(self._send_report, report)
