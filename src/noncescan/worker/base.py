from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import sys
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack, asynccontextmanager
from typing import TYPE_CHECKING, Any

import requests
from fastapi import Body, FastAPI, Request

from ..coordinator.model import (
    MessageAcceptedResponse,
    RangePush,
    TaskDefinition,
    TurboToggle,
)
from .executor import Executor
from .link import HttpLink
from .scoring import DigestScorer
from .throttle import ThrottleGovernor
from .types import HealthCheckResponse
from .utils import catch_signal, on_main_thread

if TYPE_CHECKING:
    from types import FrameType

    from .link import CoordinatorLink
    from .scoring import ScoringBackend


# Configure logging
logger = logging.getLogger("worker")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() == "true"


# Configuration from environment variables
@dataclasses.dataclass
class Arguments:  # pylint: disable=too-many-instance-attributes
    COORDINATOR_URL: str = os.environ.get("COORDINATOR_URL", "http://coordinator:8000")
    WORKER_ID: str = os.environ.get("WORKER_ID", "auto")
    MEASURE_INTERVAL: int = int(os.environ.get("MEASURE_INTERVAL", 2000))  # ms
    COOLDOWN_TIME: int = int(os.environ.get("COOLDOWN_TIME", 1000))  # ms
    HASH_THRESHOLD: float = float(os.environ.get("HASH_THRESHOLD", 0.7))
    TURBO_MODE: bool = _env_flag("TURBO_MODE")
    POOL_SIZE: int = int(os.environ.get("POOL_SIZE", 1))
    MAX_RETRY: int = int(os.environ.get("MAX_RETRY", 3))
    REQUEST_TIMEOUT: float = float(os.environ.get("REQUEST_TIMEOUT", 60))

    def __post_init__(self):
        # Loop through the fields
        for field in dataclasses.fields(self):
            # If there is a default and the value of the field is none we can assign a value
            if (
                not isinstance(
                    field.default,
                    dataclasses._MISSING_TYPE,  # pylint: disable=protected-access
                )
                and getattr(self, field.name) is None
            ):
                setattr(self, field.name, field.default)

        # Generate a unique worker ID if not provided
        if self.WORKER_ID == "auto":
            self.WORKER_ID = f"worker-{uuid.uuid4()}"


class ExecutorWorker:  # pylint: disable=too-many-instance-attributes
    """Host process for a single Executor."""

    def __init__(
        self,
        args: Arguments | None = None,
        scorer: ScoringBackend | None = None,
        link: CoordinatorLink | None = None,
    ):
        if args is None:
            args = Arguments()
        self.args = args

        logger.info("Worker ID: %s", self.args.WORKER_ID)

        self.start_time: float = time.time()
        self.running: bool = False

        self.scorer: ScoringBackend = scorer if scorer is not None else DigestScorer()
        self.link: CoordinatorLink | None = link

        self._stack: ExitStack | None = None
        self.session: requests.Session
        self.pool: ThreadPoolExecutor | None = None
        self.executor: Executor

    def __enter__(self):
        import signal

        self.start_time = time.time()
        self.running = True

        self._stack = ExitStack()
        if on_main_thread():
            self._stack.enter_context(catch_signal(signal.SIGINT, self.handle_shutdown))
            self._stack.enter_context(catch_signal(signal.SIGTERM, self.handle_shutdown))
        # Initialize Request session
        self.session = self._stack.enter_context(requests.Session())
        self.session.mount(
            "http://",
            requests.adapters.HTTPAdapter(max_retries=self.args.MAX_RETRY),
        )
        # Scoring is offloaded to a thread pool unless disabled
        if self.args.POOL_SIZE > 0:
            self.pool = self._stack.enter_context(
                ThreadPoolExecutor(max_workers=self.args.POOL_SIZE)
            )

        self.executor = Executor(
            link=self.link or HttpLink(
                self.session,
                self.args.COORDINATOR_URL,
                self.args.WORKER_ID,
                timeout=self.args.REQUEST_TIMEOUT,
            ),
            scorer=self.scorer,
            governor=ThrottleGovernor(
                measure_interval=self.args.MEASURE_INTERVAL,
                cooldown_time=self.args.COOLDOWN_TIME,
                hash_threshold=self.args.HASH_THRESHOLD,
                turbo=self.args.TURBO_MODE,
            ),
            pool=self.pool,
        )
        if isinstance(self.executor.link, HttpLink) and self.executor.link.deliver is None:
            self.executor.link.deliver = self.executor.deliver

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        res = None
        if self._stack is not None:
            res = self._stack.__exit__(exc_type, exc_val, exc_tb)
            self._stack = None
        self.handle_shutdown()
        return res

    def deliver(self, message: Any) -> MessageAcceptedResponse:
        kind = self.executor.deliver(message)
        return MessageAcceptedResponse(accepted=kind is not None, kind=kind)

    def health_check(self) -> HealthCheckResponse:
        """Report the health status of the worker."""
        executor = self.executor
        return HealthCheckResponse(
            status="idle" if executor.idle or executor.task is None else "scanning",
            worker_id=self.args.WORKER_ID,
            task_index=executor.task.index if executor.task is not None else None,
            queued_ranges=len(executor.ranges),
            turbo_enabled=executor.governor.turbo,
            uptime=time.time() - self.start_time,
        )

    def handle_shutdown(
        self,
        sig: int = 0,
        frame: FrameType | None = None,  # pylint: disable=unused-argument
    ):
        """Handle graceful shutdown."""
        if self.running:
            logger.info("Shutdown signal received, stopping worker...")
            self.running = False
            if self._stack:
                self._stack.close()
                self._stack = None

        if sig != 0:
            sys.exit(0)

    async def loop(self):
        """Main worker loop."""
        await self.executor.run()

    def run(self):
        """Run the worker without FastAPI."""

        with self:
            asyncio.run(self.loop())

    @classmethod
    def get_fastapi(cls, *args, **kwargs) -> FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI):  # pylint: disable=unused-argument
            with cls(*args, **kwargs) as worker:
                task = asyncio.create_task(worker.loop())
                yield {"worker": worker}
                task.cancel()

        app = FastAPI(lifespan=lifespan)

        @app.get("/health")
        async def health_check(request: Request) -> HealthCheckResponse:
            return request.state.worker.health_check()

        @app.post("/messages")
        async def post_message(
            request: Request, message: Any = Body(...)
        ) -> MessageAcceptedResponse:
            return request.state.worker.deliver(message)

        @app.post("/turbo")
        async def set_turbo(request: Request, toggle: TurboToggle) -> MessageAcceptedResponse:
            return request.state.worker.deliver(toggle.model_dump())

        @app.post("/ranges")
        async def push_range(request: Request, nonce_range: RangePush) -> MessageAcceptedResponse:
            return request.state.worker.deliver(nonce_range.model_dump())

        @app.post("/task")
        async def push_task(request: Request, task: TaskDefinition) -> MessageAcceptedResponse:
            return request.state.worker.deliver(task.model_dump(exclude_none=True))

        return app
