from __future__ import annotations

from typing_extensions import TypedDict


class HealthCheckResponse(TypedDict):
    status: str
    worker_id: str
    task_index: int | str | None
    queued_ranges: int
    turbo_enabled: bool
    uptime: float
