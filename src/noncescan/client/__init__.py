from __future__ import annotations

from typing import TYPE_CHECKING

import requests

from ..coordinator.types import RangePush, TurboToggle

if TYPE_CHECKING:
    from typing import Any, Mapping

    from ..coordinator.types import TaskMessage


def _post(
    addr: str,
    path: str,
    payload: Mapping[str, Any],
    session: requests.Session | None = None,
) -> bool:
    if session is None:
        session = requests.Session()
    with session:
        response = session.post(f"{addr}{path}", json=payload, timeout=60.0)
        if response.status_code != 200:
            response.raise_for_status()
            return False
        return bool(response.json().get("accepted", False))


def set_turbo(
    addr: str,
    enabled: bool,
    session: requests.Session | None = None,
) -> bool:
    return _post(addr, "/turbo", TurboToggle(turboMode=enabled), session=session)


def push_range(
    addr: str,
    start: int,
    end: int,
    session: requests.Session | None = None,
) -> bool:
    if start > end:
        raise ValueError(f"Invalid nonce range [{start}, {end})")
    return _post(
        addr, "/ranges", RangePush(startNonce=start, endNonce=end), session=session
    )


def push_task(
    addr: str,
    task: TaskMessage,
    session: requests.Session | None = None,
) -> bool:
    return _post(addr, "/task", task, session=session)
