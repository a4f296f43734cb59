from __future__ import annotations

from typing import TYPE_CHECKING, Any

from typing_extensions import TypedDict

if TYPE_CHECKING:
    from typing import Literal, Mapping, NotRequired

    from typing_extensions import TypeIs


# Range-Request sentinel (Executor -> Coordinator)
REQUEST_RANGE = "requestRange"


# Data models (Coordinator -> Executor)
class TurboToggle(TypedDict):
    turboMode: bool


class RangePush(TypedDict):
    startNonce: int
    endNonce: int


class TaskMessage(TypedDict):
    index: int | str
    previousHash: str
    payload: Any
    mainFactor: int | str
    shareFactor: int | str
    workerId: str


def message_is_turbo(message: Mapping[str, Any]) -> TypeIs[TurboToggle]:
    return "turboMode" in message


def message_is_range(message: Mapping[str, Any]) -> TypeIs[RangePush]:
    return "startNonce" in message and "endNonce" in message


# Data models (Executor -> Coordinator)
class ResultReport(TypedDict):
    state: Literal["valid", "share"]
    score: str
    payload: Any
    nonce: int
    timestamp: int
    workerId: str


class ErrorReport(TypedDict):
    state: Literal["error"]
    error: str
    workerId: NotRequired[str]


Report = ResultReport | ErrorReport


# Coordinator responses
class RangeRequestResponse(TypedDict):
    startNonce: NotRequired[int]
    endNonce: NotRequired[int]
