from __future__ import annotations

from typing import Any
from typing import Optional as NotRequired

from pydantic import BaseModel as TypedDict
from pydantic import ConfigDict


# Data models
class TurboToggle(TypedDict):
    turboMode: bool


class RangePush(TypedDict):
    startNonce: int
    endNonce: int


class TaskDefinition(TypedDict):
    model_config = ConfigDict(extra="allow")

    index: int | str
    previousHash: int | str
    payload: NotRequired[Any] = None
    mainFactor: int | str
    shareFactor: int | str
    workerId: NotRequired[str] = None


class MessageAcceptedResponse(TypedDict):
    accepted: bool
    kind: NotRequired[str] = None
