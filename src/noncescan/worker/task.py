from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from typing import Mapping


def _parse_factor(value: Any, name: str) -> int:
    """Parse a threshold that may arrive as an integer or a numeric string."""
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            if text.lower().startswith("0x"):
                result = int(text[2:], 16)
            else:
                result = int(text, 10)
        except ValueError as e:
            raise ValueError(f"{name} is not a number: {value!r}") from e
    else:
        raise ValueError(f"{name} must be an integer, got {type(value).__name__}")
    if result < 0:
        raise ValueError(f"{name} must be non-negative, got {result}")
    return result


def _parse_nonce(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValueError(f"{name} must be an integer, got {value!r}")


@dataclasses.dataclass(frozen=True)
class Task:
    """Work definition the scan runs against until it is replaced."""

    index: int | str
    previous_hash: str
    payload: Any
    main_factor: int
    share_factor: int
    worker_id: str

    @classmethod
    def from_message(cls, message: Mapping[str, Any]) -> Task:
        """Build a Task from a wire message, raising ValueError when malformed."""
        # `data` and `minerId` are accepted from older coordinators
        payload_key = "payload" if "payload" in message else "data"
        worker_key = "workerId" if "workerId" in message else "minerId"
        required = {
            "index": "index",
            "previousHash": "previousHash",
            payload_key: "payload",
            "mainFactor": "mainFactor",
            "shareFactor": "shareFactor",
            worker_key: "workerId",
        }
        missing = [name for key, name in required.items() if key not in message]
        if missing:
            raise ValueError(f"Task definition is missing {', '.join(missing)}")
        return cls(
            index=message["index"],
            previous_hash=str(message["previousHash"]),
            payload=message[payload_key],
            main_factor=_parse_factor(message["mainFactor"], "mainFactor"),
            share_factor=_parse_factor(message["shareFactor"], "shareFactor"),
            worker_id=str(message[worker_key]),
        )


@dataclasses.dataclass(frozen=True)
class NonceRange:
    """Half-open interval [start, end) of candidate nonces."""

    start: int
    end: int

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"Invalid nonce range [{self.start}, {self.end})")

    def __len__(self) -> int:
        return self.end - self.start

    def __iter__(self):
        return iter(range(self.start, self.end))

    @property
    def empty(self) -> bool:
        return self.start == self.end

    @classmethod
    def from_message(cls, message: Mapping[str, Any]) -> NonceRange:
        return cls(
            start=_parse_nonce(message["startNonce"], "startNonce"),
            end=_parse_nonce(message["endNonce"], "endNonce"),
        )


EMPTY_RANGE = NonceRange(0, 0)
