from __future__ import annotations

import abc
import dataclasses
import enum
import hashlib
import logging
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .task import Task


logger = logging.getLogger("worker")

_HEX_DIGEST = re.compile(r"[0-9a-fA-F]+")


class ScoringUnavailableError(RuntimeError):
    """The scoring backend cannot produce digests."""


class OutcomeState(str, enum.Enum):
    VALID = "valid"
    SHARE = "share"
    NOT_VALID = "notValid"


@dataclasses.dataclass(frozen=True)
class Outcome:
    state: OutcomeState
    nonce: int
    timestamp: int
    score: str | None = None
    value: int | None = None

    @property
    def reportable(self) -> bool:
        return self.state is not OutcomeState.NOT_VALID


class ScoringBackend(abc.ABC):
    """Opaque deterministic mapping from (Task, nonce, timestamp) to a hex digest."""

    @abc.abstractmethod
    def digest(self, task: Task, nonce: int, timestamp: int) -> str | None:
        """Return the digest as a hex string, or None if the backend is unavailable."""
        raise NotImplementedError


class DigestScorer(ScoringBackend):
    """SHA-256 over the dash-joined task fields, nonce, timestamp and worker id."""

    def digest(self, task: Task, nonce: int, timestamp: int) -> str:
        key = (
            f"{task.index}-{task.previous_hash}-{task.payload}"
            f"-{nonce}-{timestamp}-{task.worker_id}"
        )
        return hashlib.sha256(key.encode()).hexdigest()


def parse_score(score: object) -> int | None:
    """Interpret a digest as a big unsigned integer, None when malformed."""
    if not isinstance(score, str) or not _HEX_DIGEST.fullmatch(score):
        logger.error("Invalid score value: %r", score)
        return None
    return int(score, 16)


def classify(
    score: object,
    main_factor: int,
    share_factor: int,
    nonce: int,
    timestamp: int,
) -> Outcome:
    value = parse_score(score)
    if value is None:
        return Outcome(OutcomeState.NOT_VALID, nonce, timestamp)
    if value < main_factor:
        state = OutcomeState.VALID
    elif value < share_factor:
        state = OutcomeState.SHARE
    else:
        state = OutcomeState.NOT_VALID
    return Outcome(state, nonce, timestamp, score=score, value=value)  # type: ignore[arg-type]
