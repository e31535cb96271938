"""Terminal classification of an invocation."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    SKIP = "skip"
    ERROR = "error"


class Outcome(BaseModel):
    """Exactly one per invocation.

    ``retryable`` is the only signal the invoking infrastructure acts on:
    it is True for infrastructure errors and False for everything else,
    including validation errors.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: OutcomeKind
    message: str
    stage: str = ""
    error: BaseException | None = None
    retryable: bool = False

    @property
    def is_error(self) -> bool:
        return self.kind == OutcomeKind.ERROR

    def as_tuple(self) -> tuple[str, BaseException | None]:
        """``(message, error-or-None)``; None unless the error is retryable."""
        return self.message, self.error if self.retryable else None
