"""AWS Lambda entry point.

The function returns the outcome message for successes, benign skips and
validation errors, and raises ``InvocationError`` only for retryable
infrastructure errors: a raised error is what makes Lambda's async
invocation retry the event.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from soci_index_builder.config import BuilderSettings
from soci_index_builder.core.logs import configure_logging
from soci_index_builder.core.pipeline import InvocationPipeline

logger = logging.getLogger(__name__)

_pipeline: InvocationPipeline | None = None


class InvocationError(RuntimeError):
    """Raised to the Lambda runtime for retryable failures."""

    def __init__(self, message: str, stage: str) -> None:
        super().__init__(message)
        self.stage = stage


def get_pipeline() -> InvocationPipeline:
    """Process-level pipeline, built on first use (warm starts reuse it)."""
    global _pipeline
    if _pipeline is None:
        settings = BuilderSettings()
        configure_logging(settings.log_level)
        _pipeline = InvocationPipeline(settings)
    return _pipeline


def invocation_deadline(context: Any, default_seconds: float) -> datetime:
    """Absolute deadline from the Lambda context's remaining time."""
    now = datetime.now(timezone.utc)
    remaining = getattr(context, "get_remaining_time_in_millis", None)
    if callable(remaining):
        return now + timedelta(milliseconds=remaining())
    return now + timedelta(seconds=default_seconds)


def lambda_handler(event: dict[str, Any], context: Any, pipeline: InvocationPipeline | None = None) -> str:
    """Build and push a SOCI index for the image named by *event*."""
    pipeline = pipeline or get_pipeline()
    request_id = getattr(context, "aws_request_id", "") or uuid.uuid4().hex
    outcome = pipeline.run(
        event,
        request_id=request_id,
        deadline=invocation_deadline(context, pipeline.settings.default_timeout_seconds),
    )
    if outcome.retryable:
        raise InvocationError(outcome.message, outcome.stage) from outcome.error
    return outcome.message
