"""Outcome reporting: terminal state to (message, error-or-None).

The messages below are a stable contract: monitoring and alerting match on
them, so each cause maps to exactly one fixed string.
"""

from __future__ import annotations

import logging

from soci_index_builder.models.outcome import Outcome, OutcomeKind

logger = logging.getLogger(__name__)

# Errors
VALIDATION_FAILED_MESSAGE = "ECRImageActionEvent validation error"
REGISTRY_INIT_FAILED_MESSAGE = "Remote registry initialization error"
DIRECTORY_CREATE_FAILED_MESSAGE = "Directory create error"
STORAGE_INIT_FAILED_MESSAGE = "OCI storage initialization error"
PULL_FAILED_MESSAGE = "Image pull error"
BUILD_FAILED_MESSAGE = "SOCI index build error"
TAG_FAILED_MESSAGE = "SOCI V2 OCI Image tag error"
PUSH_FAILED_MESSAGE = "SOCI index push error"

# Benign skips
ALREADY_PROCESSED_MESSAGE = "Exited early due to manifest validation error"
SKIP_NO_TAG_MESSAGE = "Skipped SOCI index generation for V2 as image has no tag"
SKIP_PUSH_ON_EMPTY_INDEX_MESSAGE = "Skipping pushing SOCI index as it does not contain any zTOCs"

# Success
BUILD_AND_PUSH_SUCCESS_MESSAGE = "Successfully built and pushed SOCI index"

STAGE_MESSAGES: dict[str, str] = {
    "validation": VALIDATION_FAILED_MESSAGE,
    "registry_init": REGISTRY_INIT_FAILED_MESSAGE,
    "workspace": DIRECTORY_CREATE_FAILED_MESSAGE,
    "storage": STORAGE_INIT_FAILED_MESSAGE,
    "pull": PULL_FAILED_MESSAGE,
    "build": BUILD_FAILED_MESSAGE,
    "tag": TAG_FAILED_MESSAGE,
    "push": PUSH_FAILED_MESSAGE,
}


class OutcomeReporter:
    """Builds outcomes and logs each one once, at the right level."""

    def __init__(self, log: logging.Logger | logging.LoggerAdapter | None = None) -> None:
        self._log = log or logger

    def success(self) -> Outcome:
        self._log.info(BUILD_AND_PUSH_SUCCESS_MESSAGE)
        return Outcome(kind=OutcomeKind.SUCCESS, message=BUILD_AND_PUSH_SUCCESS_MESSAGE, stage="push")

    def skip(self, message: str, *, stage: str, detail: str = "") -> Outcome:
        if detail:
            self._log.warning("%s: %s", message, detail)
        else:
            self._log.warning(message)
        return Outcome(kind=OutcomeKind.SKIP, message=message, stage=stage)

    def error(self, stage: str, exc: BaseException) -> Outcome:
        """Error outcome for *stage*; retryable unless it is a validation error."""
        message = STAGE_MESSAGES.get(stage, BUILD_FAILED_MESSAGE)
        self._log.error("%s: %s", message, exc)
        return Outcome(
            kind=OutcomeKind.ERROR,
            message=message,
            stage=stage,
            error=exc,
            retryable=stage != "validation",
        )
