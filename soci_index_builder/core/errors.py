"""Exception taxonomy for a single invocation.

Three families matter to the caller:

* ``EventValidationError``: the trigger payload is malformed. Never retried.
* ``InfrastructureError`` and subclasses: registry, storage, build or push
  failures. Always propagated so the invoking infrastructure may retry.
* ``AlreadyProcessedError``: a benign pre-flight hit. Reported as a
  successful no-op.

``EmptyIndexError`` is raised by build library adapters when every layer was
skipped or failed; the orchestrator turns it into a benign skip.
"""

from __future__ import annotations

# Historical message of the build library's empty-index condition. Older
# adapters only surface this text, newer ones raise ``EmptyIndexError``.
EMPTY_INDEX_MESSAGE = "no ztocs created, all layers either skipped or produced errors"


class SociBuilderError(RuntimeError):
    """Base class for every error raised by this package."""


class EventValidationError(SociBuilderError):
    """Raised when an ECR image action event fails validation.

    Every violation is kept in order; the first one is the message.
    """

    def __init__(self, violations: list[str]) -> None:
        if not violations:
            raise ValueError("EventValidationError requires at least one violation")
        self.violations = list(violations)
        super().__init__(self.violations[0])


class InfrastructureError(SociBuilderError):
    """A retryable failure talking to the registry, disk or build library."""

    stage: str = "infrastructure"

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class RegistryError(InfrastructureError):
    """Raised on registry authentication, manifest or blob failures."""

    stage = "registry"


class WorkspaceError(InfrastructureError):
    """Raised when the ephemeral workspace cannot be created."""

    stage = "workspace"


class StorageError(InfrastructureError):
    """Raised when local OCI storage cannot be initialized or read."""

    stage = "storage"


class BuildError(InfrastructureError):
    """Raised when the build library fails or its output cannot be found."""

    stage = "build"


class PushError(RegistryError):
    """Raised when the built artifact cannot be uploaded."""

    stage = "push"


class TagError(PushError):
    """Raised when the converted image index cannot be tagged."""

    stage = "tag"


class AlreadyProcessedError(SociBuilderError):
    """The image needs no index: it was already processed or is ineligible."""


class EmptyIndexError(SociBuilderError):
    """The build library created no zTOCs for any layer."""

    def __init__(self, message: str = EMPTY_INDEX_MESSAGE) -> None:
        super().__init__(message)


class BuilderConfigurationError(SociBuilderError):
    """Raised when the configured build library adapter cannot be loaded."""


def is_empty_index_error(exc: BaseException) -> bool:
    """Return True if *exc* is the build library's empty-index condition.

    Matches the exception class and, for adapters that only forward the
    library's text, the exact historical message. Wrapped errors match
    through their ``__cause__`` or ``__context__`` chain.
    """
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, EmptyIndexError) or str(current) == EMPTY_INDEX_MESSAGE:
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False
