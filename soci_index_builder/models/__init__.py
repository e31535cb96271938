"""SOCI Index Builder data models: all Pydantic v2, all frozen (immutable)."""

from soci_index_builder.models.build import (
    BuildResult,
    BuildStrategy,
    ConvertedBuildResult,
    EmptyBuildResult,
    LegacyBuildResult,
    SkippedBuildResult,
)
from soci_index_builder.models.context import RequestContext
from soci_index_builder.models.events import ImageActionDetail, ImageActionEvent
from soci_index_builder.models.oci import (
    Descriptor,
    ImageRef,
    IndexDescriptor,
    IndexRecord,
    Platform,
)
from soci_index_builder.models.outcome import Outcome, OutcomeKind

__all__ = [
    # events
    "ImageActionDetail",
    "ImageActionEvent",
    # context
    "RequestContext",
    # oci
    "Descriptor",
    "ImageRef",
    "IndexDescriptor",
    "IndexRecord",
    "Platform",
    # build
    "BuildStrategy",
    "BuildResult",
    "LegacyBuildResult",
    "ConvertedBuildResult",
    "EmptyBuildResult",
    "SkippedBuildResult",
    # outcome
    "Outcome",
    "OutcomeKind",
]
