"""Build strategy selector and the tagged build result union."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from soci_index_builder.models.oci import IndexDescriptor


class BuildStrategy(str, Enum):
    """Which of the two index formats a deployment produces."""

    V1 = "V1"  # single-platform SOCI index, never retagged
    V2 = "V2"  # converted multi-platform OCI image index, tagged "<tag>-soci"

    @classmethod
    def from_setting(cls, value: str | None) -> BuildStrategy:
        """Only the exact value ``"V2"`` selects V2; anything else is V1."""
        return cls.V2 if value == cls.V2.value else cls.V1


CONVERTED_TAG_SUFFIX = "-soci"


def converted_tag(source_tag: str) -> str:
    """Tag under which a converted image index is published."""
    return f"{source_tag}{CONVERTED_TAG_SUFFIX}"


class LegacyBuildResult(BaseModel):
    """V1 build: the most recent index record for the image."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["legacy"] = "legacy"
    descriptor: IndexDescriptor
    candidates: int = 1


class ConvertedBuildResult(BaseModel):
    """V2 build: the converted image index and the tag to publish it under."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["converted"] = "converted"
    descriptor: IndexDescriptor
    tag: str


class EmptyBuildResult(BaseModel):
    """The build library produced no zTOCs; nothing to push."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["empty"] = "empty"
    reason: str


class SkippedBuildResult(BaseModel):
    """The strategy has nothing to do for this image; no build was attempted."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["skipped"] = "skipped"
    reason: str


BuildResult = Annotated[
    Union[LegacyBuildResult, ConvertedBuildResult, EmptyBuildResult, SkippedBuildResult],
    Field(discriminator="kind"),
]
