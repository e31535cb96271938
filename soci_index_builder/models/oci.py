"""OCI content descriptors, platforms and SOCI media types."""

from __future__ import annotations

import platform as _platform
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# OCI / Docker manifest media types
MEDIA_TYPE_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_OCI_INDEX = "application/vnd.oci.image.index.v1+json"
MEDIA_TYPE_DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_TYPE_DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

IMAGE_MANIFEST_MEDIA_TYPES = frozenset({MEDIA_TYPE_OCI_MANIFEST, MEDIA_TYPE_DOCKER_MANIFEST})
INDEX_MEDIA_TYPES = frozenset({MEDIA_TYPE_OCI_INDEX, MEDIA_TYPE_DOCKER_MANIFEST_LIST})
MANIFEST_MEDIA_TYPES = IMAGE_MANIFEST_MEDIA_TYPES | INDEX_MEDIA_TYPES

# SOCI artifact types
SOCI_INDEX_V1_ARTIFACT_TYPE = "application/vnd.amazon.soci.index.v1+json"
SOCI_INDEX_V2_ARTIFACT_TYPE = "application/vnd.amazon.soci.index.v2+json"
SOCI_ARTIFACT_TYPES = frozenset({SOCI_INDEX_V1_ARTIFACT_TYPE, SOCI_INDEX_V2_ARTIFACT_TYPE})

# Set on image manifests inside a converted (V2) image index
SOCI_INDEX_DIGEST_ANNOTATION = "com.amazon.soci.index-digest"

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "i386": "386",
    "i686": "386",
}


class Descriptor(BaseModel):
    """An OCI content descriptor.

    ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    media_type: str = Field(alias="mediaType")
    digest: str
    size: int
    annotations: dict[str, str] | None = None
    artifact_type: str | None = Field(default=None, alias="artifactType")
    platform: dict[str, Any] | None = None

    def to_oci(self) -> dict[str, Any]:
        """Serialize in OCI wire form, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @property
    def hex(self) -> str:
        """Hex part of the digest."""
        return self.digest.split(":", 1)[-1]


class IndexDescriptor(Descriptor):
    """Descriptor of a built SOCI index or converted image index."""


class Platform(BaseModel):
    """Target platform of a build (``os/architecture[/variant]``)."""

    model_config = ConfigDict(frozen=True)

    os: str = "linux"
    architecture: str = "amd64"
    variant: str = ""

    @classmethod
    def default(cls) -> Platform:
        """The platform matching the current runtime."""
        machine = _platform.machine().lower()
        return cls(os="linux", architecture=_ARCH_ALIASES.get(machine, machine or "amd64"))

    def __str__(self) -> str:
        parts = [self.os, self.architecture]
        if self.variant:
            parts.append(self.variant)
        return "/".join(parts)


class ImageRef(BaseModel):
    """A pulled image: its name and root manifest descriptor."""

    model_config = ConfigDict(frozen=True)

    name: str
    target: Descriptor


class IndexRecord(BaseModel):
    """One build metadata record written by the build library."""

    model_config = ConfigDict(frozen=True)

    descriptor: IndexDescriptor
    image_digest: str
    platform: str
    manifest_type: str = "v1"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
