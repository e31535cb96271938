"""Build library boundary.

zTOC generation and SOCI index encoding belong to an external build library.
This module defines the ``IndexBuilder`` Protocol the pipeline drives and the
factory signature used to construct one per workspace. A deployment names its
adapter as ``"module:attribute"`` in ``SOCI_BUILDER_BUILDER_FACTORY``.

Adapter contract
----------------
``build(image, platform)``
    Build a V1 SOCI index for *image* on *platform*, write its manifest and
    zTOCs into the workspace OCI store and add an ``IndexRecord`` to the
    artifacts database. Raise ``EmptyIndexError`` (or an error carrying the
    library's empty-index message) when no zTOC was created.
``convert(image, platform)``
    Produce a V2 converted OCI image index in the OCI store and return its
    descriptor.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from soci_index_builder.core.errors import BuilderConfigurationError
from soci_index_builder.core.workspace import Workspace
from soci_index_builder.models.oci import ImageRef, IndexDescriptor, Platform
from soci_index_builder.storage.artifacts_db import ArtifactsDb
from soci_index_builder.storage.oci_layout import OciLayoutStore

logger = logging.getLogger(__name__)


@runtime_checkable
class IndexBuilder(Protocol):
    """Protocol for SOCI build library adapters."""

    def build(self, image: ImageRef, platform: Platform) -> IndexDescriptor:
        """Build a single-platform SOCI index and record it in the artifacts DB."""
        ...

    def convert(self, image: ImageRef, platform: Platform) -> IndexDescriptor:
        """Convert *image* into a SOCI-enabled OCI image index."""
        ...


class BuildEnvironment(BaseModel):
    """Everything an adapter needs to build inside one workspace."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    workspace: Workspace
    oci_store: OciLayoutStore
    artifacts_db: ArtifactsDb
    build_tool_identifier: str


BuilderFactory = Callable[[BuildEnvironment], IndexBuilder]


def load_builder_factory(path: str) -> BuilderFactory:
    """Import a builder factory from ``"package.module:attribute"``.

    Raises
    ------
    BuilderConfigurationError
        If *path* is empty, malformed, cannot be imported or is not callable.
    """
    if not path:
        raise BuilderConfigurationError(
            "No build library adapter configured. Set SOCI_BUILDER_BUILDER_FACTORY."
        )
    module_name, sep, attribute = path.partition(":")
    if not sep or not module_name or not attribute:
        raise BuilderConfigurationError(
            f"Invalid builder factory {path!r}; expected 'package.module:attribute'"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise BuilderConfigurationError(f"Cannot import {module_name!r}: {exc}") from exc

    factory = module
    for part in attribute.split("."):
        try:
            factory = getattr(factory, part)
        except AttributeError as exc:
            raise BuilderConfigurationError(f"{module_name!r} has no attribute {attribute!r}") from exc

    if not callable(factory):
        raise BuilderConfigurationError(f"Builder factory {path!r} is not callable")
    logger.debug("Loaded builder factory %s", path)
    return factory
