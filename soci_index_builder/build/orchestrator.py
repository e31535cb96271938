"""Index build orchestration: one ``build()`` for both strategies.

V1 (legacy)
    Build for the runtime platform, then read every index record for the
    image from the artifacts database and take the most recently created
    one. A successful build with no record is an internal error; the
    library's empty-index condition is a benign ``EmptyBuildResult``.
V2 (converted)
    Requires a source tag; without one nothing is built. Otherwise the
    converted index descriptor is returned directly with the derived tag.
"""

from __future__ import annotations

import logging

from soci_index_builder.build.builder import IndexBuilder
from soci_index_builder.core.errors import (
    EMPTY_INDEX_MESSAGE,
    BuildError,
    SociBuilderError,
    is_empty_index_error,
)
from soci_index_builder.models.build import (
    BuildResult,
    BuildStrategy,
    ConvertedBuildResult,
    EmptyBuildResult,
    LegacyBuildResult,
    SkippedBuildResult,
    converted_tag,
)
from soci_index_builder.models.context import RequestContext
from soci_index_builder.models.oci import ImageRef, Platform
from soci_index_builder.storage.artifacts_db import ArtifactsDb

logger = logging.getLogger(__name__)

NO_TAG_REASON = "Skipped SOCI index generation for V2 as image has no tag"
NO_INDEX_FOUND = "no SOCI indices found in OCI store"


class IndexBuildOrchestrator:
    """Drives the build library for the configured strategy.

    Parameters
    ----------
    builder:
        Build library adapter bound to the invocation's workspace.
    artifacts_db:
        The workspace's build metadata database.
    strategy:
        Deployment-wide build strategy.
    platform:
        Target platform; defaults to the runtime's.
    """

    def __init__(
        self,
        builder: IndexBuilder,
        artifacts_db: ArtifactsDb,
        strategy: BuildStrategy,
        *,
        platform: Platform | None = None,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._builder = builder
        self._db = artifacts_db
        self._strategy = strategy
        self._platform = platform or Platform.default()
        self._log = log or logger

    @property
    def strategy(self) -> BuildStrategy:
        return self._strategy

    @staticmethod
    def preflight(strategy: BuildStrategy, context: RequestContext) -> SkippedBuildResult | None:
        """Return a skip result if *strategy* has nothing to do for *context*."""
        if strategy == BuildStrategy.V2 and not context.image_tag:
            return SkippedBuildResult(reason=NO_TAG_REASON)
        return None

    def build(self, context: RequestContext, image: ImageRef) -> BuildResult:
        """Build the index for *image*.

        Raises
        ------
        BuildError
            The build library failed, or V1 produced no discoverable index.
        """
        skipped = self.preflight(self._strategy, context)
        if skipped is not None:
            return skipped

        self._log.info("Building SOCI index")
        try:
            if self._strategy == BuildStrategy.V2:
                return self._convert(context, image)
            return self._build_legacy(image)
        except BuildError:
            raise
        except Exception as exc:
            if is_empty_index_error(exc):
                return EmptyBuildResult(reason=str(exc) or EMPTY_INDEX_MESSAGE)
            if isinstance(exc, SociBuilderError):
                raise BuildError(f"failed to build SOCI index: {exc}") from exc
            raise BuildError(f"build library error: {exc}") from exc

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _convert(self, context: RequestContext, image: ImageRef) -> ConvertedBuildResult:
        descriptor = self._builder.convert(image, self._platform)
        self._log.info("Generated OCI Index Digest: %s", descriptor.digest)
        return ConvertedBuildResult(descriptor=descriptor, tag=converted_tag(context.image_tag))

    def _build_legacy(self, image: ImageRef) -> LegacyBuildResult:
        generated = self._builder.build(image, self._platform)
        self._log.info("Generated SOCI Index Digest: %s", generated.digest)

        records = self._db.find(image.target.digest, [str(self._platform)])
        if not records:
            raise BuildError(NO_INDEX_FOUND)
        records.sort(key=lambda record: record.created_at)
        latest = records[-1]
        if len(records) > 1:
            self._log.info(
                "Found %d SOCI indices for %s, using most recent %s",
                len(records),
                image.name,
                latest.descriptor.digest,
            )
        return LegacyBuildResult(descriptor=latest.descriptor, candidates=len(records))
