"""SOCI index build: builder protocol and strategy orchestration."""

from soci_index_builder.build.builder import IndexBuilder, load_builder_factory
from soci_index_builder.build.orchestrator import IndexBuildOrchestrator

__all__ = ["IndexBuilder", "IndexBuildOrchestrator", "load_builder_factory"]
