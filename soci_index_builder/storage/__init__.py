"""Local storage inside the workspace: OCI layout store and build metadata DB."""

from soci_index_builder.storage.artifacts_db import ArtifactsDb
from soci_index_builder.storage.oci_layout import OciLayoutStore

__all__ = ["ArtifactsDb", "OciLayoutStore"]
