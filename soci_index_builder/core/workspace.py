"""Ephemeral per-invocation workspace.

Layout under ``{root}/{request_id}XXXXXXXX/``::

    content/        content-addressed blob store used by the build library
    store/          OCI image-layout store (pulled image + built artifacts)
    artifacts.db    build metadata database

The workspace is created after validation succeeds and removed on every
exit path. Removal is idempotent so the deadline watchdog and the main path
may both request it.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from soci_index_builder.core.errors import WorkspaceError

logger = logging.getLogger(__name__)

CONTENT_STORE_NAME = "content"
OCI_STORE_NAME = "store"
ARTIFACTS_DB_NAME = "artifacts.db"

# Images up to 6 GB must fit
DEFAULT_MIN_FREE_BYTES = 6_000_000_000


class Workspace(BaseModel):
    """Paths of one acquired workspace."""

    model_config = ConfigDict(frozen=True)

    root: Path

    @property
    def content_store_path(self) -> Path:
        return self.root / CONTENT_STORE_NAME

    @property
    def oci_store_path(self) -> Path:
        return self.root / OCI_STORE_NAME

    @property
    def artifacts_db_path(self) -> Path:
        return self.root / ARTIFACTS_DB_NAME


def calculate_free_space(path: Path) -> int:
    """Free bytes on the filesystem holding *path*."""
    return shutil.disk_usage(path).free


class WorkspaceManager:
    """Creates and destroys invocation workspaces under *root*.

    Parameters
    ----------
    root:
        Ephemeral filesystem root, ``/tmp`` on Lambda.
    min_free_bytes:
        Below this much free space a warning is logged; acquisition still
        proceeds.
    """

    def __init__(self, root: Path, *, min_free_bytes: int = DEFAULT_MIN_FREE_BYTES) -> None:
        self._root = Path(root)
        self._min_free_bytes = min_free_bytes
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Acquire
    # ------------------------------------------------------------------

    def acquire(self, request_id: str) -> Workspace:
        """Create a uniquely named workspace prefixed by *request_id*.

        Raises
        ------
        WorkspaceError
            If the directory tree cannot be created.
        """
        try:
            free = calculate_free_space(self._root)
        except OSError as exc:
            raise WorkspaceError(f"cannot stat {self._root}: {exc}") from exc

        logger.info("There are %d bytes of free space in %s directory", free, self._root)
        if free < self._min_free_bytes:
            logger.warning(
                "Free space in %s is only %d bytes, which is less than %d bytes",
                self._root,
                free,
                self._min_free_bytes,
            )

        logger.info("Creating a directory to store images and SOCI artifacts")
        root: Path | None = None
        try:
            root = Path(tempfile.mkdtemp(prefix=request_id, dir=self._root))
            workspace = Workspace(root=root)
            workspace.content_store_path.mkdir()
            workspace.oci_store_path.mkdir()
        except OSError as exc:
            if root is not None:
                shutil.rmtree(root, ignore_errors=True)
            raise WorkspaceError(f"cannot create workspace under {self._root}: {exc}") from exc
        return workspace

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def release(self, workspace: Workspace) -> None:
        """Remove the workspace tree. Missing trees are a no-op; errors are logged."""
        with self._lock:
            if not workspace.root.exists():
                return
            logger.info("Removing all files in %s", workspace.root)
            try:
                shutil.rmtree(workspace.root)
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.error("Clean up error: %s", exc)
