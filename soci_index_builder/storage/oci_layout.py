"""Content-addressed OCI image-layout store.

Storage layout (OCI image-layout 1.0.0)::

    {base}/oci-layout
    {base}/index.json
    {base}/blobs/{algorithm}/{hex}

Blobs are immutable: writing the same content twice is a no-op. Writes go
through a temp file and are digest-checked before they become visible.
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from soci_index_builder.core.errors import StorageError
from soci_index_builder.models.oci import (
    INDEX_MEDIA_TYPES,
    MANIFEST_MEDIA_TYPES,
    Descriptor,
)

LAYOUT_VERSION = "1.0.0"
REF_NAME_ANNOTATION = "org.opencontainers.image.ref.name"


class BlobIntegrityError(StorageError):
    """Raised when blob bytes do not match their digest."""


def digest_bytes(data: bytes, algorithm: str = "sha256") -> str:
    """Return ``algorithm:hex`` for *data*."""
    return f"{algorithm}:{hashlib.new(algorithm, data).hexdigest()}"


def _split_digest(digest: str) -> tuple[str, str]:
    algorithm, sep, hex_part = digest.partition(":")
    if not sep or not algorithm or not hex_part:
        raise StorageError(f"malformed digest: {digest!r}")
    return algorithm, hex_part


class OciLayoutStore:
    """OCI image-layout directory holding pulled images and built artifacts.

    Parameters
    ----------
    base_path:
        Root of the layout. Created, with ``oci-layout`` and an empty
        ``index.json``, if it does not exist.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._index_lock = threading.Lock()
        try:
            (self._base / "blobs").mkdir(parents=True, exist_ok=True)
            layout = self._base / "oci-layout"
            if not layout.exists():
                layout.write_text(json.dumps({"imageLayoutVersion": LAYOUT_VERSION}))
            if not self._index_path.exists():
                self._write_index({"schemaVersion": 2, "manifests": []})
        except OSError as exc:
            raise StorageError(f"cannot initialize OCI layout at {self._base}: {exc}") from exc

    @property
    def base_path(self) -> Path:
        return self._base

    @property
    def _index_path(self) -> Path:
        return self._base / "index.json"

    def blob_path(self, digest: str) -> Path:
        algorithm, hex_part = _split_digest(digest)
        return self._base / "blobs" / algorithm / hex_part

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def push_blob(self, data: bytes, media_type: str, *, annotations: dict[str, str] | None = None) -> Descriptor:
        """Store *data* and return its descriptor."""
        digest = digest_bytes(data)
        self.write_stream(digest, [data])
        return Descriptor(media_type=media_type, digest=digest, size=len(data), annotations=annotations)

    def push_json(self, document: dict[str, Any], media_type: str | None = None) -> Descriptor:
        """Store a JSON document (manifest or index) and return its descriptor."""
        data = json.dumps(document, separators=(",", ":")).encode("utf-8")
        return self.push_blob(data, media_type or document.get("mediaType", "application/json"))

    def write_stream(self, digest: str, chunks: Iterable[bytes]) -> int:
        """Write streamed content expected to hash to *digest*.

        Returns the number of bytes written. Raises ``BlobIntegrityError``
        if the content does not match.
        """
        path = self.blob_path(digest)
        if path.exists():
            return path.stat().st_size

        algorithm, expected_hex = _split_digest(digest)
        hasher = hashlib.new(algorithm)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".ingest-")
        size = 0
        try:
            with os.fdopen(fd, "wb") as handle:
                for chunk in chunks:
                    hasher.update(chunk)
                    handle.write(chunk)
                    size += len(chunk)
            if hasher.hexdigest() != expected_hex:
                raise BlobIntegrityError(
                    f"content does not match digest {digest} (got {algorithm}:{hasher.hexdigest()})"
                )
            os.replace(tmp_name, path)
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
        return size

    def tag(self, descriptor: Descriptor, reference: str) -> None:
        """Record *descriptor* in ``index.json`` under *reference*."""
        annotations = dict(descriptor.annotations or {})
        annotations[REF_NAME_ANNOTATION] = reference
        entry = descriptor.model_copy(update={"annotations": annotations}).to_oci()
        with self._index_lock:
            index = self._read_index()
            manifests = [
                m for m in index["manifests"]
                if (m.get("annotations") or {}).get(REF_NAME_ANNOTATION) != reference
            ]
            manifests.append(entry)
            index["manifests"] = manifests
            self._write_index(index)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def exists(self, digest: str) -> bool:
        return self.blob_path(digest).exists()

    def fetch(self, digest: str) -> bytes:
        path = self.blob_path(digest)
        if not path.exists():
            raise FileNotFoundError(f"Blob not found: {digest}")
        return path.read_bytes()

    def fetch_json(self, digest: str) -> dict[str, Any]:
        try:
            document = json.loads(self.fetch(digest))
        except ValueError as exc:
            raise StorageError(f"{digest} is not valid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise StorageError(f"{digest} is not a JSON object")
        return document

    def verify(self, digest: str) -> bool:
        """Re-hash stored data and compare against *digest*."""
        path = self.blob_path(digest)
        if not path.exists():
            return False
        algorithm, _ = _split_digest(digest)
        return digest_bytes(path.read_bytes(), algorithm) == digest

    def resolve(self, reference: str) -> Descriptor:
        """Look up a tagged descriptor in ``index.json``."""
        for entry in self._read_index()["manifests"]:
            if (entry.get("annotations") or {}).get(REF_NAME_ANNOTATION) == reference:
                return Descriptor.model_validate(entry)
        raise KeyError(reference)

    def successors(self, descriptor: Descriptor) -> list[Descriptor]:
        """Direct children of a manifest or index.

        The ``subject`` of a manifest is excluded; it already
        lives in the registry.
        """
        if descriptor.media_type not in MANIFEST_MEDIA_TYPES:
            return []
        document = self.fetch_json(descriptor.digest)
        try:
            if descriptor.media_type in INDEX_MEDIA_TYPES:
                return [Descriptor.model_validate(m) for m in document.get("manifests") or []]
            children = []
            if document.get("config"):
                children.append(Descriptor.model_validate(document["config"]))
            children.extend(Descriptor.model_validate(layer) for layer in document.get("layers") or [])
        except ValidationError as exc:
            raise StorageError(f"{descriptor.digest} holds a malformed descriptor: {exc}") from exc
        return children

    # ------------------------------------------------------------------
    # index.json helpers
    # ------------------------------------------------------------------

    def _read_index(self) -> dict[str, Any]:
        return json.loads(self._index_path.read_text())

    def _write_index(self, index: dict[str, Any]) -> None:
        self._index_path.write_text(json.dumps(index))
