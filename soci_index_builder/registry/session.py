"""Registry session: pull, idempotency pre-flight and push against ECR.

One session per invocation. ``init`` authenticates; afterwards the session
is used strictly sequentially by the pipeline:

    validate_idempotency -> pull -> (build) -> push
"""

from __future__ import annotations

import json
import logging
from typing import Any

from requests.adapters import BaseAdapter

from soci_index_builder.core.errors import (
    AlreadyProcessedError,
    PushError,
    RegistryError,
    StorageError,
    TagError,
)
from soci_index_builder.models.build import BuildStrategy, converted_tag
from soci_index_builder.models.oci import (
    IMAGE_MANIFEST_MEDIA_TYPES,
    INDEX_MEDIA_TYPES,
    MANIFEST_MEDIA_TYPES,
    SOCI_ARTIFACT_TYPES,
    SOCI_INDEX_DIGEST_ANNOTATION,
    SOCI_INDEX_V1_ARTIFACT_TYPE,
    MEDIA_TYPE_OCI_MANIFEST,
    Descriptor,
)
from soci_index_builder.registry.auth import get_ecr_credentials
from soci_index_builder.registry.client import RegistryClient, RegistryResponseError
from soci_index_builder.storage.oci_layout import OciLayoutStore

logger = logging.getLogger(__name__)


class RegistrySession:
    """Authenticated access to one ECR registry.

    Parameters
    ----------
    client:
        An authenticated ``RegistryClient``.
    log:
        Logger or request-bound adapter.
    """

    def __init__(self, client: RegistryClient, *, log: logging.Logger | logging.LoggerAdapter | None = None) -> None:
        self._client = client
        self._log = log or logger

    @classmethod
    def init(
        cls,
        registry_url: str,
        *,
        ecr_client: Any | None = None,
        scheme: str = "https",
        timeout: float = 60.0,
        adapter: BaseAdapter | None = None,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> RegistrySession:
        """Authenticate against *registry_url*.

        Raises
        ------
        RegistryError
            If credentials cannot be obtained.
        """
        credentials = get_ecr_credentials(registry_url, ecr_client=ecr_client)
        client = RegistryClient(
            registry_url,
            username=credentials.username,
            password=credentials.password,
            scheme=scheme,
            timeout=timeout,
            adapter=adapter,
        )
        return cls(client, log=log)

    @property
    def client(self) -> RegistryClient:
        return self._client

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Pre-flight
    # ------------------------------------------------------------------

    def validate_idempotency(
        self, repository: str, digest: str, strategy: BuildStrategy, tag: str = ""
    ) -> None:
        """Check that *digest* still needs an index for *strategy*.

        For V2 the image counts as converted when ``<tag>-soci`` names an
        image index holding a SOCI-enabled manifest with the same config and
        layers as *digest*.

        Raises
        ------
        AlreadyProcessedError
            The image is not a single-platform image manifest, is itself a
            SOCI artifact, or already has an index for this strategy.
        RegistryError
            The registry could not be queried.
        """
        descriptor, data = self._client.get_manifest(repository, digest)
        if descriptor.media_type not in IMAGE_MANIFEST_MEDIA_TYPES:
            raise AlreadyProcessedError(
                f"image {digest} has media type {descriptor.media_type}, expected an image manifest"
            )

        manifest = _load_json(data)
        config = manifest.get("config")
        config_type = config.get("mediaType", "") if isinstance(config, dict) else ""
        if manifest.get("artifactType") in SOCI_ARTIFACT_TYPES or config_type in SOCI_ARTIFACT_TYPES:
            raise AlreadyProcessedError(f"image {digest} is itself a SOCI index")

        if strategy == BuildStrategy.V2:
            if SOCI_INDEX_DIGEST_ANNOTATION in (manifest.get("annotations") or {}):
                raise AlreadyProcessedError(f"image {digest} is already SOCI-enabled")
            if tag and self._converted_under(repository, converted_tag(tag), manifest):
                raise AlreadyProcessedError(
                    f"image {digest} is already converted as {repository}:{converted_tag(tag)}"
                )
            return

        existing = self._client.list_referrers(repository, digest, SOCI_INDEX_V1_ARTIFACT_TYPE)
        if existing:
            raise AlreadyProcessedError(
                f"image {digest} already has a SOCI index ({existing[-1].digest})"
            )

    def _converted_under(self, repository: str, tag: str, manifest: dict[str, Any]) -> bool:
        try:
            descriptor, data = self._client.get_manifest(repository, tag)
        except RegistryResponseError as exc:
            if exc.status_code == 404:
                return False
            raise
        if descriptor.media_type not in INDEX_MEDIA_TYPES:
            return False

        wanted = _content_key(manifest)
        for entry in _load_json(data).get("manifests") or []:
            if not isinstance(entry, dict):
                continue
            if SOCI_INDEX_DIGEST_ANNOTATION not in (entry.get("annotations") or {}):
                continue
            if entry.get("mediaType") not in IMAGE_MANIFEST_MEDIA_TYPES or not entry.get("digest"):
                continue
            _, child = self._client.get_manifest(repository, entry["digest"])
            if _content_key(_load_json(child)) == wanted:
                return True
        return False

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def pull(self, repository: str, digest: str, store: OciLayoutStore) -> Descriptor:
        """Fetch the manifest and every referenced blob into *store*.

        Returns the descriptor of the pulled root manifest.
        """
        descriptor, data = self._client.get_manifest(repository, digest)
        store.write_stream(descriptor.digest, [data])
        self._pull_children(repository, descriptor, store)
        store.tag(descriptor, f"{repository}@{digest}")
        self._log.info("Pulled %s@%s (%s)", repository, descriptor.digest, descriptor.media_type)
        return descriptor

    def _pull_children(self, repository: str, descriptor: Descriptor, store: OciLayoutStore) -> None:
        for child in store.successors(descriptor):
            if store.exists(child.digest):
                continue
            if child.media_type in MANIFEST_MEDIA_TYPES:
                _, data = self._client.get_manifest(repository, child.digest)
                store.write_stream(child.digest, [data])
                self._pull_children(repository, child, store)
                continue
            with self._client.blob_stream(repository, child.digest) as chunks:
                store.write_stream(child.digest, chunks)

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def push(self, store: OciLayoutStore, descriptor: Descriptor, repository: str, tag: str = "") -> None:
        """Upload *descriptor* and everything it references.

        The root manifest is put by digest; if *tag* is non-empty it is
        additionally put under that tag.

        Raises
        ------
        PushError
            Any upload failed.
        TagError
            The manifest was pushed but could not be tagged.
        """
        try:
            self._push_children(store, descriptor, repository)
            self._client.put_manifest(
                repository, descriptor.digest, store.fetch(descriptor.digest), descriptor.media_type
            )
        except RegistryError as exc:
            raise PushError(str(exc)) from exc
        except (OSError, StorageError) as exc:
            raise PushError(f"cannot read {descriptor.digest} from local store: {exc}") from exc
        self._log.info("Pushed %s to %s", descriptor.digest, repository)

        if tag:
            try:
                self._client.put_manifest(
                    repository, tag, store.fetch(descriptor.digest), descriptor.media_type
                )
            except RegistryError as exc:
                raise TagError(str(exc)) from exc
            self._log.info("Tagged %s as %s:%s", descriptor.digest, repository, tag)

    def _push_children(self, store: OciLayoutStore, descriptor: Descriptor, repository: str) -> None:
        for child in self._references(store, descriptor):
            if child.media_type in MANIFEST_MEDIA_TYPES:
                if self._client.manifest_exists(repository, child.digest):
                    continue
                self._push_children(store, child, repository)
                self._client.put_manifest(
                    repository, child.digest, store.fetch(child.digest), child.media_type
                )
                continue
            if self._client.blob_exists(repository, child.digest):
                continue
            self._client.upload_blob(repository, child, store.blob_path(child.digest))

    @staticmethod
    def _references(store: OciLayoutStore, descriptor: Descriptor) -> list[Descriptor]:
        """Children of *descriptor*, plus SOCI indices named by annotation.

        In a converted image index the image manifests point at their SOCI
        index only through an annotation; those must reach the registry first.
        """
        children = store.successors(descriptor)
        extra: list[Descriptor] = []
        for child in children:
            soci_digest = (child.annotations or {}).get(SOCI_INDEX_DIGEST_ANNOTATION)
            if soci_digest and store.exists(soci_digest):
                document = store.fetch_json(soci_digest)
                extra.append(
                    Descriptor(
                        media_type=document.get("mediaType", MEDIA_TYPE_OCI_MANIFEST),
                        digest=soci_digest,
                        size=store.blob_path(soci_digest).stat().st_size,
                    )
                )
        return extra + children


def _content_key(manifest: dict[str, Any]) -> tuple[str, tuple[str, ...]]:
    config = manifest.get("config") or {}
    layers = manifest.get("layers") or []
    return (
        config.get("digest", "") if isinstance(config, dict) else "",
        tuple(layer.get("digest", "") for layer in layers if isinstance(layer, dict)),
    )


def _load_json(data: bytes) -> dict[str, Any]:
    try:
        document = json.loads(data)
    except ValueError as exc:
        raise RegistryError(f"manifest is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise RegistryError("manifest is not a JSON object")
    return document
