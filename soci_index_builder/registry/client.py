"""OCI distribution (v2) client for one registry, built on oras-py.

Authentication, blob download and blob upload go through
``oras.client.OrasClient``. Manifests travel as raw bytes through the same
authenticated ``do_request``: their digests must survive the round trip,
and oras's manifest helpers re-serialize the document and only accept
single image manifests.

Every transport or HTTP failure, and every unreadable registry response,
surfaces as ``RegistryError``; 404s are distinguishable through
``status_code``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

import requests
from oras.client import OrasClient
from pydantic import ValidationError
from requests.adapters import BaseAdapter, HTTPAdapter

from soci_index_builder.core.errors import RegistryError
from soci_index_builder.models.oci import (
    MANIFEST_MEDIA_TYPES,
    MEDIA_TYPE_OCI_INDEX,
    MEDIA_TYPE_OCI_MANIFEST,
    Descriptor,
)

logger = logging.getLogger(__name__)

MANIFEST_ACCEPT = ", ".join(sorted(MANIFEST_MEDIA_TYPES))
CHUNK_SIZE = 1024 * 1024


class RegistryResponseError(RegistryError):
    """The registry answered with an unexpected HTTP status."""

    def __init__(self, message: str, *, status_code: int, stage: str | None = None) -> None:
        super().__init__(message, stage=stage)
        self.status_code = status_code


class TimeoutHTTPAdapter(HTTPAdapter):
    """``HTTPAdapter`` applying a default timeout to every request."""

    def __init__(self, timeout: float, **kwargs: Any) -> None:
        self.timeout = timeout
        super().__init__(**kwargs)

    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        if kwargs.get("timeout") is None:
            kwargs["timeout"] = self.timeout
        return super().send(request, **kwargs)


class RegistryClient:
    """Talks to one registry host.

    Parameters
    ----------
    registry_url:
        Registry host, e.g. ``123456789012.dkr.ecr.us-east-1.amazonaws.com``.
    username, password:
        Basic credentials (from ECR). Anonymous when omitted.
    scheme:
        ``https`` in production; tests may use ``http``.
    timeout:
        Per-request timeout in seconds.
    adapter:
        Optional requests adapter mounted for *scheme* in place of the
        default one (an in-memory registry in tests).
    """

    def __init__(
        self,
        registry_url: str,
        *,
        username: str | None = None,
        password: str | None = None,
        scheme: str = "https",
        timeout: float = 60.0,
        adapter: BaseAdapter | None = None,
    ) -> None:
        self.registry_url = registry_url
        self._base = f"{scheme}://{registry_url}"
        self._oras = OrasClient(hostname=registry_url, insecure=scheme == "http", auth_backend="basic")
        if username and password:
            self._oras.auth.set_basic_auth(username, password)
        self._oras.session.mount(f"{scheme}://", adapter or TimeoutHTTPAdapter(timeout))

    @property
    def oras(self) -> OrasClient:
        return self._oras

    def close(self) -> None:
        self._oras.session.close()

    def __enter__(self) -> RegistryClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        expected: Iterable[int],
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        url = f"{self._base}{path}"
        try:
            response = self._oras.do_request(url, method, data=data, headers=dict(headers or {}))
        except requests.RequestException as exc:
            raise RegistryError(f"{method} {path} failed: {exc}") from exc
        if response.status_code not in expected:
            raise RegistryResponseError(
                f"{method} {path} returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    def _container(self, repository: str) -> Any:
        try:
            return self._oras.get_container(f"{self.registry_url}/{repository}")
        except ValueError as exc:
            raise RegistryError(f"invalid repository {repository}: {exc}") from exc

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    def get_manifest(self, repository: str, reference: str) -> tuple[Descriptor, bytes]:
        """Fetch a manifest by tag or digest.

        When *reference* is a digest the content is verified against it.
        """
        response = self._request(
            "GET",
            f"/v2/{repository}/manifests/{reference}",
            expected=(200,),
            headers={"Accept": MANIFEST_ACCEPT},
        )
        data = response.content
        computed = f"sha256:{hashlib.sha256(data).hexdigest()}"
        if reference.startswith("sha256:") and reference != computed:
            raise RegistryError(f"manifest {reference} content does not match its digest ({computed})")
        media_type = response.headers.get("Content-Type", "").split(";")[0].strip()
        if media_type not in MANIFEST_MEDIA_TYPES:
            media_type = _sniff_media_type(data, media_type)
        digest = reference if reference.startswith("sha256:") else response.headers.get(
            "Docker-Content-Digest", computed
        )
        return Descriptor(media_type=media_type, digest=digest, size=len(data)), data

    def manifest_exists(self, repository: str, reference: str) -> bool:
        try:
            self._request(
                "HEAD",
                f"/v2/{repository}/manifests/{reference}",
                expected=(200,),
                headers={"Accept": MANIFEST_ACCEPT},
            )
        except RegistryResponseError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    def put_manifest(self, repository: str, reference: str, data: bytes, media_type: str) -> str:
        """Upload a manifest under *reference*; returns the registry's digest."""
        response = self._request(
            "PUT",
            f"/v2/{repository}/manifests/{reference}",
            expected=(200, 201),
            data=data,
            headers={"Content-Type": media_type},
        )
        return response.headers.get("Docker-Content-Digest", "")

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def blob_exists(self, repository: str, digest: str) -> bool:
        try:
            self._request("HEAD", f"/v2/{repository}/blobs/{digest}", expected=(200,))
        except RegistryResponseError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    @contextmanager
    def blob_stream(self, repository: str, digest: str) -> Iterator[Iterator[bytes]]:
        """Stream a blob's bytes (ECR redirects blob GETs to S3)."""
        container = self._container(repository)
        try:
            response = self._oras.get_blob(container, digest, stream=True)
        except requests.RequestException as exc:
            raise RegistryError(f"GET blob {digest} from {repository} failed: {exc}") from exc
        with response:
            if response.status_code != 200:
                raise RegistryResponseError(
                    f"GET blob {digest} from {repository} returned HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            try:
                yield response.iter_content(CHUNK_SIZE)
            except requests.RequestException as exc:
                raise RegistryError(f"GET blob {digest} from {repository} failed: {exc}") from exc

    def upload_blob(self, repository: str, descriptor: Descriptor, path: Path) -> None:
        """Monolithic upload of the file at *path* through oras."""
        container = self._container(repository)
        try:
            response = self._oras.upload_blob(str(path), container, descriptor.to_oci())
        except (requests.RequestException, ValueError) as exc:
            raise RegistryError(f"upload of {descriptor.digest} to {repository} failed: {exc}") from exc
        if response.status_code not in (200, 201):
            raise RegistryResponseError(
                f"upload of {descriptor.digest} to {repository} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

    # ------------------------------------------------------------------
    # Referrers
    # ------------------------------------------------------------------

    def list_referrers(self, repository: str, digest: str, artifact_type: str | None = None) -> list[Descriptor]:
        """Manifests whose ``subject`` is *digest*.

        Uses the OCI 1.1 referrers API; on 404 falls back to the referrers
        tag schema (``<alg>-<hex>``).
        """
        path = f"/v2/{repository}/referrers/{digest}"
        if artifact_type:
            path = f"{path}?{urlencode({'artifactType': artifact_type})}"
        try:
            response = self._request("GET", path, expected=(200,), headers={"Accept": MEDIA_TYPE_OCI_INDEX})
            data = response.content
        except RegistryResponseError as exc:
            if exc.status_code != 404:
                raise
            data = self._referrers_from_tag(repository, digest)

        document = _load_index(data, f"referrers of {digest}")
        try:
            referrers = [Descriptor.model_validate(m) for m in document.get("manifests") or []]
        except ValidationError as exc:
            raise RegistryError(f"referrers of {digest} hold a malformed descriptor: {exc}") from exc
        if artifact_type:
            referrers = [r for r in referrers if r.artifact_type == artifact_type]
        return referrers

    def _referrers_from_tag(self, repository: str, digest: str) -> bytes:
        tag = digest.replace(":", "-", 1)
        try:
            _, data = self.get_manifest(repository, tag)
        except RegistryResponseError as exc:
            if exc.status_code == 404:
                return b'{"manifests": []}'
            raise
        return data


def _load_index(data: bytes, what: str) -> dict[str, Any]:
    try:
        document = json.loads(data)
    except ValueError as exc:
        raise RegistryError(f"{what} is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise RegistryError(f"{what} is not a JSON object")
    return document


def _sniff_media_type(data: bytes, fallback: str) -> str:
    """Infer a manifest media type from the document when headers don't say."""
    try:
        document = json.loads(data)
    except ValueError:
        return fallback or MEDIA_TYPE_OCI_MANIFEST
    if isinstance(document, dict) and document.get("mediaType"):
        return document["mediaType"]
    if isinstance(document, dict) and "manifests" in document:
        return MEDIA_TYPE_OCI_INDEX
    return MEDIA_TYPE_OCI_MANIFEST
