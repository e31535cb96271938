"""Shared test fixtures for the SOCI Index Builder."""

from __future__ import annotations

import hashlib
import io
import json
import re
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlsplit

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from soci_index_builder.build.builder import BuildEnvironment
from soci_index_builder.config import BuilderSettings
from soci_index_builder.core.errors import EmptyIndexError
from soci_index_builder.core.workspace import WorkspaceManager
from soci_index_builder.models.oci import (
    MEDIA_TYPE_OCI_INDEX,
    MEDIA_TYPE_OCI_MANIFEST,
    SOCI_INDEX_DIGEST_ANNOTATION,
    SOCI_INDEX_V1_ARTIFACT_TYPE,
    SOCI_INDEX_V2_ARTIFACT_TYPE,
    ImageRef,
    IndexDescriptor,
    IndexRecord,
    Platform,
)
from soci_index_builder.registry.client import RegistryClient
from soci_index_builder.registry.session import RegistrySession

ACCOUNT = "123456789012"
REGION = "us-east-1"
REGISTRY = f"{ACCOUNT}.dkr.ecr.{REGION}.amazonaws.com"
PLATFORM = Platform(os="linux", architecture="amd64")
EMPTY_CONFIG = b"{}"
EMPTY_CONFIG_MEDIA_TYPE = "application/vnd.oci.empty.v1+json"


def sha256_digest(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def canonical(document: dict[str, Any]) -> bytes:
    return json.dumps(document, separators=(",", ":")).encode("utf-8")


# ---------------------------------------------------------------------------
# In-memory OCI registry mounted on the oras session as a requests adapter
# ---------------------------------------------------------------------------


def _response(status: int, content: bytes = b"", headers: dict[str, str] | None = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.headers = CaseInsensitiveDict(headers or {})
    response.raw = io.BytesIO(content)
    response.encoding = "utf-8"
    return response


class FakeRegistry(BaseAdapter):
    """Just enough of the OCI distribution API for the registry session."""

    _MANIFEST = re.compile(r"^/v2/(?P<repo>.+)/manifests/(?P<ref>[^/]+)$")
    _BLOB = re.compile(r"^/v2/(?P<repo>.+)/blobs/(?P<digest>[^/]+)$")
    _UPLOAD_START = re.compile(r"^/v2/(?P<repo>.+)/blobs/uploads/$")
    _UPLOAD = re.compile(r"^/v2/(?P<repo>.+)/blobs/uploads/(?P<session>[^/]+)$")
    _REFERRERS = re.compile(r"^/v2/(?P<repo>.+)/referrers/(?P<digest>[^/]+)$")

    def __init__(self, *, referrers_api: bool = True, credentials: str | None = None) -> None:
        super().__init__()
        self.referrers_api = referrers_api
        self.credentials = credentials
        self.authorizations: list[str | None] = []
        self.manifests: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail: dict[tuple[str, str], int] = {}
        self.canned: dict[tuple[str, str], tuple[int, bytes]] = {}

    # --- seeding -----------------------------------------------------------

    def add_blob(self, repo: str, data: bytes) -> str:
        digest = sha256_digest(data)
        self.blobs[(repo, digest)] = data
        return digest

    def add_manifest(self, repo: str, document: dict[str, Any], tag: str = "") -> tuple[str, int]:
        data = canonical(document)
        digest = sha256_digest(data)
        media_type = document["mediaType"]
        self.manifests[(repo, digest)] = (data, media_type)
        if tag:
            self.manifests[(repo, tag)] = (data, media_type)
        return digest, len(data)

    def add_image(self, repo: str, tag: str = "", *, annotations: dict[str, str] | None = None) -> str:
        config = canonical({"architecture": "amd64", "os": "linux", "rootfs": {"type": "layers", "diff_ids": []}})
        layer = b"layer-bytes-" + repo.encode()
        manifest: dict[str, Any] = {
            "schemaVersion": 2,
            "mediaType": MEDIA_TYPE_OCI_MANIFEST,
            "config": {
                "mediaType": "application/vnd.oci.image.config.v1+json",
                "digest": self.add_blob(repo, config),
                "size": len(config),
            },
            "layers": [
                {
                    "mediaType": "application/vnd.oci.image.layer.v1.tar+gzip",
                    "digest": self.add_blob(repo, layer),
                    "size": len(layer),
                }
            ],
        }
        if annotations:
            manifest["annotations"] = annotations
        digest, _ = self.add_manifest(repo, manifest, tag)
        return digest

    # --- inspection --------------------------------------------------------

    def count(self, method: str, fragment: str = "") -> int:
        return sum(1 for m, path in self.calls if m == method and fragment in path)

    @property
    def writes(self) -> list[tuple[str, str]]:
        return [(m, p) for m, p in self.calls if m in ("POST", "PUT", "PATCH")]

    # --- requests adapter --------------------------------------------------

    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        response = self.handle(request)
        response.request = request
        response.url = request.url
        return response

    def close(self) -> None:
        pass

    def handle(self, request: requests.PreparedRequest) -> requests.Response:
        parts = urlsplit(request.url)
        path = parts.path
        params = {key: values[0] for key, values in parse_qs(parts.query).items()}
        self.calls.append((request.method, path))
        if self.credentials is not None:
            authorization = request.headers.get("Authorization")
            self.authorizations.append(authorization)
            if authorization != f"Basic {self.credentials}":
                return _response(401, headers={"WWW-Authenticate": 'Basic realm="fake"'})
        status = self.fail.get((request.method, path))
        if status is not None:
            return _response(status, b"injected failure")
        canned = self.canned.get((request.method, path))
        if canned is not None:
            return _response(canned[0], canned[1])

        if match := self._REFERRERS.match(path):
            return self._referrers(match["repo"], match["digest"], params.get("artifactType"))
        if match := self._UPLOAD_START.match(path):
            if request.method == "POST":
                location = f"{parts.scheme}://{parts.netloc}/v2/{match['repo']}/blobs/uploads/{uuid.uuid4().hex}"
                return _response(202, headers={"Location": location})
        if match := self._UPLOAD.match(path):
            if request.method == "PUT":
                digest = params.get("digest", "")
                data = _body(request)
                if sha256_digest(data) != digest:
                    return _response(400, b"digest mismatch")
                self.blobs[(match["repo"], digest)] = data
                return _response(201, headers={"Docker-Content-Digest": digest})
        if match := self._MANIFEST.match(path):
            return self._manifest(match["repo"], match["ref"], request)
        if match := self._BLOB.match(path):
            data = self.blobs.get((match["repo"], match["digest"]))
            if data is None:
                return _response(404)
            return _response(200, b"" if request.method == "HEAD" else data)
        return _response(405)

    def _manifest(self, repo: str, ref: str, request: requests.PreparedRequest) -> requests.Response:
        if request.method == "PUT":
            data = _body(request)
            media_type = request.headers["Content-Type"]
            digest = sha256_digest(data)
            self.manifests[(repo, ref)] = (data, media_type)
            self.manifests[(repo, digest)] = (data, media_type)
            return _response(201, headers={"Docker-Content-Digest": digest})
        entry = self.manifests.get((repo, ref))
        if entry is None:
            return _response(404)
        data, media_type = entry
        headers = {"Content-Type": media_type, "Docker-Content-Digest": sha256_digest(data)}
        return _response(200, b"" if request.method == "HEAD" else data, headers)

    def _referrers(self, repo: str, digest: str, wanted: str | None) -> requests.Response:
        if not self.referrers_api:
            return _response(404)
        manifests = []
        for (r, ref), (data, media_type) in self.manifests.items():
            if r != repo or not ref.startswith("sha256:"):
                continue
            document = json.loads(data)
            if (document.get("subject") or {}).get("digest") != digest:
                continue
            artifact_type = document.get("artifactType") or document.get("config", {}).get("mediaType")
            if wanted and artifact_type != wanted:
                continue
            manifests.append(
                {"mediaType": media_type, "digest": ref, "size": len(data), "artifactType": artifact_type}
            )
        body = canonical({"schemaVersion": 2, "mediaType": MEDIA_TYPE_OCI_INDEX, "manifests": manifests})
        return _response(200, body, {"Content-Type": MEDIA_TYPE_OCI_INDEX})


def _body(request: requests.PreparedRequest) -> bytes:
    body = request.body or b""
    return body.encode("utf-8") if isinstance(body, str) else body


# ---------------------------------------------------------------------------
# Fake build library adapter
# ---------------------------------------------------------------------------


class FakeBuilder:
    """Writes a minimal SOCI index (V1) or converted image index (V2)."""

    def __init__(
        self,
        env: BuildEnvironment,
        *,
        error: BaseException | None = None,
        extra_records: list[IndexRecord] | None = None,
        record: bool = True,
        on_build: Callable[[BuildEnvironment], None] | None = None,
    ) -> None:
        self.env = env
        self.error = error
        self.extra_records = extra_records or []
        self.record = record
        self.on_build = on_build
        self.build_calls = 0
        self.convert_calls = 0

    def _soci_manifest(self, image: ImageRef, artifact_type: str, subject: bool) -> IndexDescriptor:
        store = self.env.oci_store
        ztoc = store.push_blob(b"ztoc-for-" + image.target.digest.encode(), "application/octet-stream")
        config = store.push_blob(EMPTY_CONFIG, EMPTY_CONFIG_MEDIA_TYPE)
        manifest: dict[str, Any] = {
            "schemaVersion": 2,
            "mediaType": MEDIA_TYPE_OCI_MANIFEST,
            "artifactType": artifact_type,
            "config": config.to_oci(),
            "layers": [ztoc.to_oci()],
        }
        if subject:
            manifest["subject"] = image.target.to_oci()
        desc = store.push_json(manifest)
        return IndexDescriptor(media_type=desc.media_type, digest=desc.digest, size=desc.size, artifact_type=artifact_type)

    def build(self, image: ImageRef, platform: Platform) -> IndexDescriptor:
        self.build_calls += 1
        if self.on_build is not None:
            self.on_build(self.env)
        if self.error is not None:
            raise self.error
        descriptor = self._soci_manifest(image, SOCI_INDEX_V1_ARTIFACT_TYPE, subject=True)
        if self.record:
            self.env.artifacts_db.add(
                IndexRecord(descriptor=descriptor, image_digest=image.target.digest, platform=str(platform))
            )
        for extra in self.extra_records:
            self.env.artifacts_db.add(extra)
        return descriptor

    def convert(self, image: ImageRef, platform: Platform) -> IndexDescriptor:
        self.convert_calls += 1
        if self.error is not None:
            raise self.error
        store = self.env.oci_store
        soci = self._soci_manifest(image, SOCI_INDEX_V2_ARTIFACT_TYPE, subject=False)
        original = store.fetch_json(image.target.digest)
        enabled = dict(original)
        enabled["annotations"] = {SOCI_INDEX_DIGEST_ANNOTATION: soci.digest}
        enabled_desc = store.push_json(enabled)
        index = {
            "schemaVersion": 2,
            "mediaType": MEDIA_TYPE_OCI_INDEX,
            "manifests": [
                {
                    **enabled_desc.to_oci(),
                    "platform": {"os": platform.os, "architecture": platform.architecture},
                    "annotations": {SOCI_INDEX_DIGEST_ANNOTATION: soci.digest},
                }
            ],
        }
        desc = store.push_json(index)
        return IndexDescriptor(media_type=desc.media_type, digest=desc.digest, size=desc.size)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> BuilderSettings:
    """V1 settings with the workspace rooted in a temp directory."""
    return BuilderSettings(soci_index_version="V1", work_root=tmp_path, min_free_space_bytes=0)


@pytest.fixture
def workspace_manager(tmp_path: Path) -> WorkspaceManager:
    return WorkspaceManager(tmp_path, min_free_bytes=0)


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def registry_client(fake_registry: FakeRegistry) -> RegistryClient:
    return RegistryClient(REGISTRY, scheme="http", adapter=fake_registry)


@pytest.fixture
def registry_session(registry_client: RegistryClient) -> RegistrySession:
    return RegistrySession(registry_client)


@pytest.fixture
def session_factory(fake_registry: FakeRegistry) -> Callable[..., RegistrySession]:
    """Session factory for the pipeline, bypassing ECR authentication."""

    def _factory(registry_url: str, log: Any) -> RegistrySession:
        client = RegistryClient(registry_url, scheme="http", adapter=fake_registry)
        return RegistrySession(client, log=log)

    return _factory


@pytest.fixture
def builders() -> list[FakeBuilder]:
    """Every FakeBuilder created by ``builder_factory``."""
    return []


@pytest.fixture
def builder_factory(builders: list[FakeBuilder]) -> Callable[..., Callable[[BuildEnvironment], FakeBuilder]]:
    """Make a builder factory; keyword arguments go to every FakeBuilder."""

    def _make(**kwargs: Any) -> Callable[[BuildEnvironment], FakeBuilder]:
        def _factory(env: BuildEnvironment) -> FakeBuilder:
            builder = FakeBuilder(env, **kwargs)
            builders.append(builder)
            return builder

        return _factory

    return _make


@pytest.fixture
def make_event() -> Callable[..., dict[str, Any]]:
    """Factory fixture: an ECR image action event payload with overrides."""

    def _factory(
        repository: str = "myrepo",
        digest: str = "sha256:" + "a" * 64,
        tag: str | None = "latest",
        **overrides: Any,
    ) -> dict[str, Any]:
        detail: dict[str, Any] = {
            "action-type": "PUSH",
            "result": "SUCCESS",
            "repository-name": repository,
            "image-digest": digest,
        }
        if tag is not None:
            detail["image-tag"] = tag
        detail.update(overrides.pop("detail", {}))
        event: dict[str, Any] = {
            "version": "0",
            "id": "13cde686-328b-6117-af20-0e5566167482",
            "detail-type": "ECR Image Action",
            "source": "aws.ecr",
            "account": ACCOUNT,
            "time": "2019-11-16T01:54:34Z",
            "region": REGION,
            "resources": [],
            "detail": detail,
        }
        event.update(overrides)
        return event

    return _factory


@pytest.fixture
def far_deadline() -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=15)
