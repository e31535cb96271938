"""ECR authentication via boto3.

ECR's authorization token is a base64 ``AWS:<password>`` pair valid for
12 hours, usable as HTTP Basic credentials against the registry endpoint.
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ConfigDict

from soci_index_builder.core.errors import RegistryError

logger = logging.getLogger(__name__)


class RegistryCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    password: str
    expires_at: datetime | None = None


def region_from_registry(registry_url: str) -> str:
    """Extract the region from ``<account>.dkr.ecr.<region>.<domain>``."""
    parts = registry_url.split(".")
    if len(parts) < 5 or parts[1:3] != ["dkr", "ecr"]:
        raise RegistryError(f"not an ECR registry host: {registry_url!r}", stage="registry_init")
    return parts[3]


def account_from_registry(registry_url: str) -> str:
    return registry_url.split(".", 1)[0]


def get_ecr_credentials(registry_url: str, ecr_client: Any | None = None) -> RegistryCredentials:
    """Fetch Basic-auth credentials for *registry_url*.

    Parameters
    ----------
    registry_url:
        ECR registry host.
    ecr_client:
        Optional pre-built boto3 ECR client (tests pass a stubbed one).

    Raises
    ------
    RegistryError
        If the token cannot be obtained or decoded.
    """
    region = region_from_registry(registry_url)
    try:
        client = ecr_client or boto3.client("ecr", region_name=region)
        response = client.get_authorization_token(registryIds=[account_from_registry(registry_url)])
    except (BotoCoreError, ClientError) as exc:
        raise RegistryError(f"cannot get ECR authorization token: {exc}", stage="registry_init") from exc

    data = response.get("authorizationData") or []
    if not data:
        raise RegistryError("ECR returned no authorization data", stage="registry_init")

    try:
        decoded = base64.b64decode(data[0]["authorizationToken"]).decode("utf-8")
    except (KeyError, ValueError) as exc:
        raise RegistryError(f"malformed ECR authorization token: {exc}", stage="registry_init") from exc

    username, sep, password = decoded.partition(":")
    if not sep:
        raise RegistryError("malformed ECR authorization token", stage="registry_init")

    logger.debug("Obtained ECR credentials for %s (region %s)", registry_url, region)
    return RegistryCredentials(
        username=username,
        password=password,
        expires_at=data[0].get("expiresAt"),
    )
