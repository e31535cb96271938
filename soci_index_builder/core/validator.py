"""Event validation: turns a raw trigger payload into a RequestContext.

All rules run; every violation is collected in order and the first one is
surfaced. Pattern checks are matched against the whole value. On success of
each pattern check the value is copied into the context unchanged.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from soci_index_builder.core.errors import EventValidationError
from soci_index_builder.models.context import RequestContext
from soci_index_builder.models.events import ImageActionEvent

logger = logging.getLogger(__name__)

EXPECTED_SOURCE = "aws.ecr"
EXPECTED_DETAIL_TYPE = "ECR Image Action"
EXPECTED_ACTION_TYPE = "PUSH"
EXPECTED_RESULT = "SUCCESS"

ACCOUNT_ID_PATTERN = re.compile(r"[0-9]{12}")
REPOSITORY_NAME_PATTERN = re.compile(
    r"(?:[a-z0-9]+(?:[._-][a-z0-9]+)*/)*[a-z0-9]+(?:[._-][a-z0-9]+)*"
)
IMAGE_DIGEST_PATTERN = re.compile(
    r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[A-Fa-f0-9]{32,}"
)
IMAGE_TAG_PATTERN = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}")

_DOMAIN = ".amazonaws.com"
_CHINA_DOMAIN = ".amazonaws.com.cn"


def parse_event(payload: Any) -> ImageActionEvent:
    """Parse a raw payload, converting parse failures into a validation error."""
    if isinstance(payload, ImageActionEvent):
        return payload
    if not isinstance(payload, Mapping):
        raise EventValidationError(["the event must be a JSON object"])
    try:
        return ImageActionEvent.from_payload(dict(payload))
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise EventValidationError(
            [f"the event's '{location}' is malformed: {first.get('msg', 'invalid value')}"]
        ) from exc


def build_registry_url(event: ImageActionEvent) -> str:
    """Return the ECR registry host for the event's account and region."""
    domain = _CHINA_DOMAIN if event.region.startswith("cn") else _DOMAIN
    return f"{event.account}.dkr.ecr.{event.region}{domain}"


def _matches(pattern: re.Pattern[str], value: Any, violations: list[str]) -> bool:
    try:
        return pattern.fullmatch(value) is not None
    except TypeError as exc:
        violations.append(f"pattern {pattern.pattern!r} could not be evaluated: {exc}")
        return False


def collect_violations(event: ImageActionEvent) -> tuple[list[str], dict[str, str]]:
    """Apply every rule to *event*.

    Returns ``(violations, validated)`` where *validated* holds the fields
    whose pattern check passed.
    """
    violations: list[str] = []
    validated: dict[str, str] = {}
    detail = event.detail

    # Provenance
    if event.source != EXPECTED_SOURCE:
        violations.append(f"the event's 'source' must be '{EXPECTED_SOURCE}'")
    if event.account == "":
        violations.append("the event's 'account' must not be empty")
    if event.detail_type != EXPECTED_DETAIL_TYPE:
        violations.append(f"the event's 'detail-type' must be '{EXPECTED_DETAIL_TYPE}'")
    if detail.action_type != EXPECTED_ACTION_TYPE:
        violations.append(f"the event's 'detail.action-type' must be '{EXPECTED_ACTION_TYPE}'")
    if detail.result != EXPECTED_RESULT:
        violations.append(f"the event's 'detail.result' must be '{EXPECTED_RESULT}'")
    if detail.repository_name == "":
        violations.append("the event's 'detail.repository-name' must not be empty")
    if detail.image_digest == "":
        violations.append("the event's 'detail.image-digest' must not be empty")

    # Patterns
    if not _matches(ACCOUNT_ID_PATTERN, event.account, violations):
        violations.append("the event's 'account' must be a valid AWS account ID")

    if _matches(REPOSITORY_NAME_PATTERN, detail.repository_name, violations):
        validated["repository_name"] = detail.repository_name
    else:
        violations.append("the event's 'detail.repository-name' must be a valid repository name")

    if _matches(IMAGE_DIGEST_PATTERN, detail.image_digest, violations):
        validated["image_digest"] = detail.image_digest
    else:
        violations.append("the event's 'detail.image-digest' must be a valid image digest")

    # An empty tag means an untagged push
    if detail.image_tag != "":
        if _matches(IMAGE_TAG_PATTERN, detail.image_tag, violations):
            validated["image_tag"] = detail.image_tag
        else:
            violations.append("the event's 'detail.image-tag' must be empty or a valid image tag")

    return violations, validated


def validate_event(payload: Any, *, request_id: str, deadline: datetime) -> RequestContext:
    """Validate a trigger payload and build the invocation's RequestContext.

    Raises
    ------
    EventValidationError
        With every violation found; the first is the error message.
    """
    event = parse_event(payload)
    violations, validated = collect_violations(event)
    if violations:
        logger.debug("Event rejected with %d violation(s): %s", len(violations), violations)
        raise EventValidationError(violations)

    return RequestContext(
        request_id=request_id,
        registry_url=build_registry_url(event),
        repository_name=validated["repository_name"],
        image_digest=validated["image_digest"],
        image_tag=validated.get("image_tag", ""),
        deadline=deadline,
    )
