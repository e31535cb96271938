"""EventBridge "ECR Image Action" event models.

Field names follow Python conventions; the wire names (``detail-type``,
``action-type`` ...) are accepted as aliases. String fields default to the
empty string so that a missing field is reported by the validator as a
violation rather than failing the parse.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ImageActionDetail(BaseModel):
    """The ``detail`` object of an ECR image action event."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    action_type: str = Field(default="", alias="action-type")
    result: str = ""
    repository_name: str = Field(default="", alias="repository-name")
    image_digest: str = Field(default="", alias="image-digest")
    image_tag: str = Field(default="", alias="image-tag")


class ImageActionEvent(BaseModel):
    """An ECR image action event as delivered to the function."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    version: str = ""
    id: str = ""
    source: str = ""
    account: str = ""
    detail_type: str = Field(default="", alias="detail-type")
    time: str = ""
    region: str = ""
    resources: list[str] = Field(default_factory=list)
    detail: ImageActionDetail = Field(default_factory=ImageActionDetail)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ImageActionEvent:
        """Parse a raw trigger payload, ignoring a null ``detail``."""
        data = dict(payload)
        if data.get("detail") is None:
            data.pop("detail", None)
        return cls.model_validate(data)

    def to_payload(self) -> dict[str, Any]:
        """Return the event in its wire shape."""
        return self.model_dump(by_alias=True)
