"""Request-scoped context built once by the event validator."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict


class RequestContext(BaseModel):
    """Validated fields of one invocation.

    Constructed by ``validate_event`` and passed unchanged through every
    later stage. ``image_tag`` is empty for untagged pushes.
    """

    model_config = ConfigDict(frozen=True)

    request_id: str
    registry_url: str
    repository_name: str
    image_digest: str
    image_tag: str = ""
    deadline: datetime

    @property
    def image_name(self) -> str:
        """``<repository>@<digest>``, the name handed to the build library."""
        return f"{self.repository_name}@{self.image_digest}"

    def seconds_remaining(self, now: datetime | None = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (self.deadline - now).total_seconds()

    def log_fields(self) -> dict[str, str]:
        return {
            "request_id": self.request_id,
            "registry_url": self.registry_url,
            "repository_name": self.repository_name,
            "image_digest": self.image_digest,
            "image_tag": self.image_tag,
        }
