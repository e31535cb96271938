"""Logging setup and request-scoped log enrichment.

Every record emitted while serving an invocation carries the request's
identifying fields (request id, registry, repository, digest, tag and, once
built, the SOCI index digest) both as record attributes and as a compact
``key=value`` suffix, so a single CloudWatch line is traceable on its own.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping, MutableMapping
from typing import Any

from soci_index_builder.models.context import RequestContext

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once per process.

    The Lambda runtime pre-installs a handler on the root logger; in that
    case only the level is adjusted.
    """
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level.upper())


class RequestLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that stamps request fields onto every record."""

    def __init__(self, logger: logging.Logger, fields: Mapping[str, str] | None = None) -> None:
        super().__init__(logger, dict(fields or {}))

    @classmethod
    def for_context(cls, logger: logging.Logger, context: RequestContext) -> RequestLoggerAdapter:
        return cls(logger, context.log_fields())

    def bind(self, **fields: str) -> RequestLoggerAdapter:
        """Return a new adapter with *fields* added."""
        merged = dict(self.extra)
        merged.update(fields)
        return RequestLoggerAdapter(self.logger, merged)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        fields = {k: v for k, v in self.extra.items() if v}
        extra = dict(kwargs.get("extra") or {})
        extra.update(fields)
        kwargs["extra"] = extra
        if fields:
            suffix = " ".join(f"{k}={v}" for k, v in fields.items())
            msg = f"{msg} [{suffix}]"
        return msg, kwargs
