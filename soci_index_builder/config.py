"""Runtime configuration: env-driven via pydantic-settings.

All settings can be overridden via SOCI_BUILDER_* environment variables or
a .env file. The build strategy keeps the deployment's historical variable
name, ``soci_index_version``, which the stack template sets on the function.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from soci_index_builder.models.build import BuildStrategy


class BuilderSettings(BaseSettings):
    """Process-wide settings, fixed for the lifetime of a deployment.

    Examples
    --------
    Select the converted (V2) strategy::

        export soci_index_version=V2

    Point the pipeline at a build library adapter::

        export SOCI_BUILDER_BUILDER_FACTORY=my_soci_adapter:create_builder
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SOCI_BUILDER_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Anything other than exactly "V2" means the legacy V1 strategy
    soci_index_version: str = Field(
        default="V1",
        validation_alias=AliasChoices("soci_index_version", "SOCI_BUILDER_SOCI_INDEX_VERSION"),
    )

    log_level: str = "INFO"

    # Workspace
    work_root: Path = Path("/tmp")
    min_free_space_bytes: int = 6_000_000_000

    # Deadline handling
    deadline_margin_seconds: float = 10.0
    default_timeout_seconds: float = 900.0

    # Build library adapter, "module:attribute"
    builder_factory: str = ""
    build_tool_identifier: str = "AWS SOCI Index Builder Cfn v0.2"

    # Registry transport
    registry_timeout_seconds: float = 60.0
    registry_scheme: str = "https"

    @property
    def strategy(self) -> BuildStrategy:
        """The build strategy selected by ``soci_index_version``."""
        return BuildStrategy.from_setting(self.soci_index_version)
