"""Tests for BuilderSettings: defaults and environment overrides."""

from __future__ import annotations

from pathlib import Path

from soci_index_builder.config import BuilderSettings
from soci_index_builder.models.build import BuildStrategy


class TestBuilderSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("soci_index_version", raising=False)
        monkeypatch.delenv("SOCI_BUILDER_SOCI_INDEX_VERSION", raising=False)
        settings = BuilderSettings(_env_file=None)
        assert settings.soci_index_version == "V1"
        assert settings.strategy is BuildStrategy.V1
        assert settings.work_root == Path("/tmp")
        assert settings.min_free_space_bytes == 6_000_000_000
        assert settings.deadline_margin_seconds == 10.0
        assert settings.registry_scheme == "https"

    def test_historical_strategy_variable(self, monkeypatch):
        monkeypatch.setenv("soci_index_version", "V2")
        settings = BuilderSettings(_env_file=None)
        assert settings.strategy is BuildStrategy.V2

    def test_prefixed_variables(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SOCI_BUILDER_WORK_ROOT", str(tmp_path))
        monkeypatch.setenv("SOCI_BUILDER_BUILDER_FACTORY", "pkg.mod:make")
        settings = BuilderSettings(_env_file=None)
        assert settings.work_root == tmp_path
        assert settings.builder_factory == "pkg.mod:make"

    def test_unknown_strategy_falls_back_to_v1(self, monkeypatch):
        monkeypatch.setenv("soci_index_version", "V3")
        assert BuilderSettings(_env_file=None).strategy is BuildStrategy.V1
