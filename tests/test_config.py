"""Tests for engine settings."""

import pytest
from pydantic import ValidationError

from dualscan.config import Settings


class TestSettings:
    """Test settings defaults, environment overrides and validation."""

    def test_defaults(self):
        """Defaults favor structural analysis with file-scoped clustering."""
        settings = Settings(_env_file=None)

        assert settings.max_structural_files == 1000
        assert settings.similarity_threshold == 4
        assert settings.cluster_scope == "file"
        assert settings.structural_enabled
        assert settings.worker_count >= 1

    def test_environment_override(self, monkeypatch):
        """DUALSCAN_ variables override defaults."""
        monkeypatch.setenv("DUALSCAN_LINE_TOLERANCE", "2")
        monkeypatch.setenv("DUALSCAN_CLUSTER_SCOPE", "project")

        settings = Settings(_env_file=None)

        assert settings.line_tolerance == 2
        assert settings.cluster_scope == "project"

    def test_structural_can_be_disabled(self):
        """A structural file limit of zero disables structural analysis."""
        assert not Settings(_env_file=None, max_structural_files=0).structural_enabled

    @pytest.mark.parametrize("field,value", [
        ("similarity_threshold", 0),
        ("similarity_threshold", 7),
        ("line_tolerance", -1),
        ("max_workers", -2),
        ("unit_time_budget_seconds", -1.0),
    ])
    def test_invalid_values(self, field, value):
        """Out-of-range values are rejected."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})
