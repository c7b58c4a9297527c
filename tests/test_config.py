"""Tests for settings resolution."""

import pytest
from pydantic import ValidationError

from stackgraph.config import Settings


class TestSettings:
    """Tests for Settings class."""

    def test_defaults(self):
        """Test default settings."""
        settings = Settings.resolve(environ={})

        assert settings.max_workers == 4
        assert settings.timeout_seconds is None
        assert settings.namespace == "stackgraph"
        assert settings.publish_outputs is True

    def test_precedence(self):
        """Test that env overrides the file and explicit overrides win."""
        file_settings = {"max_workers": 2, "namespace": "hrs"}
        environ = {"STACKGRAPH_MAX_WORKERS": "3", "STACKGRAPH_TIMEOUT_SECONDS": "30"}

        from_env = Settings.resolve(file_settings, environ)
        assert from_env.max_workers == 3
        assert from_env.timeout_seconds == 30.0
        assert from_env.namespace == "hrs"

        overridden = Settings.resolve(file_settings, environ, max_workers=8, timeout_seconds=None)
        assert overridden.max_workers == 8
        assert overridden.timeout_seconds == 30.0

    def test_env_boolean(self):
        """Test parsing booleans from the environment."""
        settings = Settings.resolve(environ={"STACKGRAPH_PUBLISH_OUTPUTS": "false"})
        assert settings.publish_outputs is False

    def test_unknown_setting(self):
        """Test that misspelled settings are rejected."""
        with pytest.raises(ValidationError):
            Settings.resolve({"max_worker": 2}, environ={})

    @pytest.mark.parametrize("workers", [0, -1])
    def test_invalid_workers(self, workers):
        """Test that at least one worker is required."""
        with pytest.raises(ValidationError):
            Settings(max_workers=workers)
