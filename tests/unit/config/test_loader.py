"""Tests for server settings resolution.

Settings resolve as: explicit overrides > MINIBEAST_* environment > defaults.
"""

import os
from pathlib import Path

import pytest

from minibeast.config.loader import load_settings
from minibeast.lib.errors import ConfigError


class TestDefaults:
    """Tests for settings with nothing configured."""

    def test_defaults(self) -> None:
        settings = load_settings(env_vars={})

        assert settings.host == "127.0.0.1"
        assert settings.port == 3002
        assert settings.data_dir == Path(".minibeast")
        assert settings.upload_dir == Path(".minibeast/uploads")
        assert settings.cors_origins == ["http://localhost:3000"]
        assert settings.debug is False

    def test_modules_dir_lives_under_data_dir(self) -> None:
        settings = load_settings(overrides={"data_dir": "/srv/mb"}, env_vars={})

        assert settings.modules_dir == Path("/srv/mb/deployments/modules")


class TestEnvironment:
    """Tests for MINIBEAST_* environment variables."""

    def test_environment_values_are_parsed(self) -> None:
        settings = load_settings(
            env_vars={
                "MINIBEAST_PORT": "4000",
                "MINIBEAST_DEBUG": "yes",
                "MINIBEAST_CORS_ORIGINS": "http://a.test, http://b.test",
            }
        )

        assert settings.port == 4000
        assert settings.debug is True
        assert settings.cors_origins == ["http://a.test", "http://b.test"]

    def test_invalid_environment_value_is_ignored(self) -> None:
        settings = load_settings(env_vars={"MINIBEAST_PORT": "not-a-port"})

        assert settings.port == 3002

    def test_upload_dir_follows_data_dir(self) -> None:
        settings = load_settings(env_vars={"MINIBEAST_DATA_DIR": "/var/lib/mb"})

        assert settings.upload_dir == Path("/var/lib/mb/uploads")

    def test_explicit_upload_dir_is_kept(self) -> None:
        settings = load_settings(
            env_vars={
                "MINIBEAST_DATA_DIR": "/var/lib/mb",
                "MINIBEAST_UPLOAD_DIR": "/tmp/uploads",
            }
        )

        assert settings.upload_dir == Path("/tmp/uploads")

    def test_env_file_is_loaded(
        self, tmp_path: Path, isolated_env: dict[str, str]
    ) -> None:
        os.environ.pop("MINIBEAST_PORT", None)
        env_file = tmp_path / ".env"
        env_file.write_text("MINIBEAST_PORT=5001\n")

        settings = load_settings(env_file=env_file)

        assert settings.port == 5001


class TestOverrides:
    """Tests for explicit overrides such as CLI flags."""

    def test_overrides_beat_environment(self) -> None:
        settings = load_settings(
            overrides={"port": 9000, "host": None},
            env_vars={"MINIBEAST_PORT": "4000", "MINIBEAST_HOST": "0.0.0.0"},
        )

        assert settings.port == 9000
        assert settings.host == "0.0.0.0"

    def test_out_of_range_port_raises_config_error(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            load_settings(overrides={"port": 70000}, env_vars={})

        assert exc_info.value.field == "server"
        assert "port" in exc_info.value.message
