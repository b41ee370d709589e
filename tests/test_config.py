"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from void_imagegen.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        settings = Settings()

        assert settings.work_dir == Path.home() / ".cache" / "void-imagegen" / "bootstrap"
        assert (
            settings.log_dir
            == Path.home() / ".local" / "state" / "void-imagegen" / "logs"
        )
        assert settings.verify_checksum is True
        assert settings.download_timeout == 3600
        assert settings.extra_excludes == []
        assert settings.log_level == "INFO"

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "VOID_IMG_VERIFY_CHECKSUM": "false",
                "VOID_IMG_LOG_LEVEL": "DEBUG",
                "VOID_IMG_DOWNLOAD_TIMEOUT": "600",
            },
        ):
            settings = Settings()
            assert settings.verify_checksum is False
            assert settings.log_level == "DEBUG"
            assert settings.download_timeout == 600

    def test_guest_installer_from_env(self) -> None:
        """Guest installer path should be configurable via env."""
        with patch.dict(os.environ, {"VOID_IMG_GUEST_INSTALLER": "/opt/tools/install"}):
            settings = Settings()
            assert settings.guest_installer == Path("/opt/tools/install")

    def test_extra_excludes_from_env(self) -> None:
        """List settings should parse JSON from env."""
        with patch.dict(os.environ, {"VOID_IMG_EXTRA_EXCLUDES": '["var/log/*"]'}):
            settings = Settings()
            assert settings.extra_excludes == ["var/log/*"]

    def test_download_timeout_lower_bound(self) -> None:
        """Timeouts below one minute should be rejected."""
        with pytest.raises(ValidationError):
            Settings(download_timeout=5)


class TestGetSettings:
    """Test get_settings function."""

    def test_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        assert isinstance(get_settings(), Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_valid_json(self) -> None:
        """Output should be valid JSON with all fields."""
        data = json.loads(print_settings_json(Settings()))
        for key in (
            "work_dir",
            "log_dir",
            "guest_installer",
            "verify_checksum",
            "download_timeout",
            "extra_excludes",
            "log_level",
        ):
            assert key in data

    def test_uses_given_settings(self) -> None:
        """Explicit settings should be rendered as given."""
        data = json.loads(print_settings_json(Settings(log_level="ERROR")))
        assert data["log_level"] == "ERROR"
