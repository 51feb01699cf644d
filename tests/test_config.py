"""Test suite for settings and capability detection."""

import sys

from docshift.config import Capabilities, Settings

from conftest import MISSING


class TestSettings:
    """Tests for Settings defaults and derived values."""

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.max_upload_mb == 200
        assert settings.max_upload_bytes == 200 * 1024 * 1024
        assert settings.rasterizer == "pymupdf"
        assert settings.library_fallback is True

    def test_zero_timeout_disables_limit(self):
        assert Settings(_env_file=None, tool_timeout=0).timeout_seconds is None
        assert Settings(_env_file=None, tool_timeout=None).timeout_seconds is None
        assert Settings(_env_file=None, tool_timeout=5).timeout_seconds == 5

    def test_environment_prefix(self, monkeypatch):
        """Test that settings are read from DOCSHIFT_ variables."""
        monkeypatch.setenv("DOCSHIFT_MAX_UPLOAD_MB", "12")
        monkeypatch.setenv("DOCSHIFT_QPDF_BINARY", "/opt/qpdf/bin/qpdf")
        settings = Settings(_env_file=None)
        assert settings.max_upload_mb == 12
        assert settings.binary_for("qpdf") == "/opt/qpdf/bin/qpdf"


class TestCapabilities:
    """Tests for Capabilities.detect."""

    def test_missing_binaries_are_unavailable(self, settings):
        capabilities = Capabilities.detect(settings)
        assert capabilities.as_dict() == {
            "ghostscript": False,
            "qpdf": False,
            "soffice": False,
            "pdftoppm": False,
        }

    def test_resolvable_binary_is_available(self):
        settings = Settings(_env_file=None, gs_binary=sys.executable, qpdf_binary=MISSING)
        capabilities = Capabilities.detect(settings)
        assert capabilities.has("ghostscript")
        assert not capabilities.has("qpdf")

    def test_disabled_tool_is_unavailable(self):
        settings = Settings(_env_file=None, gs_binary=sys.executable, disabled_tools=["Ghostscript"])
        assert not Capabilities.detect(settings).has("ghostscript")

    def test_unknown_tool(self):
        assert not Capabilities({}).has("imagemagick")
