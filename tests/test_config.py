"""Tests for settings parsing and error metadata."""

import pytest

from montage.config import Settings
from montage.constants.error_codes import is_retryable
from montage.exceptions import JobNotFoundError, RenderStalled, ValidationError


class TestSettings:
    """Tests for Settings."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("http://a,http://b", ["http://a", "http://b"]),
            ("http://a|http://b", ["http://a", "http://b"]),
            ('["http://a", "http://b"]', ["http://a", "http://b"]),
            (" http://a , ", ["http://a"]),
        ],
    )
    def test_cors_origins(self, raw, expected):
        assert Settings(_env_file=None, cors_origins_raw=raw).cors_origins == expected

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("RENDER_STALL_TIMEOUT_S", "12.5")
        monkeypatch.setenv("JOB_RETENTION_S", "0")
        settings = Settings(_env_file=None)
        assert settings.render_stall_timeout_s == 12.5
        assert settings.job_retention_s == 0


class TestExceptions:
    """Tests for exception bodies and codes."""

    def test_error_body(self):
        exc = JobNotFoundError("abc")
        assert exc.status_code == 404
        assert exc.to_error_body() == {"error": "Job not found: abc"}
        assert not exc.retryable

    def test_validation_default_message(self):
        assert ValidationError().message == "Missing required design data or options"
        assert ValidationError().status_code == 400

    def test_render_errors_are_retryable(self):
        assert RenderStalled(30).retryable
        assert is_retryable("RENDER_FAILED")
        assert not is_retryable("UNKNOWN_CODE")
