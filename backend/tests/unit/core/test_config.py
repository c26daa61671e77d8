"""
Unit tests for application settings.
"""

import pytest
from pydantic import ValidationError

from unified_cache.constants import APP_VERSION, resolve_build_id
from unified_cache.core.config import Settings, get_settings


class TestSettings:
    """Test settings validation and derived properties."""

    def test_environment_from_env(self):
        settings = get_settings()

        assert settings.ENVIRONMENT == "test"
        assert settings.BUILD_ID == "test-build"
        assert settings.redis_enabled is False
        assert get_settings() is settings
        assert settings.SERVICE_VERSION == APP_VERSION

    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            Settings(ENVIRONMENT="qa")

    def test_log_level_normalized(self):
        assert Settings(LOG_LEVEL="warning").LOG_LEVEL == "WARNING"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(LOG_LEVEL="chatty")

    @pytest.mark.parametrize(
        "url", ["redis://localhost:6379/0", "rediss://cache:6380", "unix:///tmp/redis.sock"]
    )
    def test_redis_url_schemes(self, url):
        settings = Settings(REDIS_URL=url)

        assert settings.REDIS_URL == url
        assert settings.redis_enabled is True

    def test_invalid_redis_url(self):
        with pytest.raises(ValidationError):
            Settings(REDIS_URL="http://localhost:6379")

    def test_empty_redis_url_disables_redis(self):
        assert Settings(REDIS_URL="").redis_enabled is False

    @pytest.mark.parametrize("key", ["abc", "zz" * 32, "00" * 31])
    def test_malformed_encryption_key(self, key):
        with pytest.raises(ValidationError):
            Settings(MESSAGE_ENCRYPTION_KEY=key)

    def test_missing_encryption_key_allowed(self):
        assert Settings(MESSAGE_ENCRYPTION_KEY="").MESSAGE_ENCRYPTION_KEY is None

    def test_environment_properties(self):
        assert Settings(ENVIRONMENT="development").is_development is True
        assert Settings(ENVIRONMENT="production").is_production is True
        assert Settings(ENVIRONMENT="staging").is_development is False

    def test_cdn_purge_enabled(self):
        assert Settings().cdn_purge_enabled is False
        assert Settings(
            CLOUDFLARE_ZONE_ID="zone", CLOUDFLARE_API_TOKEN="token"
        ).cdn_purge_enabled is True

    def test_lock_bounds(self):
        with pytest.raises(ValidationError):
            Settings(CACHE_LOCK_TTL_MS=10)


class TestBuildId:
    """Test build identifier resolution."""

    def test_explicit_build_id(self, monkeypatch):
        monkeypatch.setenv("BUILD_ID", "release-7")

        assert resolve_build_id() == "release-7"

    def test_commit_sha_fallback(self, monkeypatch):
        monkeypatch.delenv("BUILD_ID")
        monkeypatch.setenv("VERCEL_GIT_COMMIT_SHA", "abcdef1234567890")

        assert resolve_build_id() == "abcdef1"

    def test_timestamp_fallback(self, monkeypatch):
        monkeypatch.delenv("BUILD_ID")
        monkeypatch.delenv("VERCEL_GIT_COMMIT_SHA", raising=False)

        assert resolve_build_id().isdigit()
