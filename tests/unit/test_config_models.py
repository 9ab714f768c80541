"""Unit tests for configuration Pydantic models."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from couchsnap.config.models import (
    FeedConfig,
    LogFormat,
    PlatformConfig,
    RetryConfig,
    ServerConfig,
    SnapshotConfig,
)


class TestServerConfig:
    def test_defaults(self):
        cfg = ServerConfig()
        assert cfg.url == "http://localhost:5984"
        assert cfg.username is None
        assert cfg.auth_token is None

    def test_trailing_slash_stripped(self):
        assert ServerConfig(url="https://acct.cloudant.com/").url == (
            "https://acct.cloudant.com"
        )

    def test_url_scheme_required(self):
        with pytest.raises(ValidationError, match="http"):
            ServerConfig(url="localhost:5984")

    def test_password_is_secret(self):
        cfg = ServerConfig(username="admin", password="s3cret")
        assert cfg.password is not None
        assert cfg.password.get_secret_value() == "s3cret"
        assert "s3cret" not in repr(cfg)
        assert "s3cret" not in cfg.model_dump_json()

    def test_username_without_password_rejected(self):
        with pytest.raises(ValidationError, match="together"):
            ServerConfig(username="admin")

    def test_basic_and_token_auth_exclusive(self):
        with pytest.raises(ValidationError, match="not both"):
            ServerConfig(username="admin", password="x", auth_token="tok")


class TestSnapshotConfig:
    def test_defaults(self):
        cfg = SnapshotConfig()
        assert cfg.database is None
        assert cfg.include_deletions is False
        assert cfg.output_dir == Path(".")

    def test_blank_database_treated_as_missing(self):
        assert SnapshotConfig(database="   ").database is None


class TestRetryAndFeedConfig:
    def test_retry_defaults(self):
        cfg = RetryConfig()
        assert cfg.max_attempts == 3
        assert cfg.max_wait_seconds == 5.0

    def test_retry_requires_one_attempt(self):
        with pytest.raises(ValidationError):
            RetryConfig(max_attempts=0)

    def test_batch_size_positive(self):
        with pytest.raises(ValidationError):
            FeedConfig(batch_size=0)


class TestPlatformConfig:
    def test_defaults(self):
        cfg = PlatformConfig()
        assert cfg.log_level == "INFO"
        assert cfg.log_format == LogFormat.CONSOLE
        assert cfg.feed.batch_size == 1000

    def test_log_level_normalised(self):
        assert PlatformConfig(log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError, match="log level"):
            PlatformConfig(log_level="chatty")

    def test_unknown_top_level_key_rejected(self):
        with pytest.raises(ValidationError):
            PlatformConfig.model_validate({"sinks": []})
