"""Tests for gitstore.config_schema -- unified configuration models."""

import pytest
from pydantic import ValidationError

from gitstore.config_schema import (
    LoggingConfig,
    StoreConfig,
    SyncConfig,
    UnifiedConfig,
    build_config,
)


class TestUnifiedConfig:
    def test_zero_config(self):
        config = UnifiedConfig()
        assert config.store.branch == "main"
        assert config.store.remote_name == "origin"
        assert config.sync.mode == "auto"
        assert config.logging.level == "INFO"

    def test_frozen(self):
        config = UnifiedConfig()
        with pytest.raises(ValidationError):
            config.sync = SyncConfig(mode="batched")


class TestStoreConfig:
    def test_instance_defaults_to_hostname(self, monkeypatch):
        monkeypatch.setattr("gitstore.config_schema.socket.gethostname", lambda: "box")
        assert StoreConfig().instance == "box"

    def test_email_default(self):
        assert StoreConfig(instance="laptop").email == "laptop@gitstore"
        assert StoreConfig(instance="a", author_email="me@x.org").email == "me@x.org"

    @pytest.mark.parametrize("branch", ["", "../main", "a b"])
    def test_rejects_unsafe_branch(self, branch):
        with pytest.raises(ValidationError):
            StoreConfig(branch=branch)


class TestSyncConfig:
    def test_mode_must_be_known(self):
        with pytest.raises(ValidationError):
            SyncConfig(mode="sometimes")

    def test_backoff_delay_doubles_and_caps(self):
        config = SyncConfig(backoff_base=0.5, backoff_max=3.0)
        assert [config.backoff_delay(i) for i in range(5)] == [0.5, 1.0, 2.0, 3.0, 3.0]

    def test_backoff_max_below_base_rejected(self):
        with pytest.raises(ValidationError, match="backoff_max"):
            SyncConfig(backoff_base=2.0, backoff_max=1.0)

    @pytest.mark.parametrize("retries", [-1, 51])
    def test_retry_bounds(self, retries):
        with pytest.raises(ValidationError):
            SyncConfig(max_retries=retries)


class TestLoggingConfig:
    def test_defaults(self):
        config = LoggingConfig()
        assert config.level == "INFO"
        assert config.file is None
        assert config.format == "text"

    def test_rejects_unknown_format(self):
        with pytest.raises(ValidationError):
            LoggingConfig(format="xml")


class TestBuildConfig:
    def test_empty_input(self):
        assert build_config({}) == UnifiedConfig()
        assert build_config(None) == UnifiedConfig()

    def test_sections_applied(self):
        config = build_config(
            {
                "store": {"path": "/data/x", "instance": "x", "remote_url": "/srv/r.git"},
                "sync": {"mode": "batched", "max_retries": 2},
                "logging": {"format": "json"},
            }
        )
        assert config.store.path == "/data/x"
        assert config.sync.max_retries == 2
        assert config.logging.format == "json"

    def test_unknown_sections_ignored_with_warning(self, caplog):
        with caplog.at_level("WARNING", logger="gitstore.config_schema"):
            config = build_config({"future_section": {"k": 1}})
        assert config == UnifiedConfig(store=config.store)
        assert "future_section" in caplog.text

    def test_invalid_section_raises(self):
        with pytest.raises(ValidationError):
            build_config({"sync": {"max_retries": "many"}})
