"""Tests for config loading."""

from __future__ import annotations

import os
import textwrap

import pytest

from inaproc_sync.config import DEFAULTS, build_config, get_api_token, load_config


class TestLoadConfigFromYaml:
    def test_load_config_from_yaml(self, tmp_path):
        """Values from config.yaml override the defaults key by key."""
        config_content = textwrap.dedent("""\
            api:
              base_url: https://data.inaproc.id/api
              timeout_seconds: 15
              retry:
                max_retries: 5
            sync:
              batch_size: 250
            storage:
              base_path: /srv/inaproc
              format: parquet
        """)
        config_path = tmp_path / "config.yaml"
        config_path.write_text(config_content)

        cfg = load_config(str(config_path))
        assert cfg.api["timeout_seconds"] == 15
        assert cfg.api["retry"]["max_retries"] == 5
        # untouched nested keys keep their defaults
        assert cfg.api["retry"]["base_delay_seconds"] == 1.0
        assert cfg.api["extra_params"] == {"kode_klpd": "K34"}
        assert cfg.sync["batch_size"] == 250
        assert cfg.sync["max_pages"] == 50
        assert cfg.storage_format == "parquet"
        assert cfg.base_path == "/srv/inaproc"
        assert cfg.state_path == os.path.join("/srv/inaproc", "sync-state.json")

    def test_missing_file_uses_defaults(self, tmp_path):
        """A missing config file yields the built-in defaults."""
        cfg = load_config(str(tmp_path / "nope.yaml"))
        assert cfg.raw == DEFAULTS
        assert cfg.storage_format == "xlsx"

    def test_empty_file_uses_defaults(self, tmp_path):
        """An empty config file yields the built-in defaults."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("")
        assert load_config(str(config_path)).raw == DEFAULTS


class TestBuildConfig:
    def test_defaults_are_not_shared(self):
        """Mutating a loaded config leaves DEFAULTS untouched."""
        cfg = build_config()
        cfg.api["retry"]["max_retries"] = 99
        assert DEFAULTS["api"]["retry"]["max_retries"] == 3

    def test_unknown_storage_format_rejected(self):
        """Only xlsx and parquet are accepted."""
        with pytest.raises(ValueError, match="storage.format"):
            build_config({"storage": {"format": "csv"}})


class TestBasePathOverride:
    def test_sync_location_wins(self, monkeypatch):
        """SYNC_LOCATION overrides every other base path."""
        monkeypatch.setenv("SYNC_LOCATION", "/mnt/share")
        monkeypatch.setenv("INAPROC_DATA_PATH", "/other")
        assert build_config().base_path == "/mnt/share"

    def test_inaproc_data_path(self, monkeypatch):
        """INAPROC_DATA_PATH overrides the configured base path."""
        monkeypatch.setenv("INAPROC_DATA_PATH", "/other")
        assert build_config().base_path == "/other"


class TestGetApiToken:
    def test_get_api_token_missing(self, monkeypatch):
        """No token in the environment raises RuntimeError."""
        monkeypatch.delenv("JWT_TOKEN", raising=False)
        monkeypatch.delenv("INAPROC_TOKEN", raising=False)
        with pytest.raises(RuntimeError, match="Missing API token"):
            get_api_token()

    def test_get_api_token_present(self, monkeypatch):
        """INAPROC_TOKEN is used when JWT_TOKEN is absent."""
        monkeypatch.delenv("JWT_TOKEN", raising=False)
        monkeypatch.setenv("INAPROC_TOKEN", "tok-123")
        assert get_api_token() == "tok-123"

    def test_jwt_token_preferred(self, monkeypatch):
        """JWT_TOKEN wins over INAPROC_TOKEN."""
        monkeypatch.setenv("JWT_TOKEN", "jwt")
        monkeypatch.setenv("INAPROC_TOKEN", "other")
        assert get_api_token() == "jwt"
