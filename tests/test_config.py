"""
tests/test_config.py — YAML Config Loader
==========================================
"""

from __future__ import annotations

import textwrap

import pytest

from clubledger.config import LedgerConfig, load_config


@pytest.fixture(autouse=True)
def _no_webhook_env(monkeypatch):
    monkeypatch.delenv("NOTIFICATION_WEBHOOK_URL", raising=False)


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "absent.yaml")
        assert cfg == LedgerConfig()
        assert cfg.boost_min_credits == 10
        assert cfg.notification_webhook_url is None

    def test_yaml_sections(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(textwrap.dedent("""\
            platform_name: Night Readers
            credits:
              boost_min: 25
              sponsorship_max_days: 60
            point_values:
              JOIN_CLUB: 8
            outbox:
              batch_size: 10
              webhook_url: https://hooks.example.com/ledger
        """))

        cfg = load_config(path)

        assert cfg.platform_name == "Night Readers"
        assert cfg.boost_min_credits == 25
        assert cfg.sponsorship_max_days == 60
        assert cfg.boost_max_days == 30
        assert cfg.point_values == {"JOIN_CLUB": 8}
        assert cfg.outbox_batch_size == 10
        assert cfg.notification_webhook_url == "https://hooks.example.com/ledger"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == LedgerConfig()

    def test_env_overrides_webhook_url(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("outbox:\n  webhook_url: https://from-yaml.example.com\n")
        monkeypatch.setenv("NOTIFICATION_WEBHOOK_URL", "https://from-env.example.com")
        assert load_config(path).notification_webhook_url == "https://from-env.example.com"

    def test_non_numeric_value(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("credits:\n  boost_min: lots\n")
        with pytest.raises(ValueError):
            load_config(path)
