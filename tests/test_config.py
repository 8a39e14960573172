from pathlib import Path

import yaml

from sports_feed.config import (
    AppConfig,
    apply_env_overrides,
    get_api_key,
    load_config,
)


def test_load_config_without_path_uses_defaults():
    cfg = load_config(None)
    assert isinstance(cfg, AppConfig)
    assert cfg.retry.max_retries == 3
    assert cfg.retry.delays_seconds == [1.0, 5.0, 15.0]
    assert cfg.budget.daily_limit == 100.0
    assert cfg.monitoring.breaking_threshold == 8.0
    assert [source.priority for source in cfg.sources][:3] == [1, 1, 1]


def test_load_config_merges_sections_and_sources(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "monitoring": {"poll_interval_seconds": 60, "quiet_hours_enabled": False},
                "budget": {"daily_limit": 25},
                "sources": [{"name": "Local Wire", "url": "https://wire.test/rss", "priority": 1}],
                "not_a_section": {"ignored": True},
            }
        ),
        encoding="utf-8",
    )
    cfg = load_config(str(path))

    assert cfg.monitoring.poll_interval_seconds == 60
    assert cfg.monitoring.quiet_hours_enabled is False
    assert cfg.monitoring.breaking_threshold == 8.0
    assert cfg.budget.daily_limit == 25
    assert cfg.budget.weekly_limit == 500.0
    assert len(cfg.sources) == 1
    assert cfg.sources[0].name == "Local Wire"
    assert cfg.sources[0].category == "General"


def test_env_overrides_apply_and_ignore_bad_values(monkeypatch):
    monkeypatch.setenv("DAILY_BUDGET_LIMIT", "42.5")
    monkeypatch.setenv("WEEKLY_BUDGET_LIMIT", "not-a-number")
    monkeypatch.setenv("ALERT_WEBHOOK_URL", "https://alerts.test/hook")
    monkeypatch.setenv("MAX_RETRY_ATTEMPTS", "5")
    cfg = apply_env_overrides(AppConfig())

    assert cfg.budget.daily_limit == 42.5
    assert cfg.budget.weekly_limit == 500.0
    assert cfg.notify.alert_webhook_url == "https://alerts.test/hook"
    assert cfg.retry.max_retries == 5


def test_get_api_key_prefers_inline_value(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "from-env")
    cfg = AppConfig().provider
    assert get_api_key(cfg) == "from-env"
    cfg.api_key = "inline"
    assert get_api_key(cfg) == "inline"
