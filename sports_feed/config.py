"""
Configuration management using YAML files and dataclasses.

This module defines all configuration dataclasses and provides loading
from YAML files with defaults. Configuration sections:
- MonitoringConfig: Polling intervals, routing thresholds, quiet hours
- SourceConfig: One RSS feed to poll
- DedupConfig: Fingerprint store and title similarity settings
- RetryConfig: Retry budget and backoff schedule
- BudgetConfig: Spend limits, unit costs and pause/resume webhooks
- ProviderConfig: LLM rewrite provider settings
- RewriteConfig: Which rewrite styles to produce
- NotifyConfig: Discord, email and webhook sinks
- StorageConfig: Where JSON state files live
- LoggingConfig: Logging behavior
- AppConfig: Root configuration container
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import os
from typing import Any

import yaml


@dataclass
class MonitoringConfig:
    """Configuration for the polling loop and story routing.

    Attributes:
        poll_interval_seconds: Seconds between polling cycles
        retry_interval_seconds: Seconds between retry-queue sweeps
        fetch_timeout_seconds: HTTP timeout for feed requests
        user_agent: HTTP User-Agent header string for feed requests
        breaking_threshold: Score at or above which a story is sent immediately
        trending_threshold: Score at or above which a story joins the hourly digest
        watching_threshold: Score at or above which a story joins the daily digest
        quiet_hours_enabled: Whether quiet hours downgrade immediate stories
        quiet_hours_start: UTC hour at which quiet hours begin
        quiet_hours_end: UTC hour at which quiet hours end
        quiet_hours_override: Score that still goes out immediately during quiet hours
        max_stories_per_cycle: Stories fully processed per cycle; the rest wait
        story_concurrency: Stories processed in parallel within a cycle
        inter_story_delay_seconds: Pause after each story to respect rate limits
        daily_digest_hour: UTC hour at which the daily digest goes out
        monitor_keywords: Keywords that flag a story as breaking in logs
    """

    poll_interval_seconds: float = 300.0
    retry_interval_seconds: float = 30.0
    fetch_timeout_seconds: float = 10.0
    user_agent: str = "Mozilla/5.0 (compatible; SportsFeed/1.0)"
    breaking_threshold: float = 8.0
    trending_threshold: float = 6.0
    watching_threshold: float = 4.0
    quiet_hours_enabled: bool = True
    quiet_hours_start: int = 23
    quiet_hours_end: int = 6
    quiet_hours_override: float = 9.0
    max_stories_per_cycle: int = 20
    story_concurrency: int = 2
    inter_story_delay_seconds: float = 2.0
    daily_digest_hour: int = 8
    monitor_keywords: list[str] = field(
        default_factory=lambda: [
            "breaking",
            "trade",
            "injury",
            "suspension",
            "fired",
            "hired",
            "championship",
            "playoff",
        ]
    )


@dataclass
class SourceConfig:
    """A single RSS news source.

    Attributes:
        name: Display name, also part of the story fingerprint
        url: Feed URL
        priority: Trust rank, 1 is the most trusted
        category: League or section label
        language: Feed language code
    """

    name: str
    url: str
    priority: int = 2
    category: str = "General"
    language: str = "en"


def _default_sources() -> list[SourceConfig]:
    return [
        SourceConfig("ESPN NFL", "https://www.espn.com/espn/rss/nfl/news", 1, "NFL"),
        SourceConfig("ESPN NBA", "https://www.espn.com/espn/rss/nba/news", 1, "NBA"),
        SourceConfig("ESPN MLB", "https://www.espn.com/espn/rss/mlb/news", 1, "MLB"),
        SourceConfig("CBS Sports", "https://www.cbssports.com/rss/headlines", 2, "General"),
        SourceConfig("Yahoo Sports", "https://sports.yahoo.com/rss/", 2, "General"),
    ]


@dataclass
class DedupConfig:
    """Configuration for story deduplication.

    Attributes:
        max_fingerprints: Size at which the seen set is cleared entirely
        persist: Whether the seen set is written to disk between runs
        title_dedup: Whether near-identical titles within a cycle are dropped
        title_similarity_threshold: Fuzzy match threshold (0-100) for title similarity
    """

    max_fingerprints: int = 10000
    persist: bool = True
    title_dedup: bool = True
    title_similarity_threshold: int = 92


@dataclass
class RetryConfig:
    """Configuration for the retry coordinator.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        delays_seconds: Backoff schedule; the last value repeats once exhausted
    """

    max_retries: int = 3
    delays_seconds: list[float] = field(default_factory=lambda: [1.0, 5.0, 15.0])


@dataclass
class BudgetConfig:
    """Configuration for cost tracking.

    Attributes:
        daily_limit: Daily spend ceiling in dollars
        weekly_limit: Weekly spend ceiling in dollars
        monthly_limit: Monthly spend ceiling in dollars
        warning_ratio: Fraction of the daily limit that triggers a warning
        cost_per_api_request: Unit cost of one external API request
        cost_per_llm_token: Unit cost of one language-model token
        cost_per_video: Unit cost of one generated video
        cost_per_upload: Unit cost of one upload
        pause_webhook_url: Optional URL notified when the pipeline pauses
        resume_webhook_url: Optional URL notified when the pipeline resumes
    """

    daily_limit: float = 100.0
    weekly_limit: float = 500.0
    monthly_limit: float = 2000.0
    warning_ratio: float = 0.8
    cost_per_api_request: float = 0.001
    cost_per_llm_token: float = 0.00002
    cost_per_video: float = 1.50
    cost_per_upload: float = 0.0
    pause_webhook_url: str | None = None
    resume_webhook_url: str | None = None


@dataclass
class ProviderConfig:
    """Configuration for the LLM rewrite provider.

    Attributes:
        name: Provider name ("openai", "openai_compatible" or "gemini")
        model: Model identifier
        base_url: Base URL for the provider API
        api_key_env: Environment variable name containing the API key
        api_key: Optional inline API key (overrides env var)
        timeout_seconds: HTTP timeout for rewrite calls
        temperature: Sampling temperature
        max_tokens: Maximum output tokens per rewrite
        trust_env: Whether to respect system proxy settings for API requests
    """

    name: str = "openai"
    model: str = "gpt-3.5-turbo"
    base_url: str = "https://api.openai.com/v1"
    api_key_env: str = "OPENAI_API_KEY"
    api_key: str | None = None
    timeout_seconds: float = 30.0
    temperature: float = 0.7
    max_tokens: int = 800
    trust_env: bool = True


@dataclass
class RewriteConfig:
    """Configuration for story rewriting.

    Attributes:
        enabled: Whether stories are rewritten at all
        styles: Rewrite styles to produce for each story
        language: Output language passed to the prompt
        target_originality: Originality score (0-100) below which a rewrite is flagged in logs
    """

    enabled: bool = True
    styles: list[str] = field(default_factory=lambda: ["breaking", "analysis", "quick"])
    language: str = "English"
    target_originality: float = 85.0


@dataclass
class NotifyConfig:
    """Configuration for notification sinks.

    Attributes:
        discord_webhook_url: Discord webhook for story alerts
        webhook_url: Generic JSON webhook for story alerts
        alert_webhook_url: Webhook for budget and escalation alerts
        email_enabled: Whether email notifications are sent
        smtp_host: SMTP server host
        smtp_port: SMTP server port
        smtp_username: SMTP login
        smtp_password_env: Environment variable holding the SMTP password
        smtp_use_tls: Whether STARTTLS is used
        email_from: Sender address
        email_to: Recipient addresses
        timeout_seconds: HTTP/SMTP timeout for notifications
    """

    discord_webhook_url: str | None = None
    webhook_url: str | None = None
    alert_webhook_url: str | None = None
    email_enabled: bool = False
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password_env: str = "EMAIL_PASSWORD"
    smtp_use_tls: bool = True
    email_from: str | None = None
    email_to: list[str] = field(default_factory=list)
    timeout_seconds: float = 15.0


@dataclass
class StorageConfig:
    """Configuration for persisted state.

    Attributes:
        state_dir: Directory holding the JSON state files
        story_log_cap: Number of processed stories kept in the story log
    """

    state_dir: str = "logs"
    story_log_cap: int = 1000


@dataclass
class LoggingConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
        console: Whether to log to console
        file: Whether to log to file
        format: Log file format ("jsonl" or "plain")
        filename: Name of the main log file, written under the state directory
    """

    level: str = "INFO"
    console: bool = True
    file: bool = True
    format: str = "jsonl"
    filename: str = "run.jsonl"


@dataclass
class AppConfig:
    """Root configuration container aggregating all config sections."""

    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    sources: list[SourceConfig] = field(default_factory=_default_sources)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    rewrite: RewriteConfig = field(default_factory=RewriteConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Budget limits and unit costs that may be overridden from the environment.
_ENV_FLOAT_OVERRIDES = {
    "DAILY_BUDGET_LIMIT": ("budget", "daily_limit"),
    "WEEKLY_BUDGET_LIMIT": ("budget", "weekly_limit"),
    "MONTHLY_BUDGET_LIMIT": ("budget", "monthly_limit"),
    "COST_PER_API_REQUEST": ("budget", "cost_per_api_request"),
    "COST_PER_LLM_TOKEN": ("budget", "cost_per_llm_token"),
    "COST_PER_VIDEO": ("budget", "cost_per_video"),
    "COST_PER_UPLOAD": ("budget", "cost_per_upload"),
}

_ENV_STR_OVERRIDES = {
    "DISCORD_WEBHOOK_URL": ("notify", "discord_webhook_url"),
    "ALERT_WEBHOOK_URL": ("notify", "alert_webhook_url"),
    "PAUSE_WEBHOOK_URL": ("budget", "pause_webhook_url"),
    "RESUME_WEBHOOK_URL": ("budget", "resume_webhook_url"),
    "SPORTS_FEED_STATE_DIR": ("storage", "state_dir"),
}


def load_config(path: str | None) -> AppConfig:
    """Load configuration from a YAML file with defaults."""
    if not path:
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    return _merge_config(AppConfig(), raw)


def _merge_config(base: AppConfig, raw: dict[str, Any]) -> AppConfig:
    """Merge raw YAML config into base AppConfig."""
    data = _asdict(base)
    for key, value in raw.items():
        if key not in data:
            continue
        if isinstance(value, dict) and isinstance(data[key], dict):
            data[key].update(value)
        else:
            data[key] = value
    return _fromdict(data)


def _asdict(cfg: AppConfig) -> dict[str, Any]:
    """Convert AppConfig to nested dictionary."""
    return asdict(cfg)


def _fromdict(data: dict[str, Any]) -> AppConfig:
    """Reconstruct AppConfig from nested dictionary."""
    return AppConfig(
        monitoring=MonitoringConfig(**data["monitoring"]),
        sources=[_source_fromdict(item) for item in data.get("sources") or []],
        dedup=DedupConfig(**data["dedup"]),
        retry=RetryConfig(**data["retry"]),
        budget=BudgetConfig(**data["budget"]),
        provider=ProviderConfig(**data["provider"]),
        rewrite=RewriteConfig(**data["rewrite"]),
        notify=NotifyConfig(**data["notify"]),
        storage=StorageConfig(**data["storage"]),
        logging=LoggingConfig(**data["logging"]),
    )


def _source_fromdict(item: dict[str, Any] | SourceConfig) -> SourceConfig:
    if isinstance(item, SourceConfig):
        return item
    return SourceConfig(**item)


def apply_env_overrides(cfg: AppConfig) -> AppConfig:
    """Apply budget, webhook and path overrides from environment variables.

    Invalid numeric values are ignored.
    """
    for env_name, (section, attr) in _ENV_FLOAT_OVERRIDES.items():
        value = os.getenv(env_name)
        if not value:
            continue
        try:
            setattr(getattr(cfg, section), attr, float(value))
        except ValueError:
            continue
    for env_name, (section, attr) in _ENV_STR_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            setattr(getattr(cfg, section), attr, value)
    max_retries = os.getenv("MAX_RETRY_ATTEMPTS")
    if max_retries and max_retries.isdigit():
        cfg.retry.max_retries = int(max_retries)
    return cfg


def get_api_key(cfg: ProviderConfig) -> str | None:
    """Get API key from inline config or environment variable."""
    if cfg.api_key:
        return cfg.api_key
    return os.getenv(cfg.api_key_env)


def get_smtp_password(cfg: NotifyConfig) -> str | None:
    """Get the SMTP password from the configured environment variable."""
    return os.getenv(cfg.smtp_password_env)
