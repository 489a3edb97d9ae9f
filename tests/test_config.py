"""Tests for configuration loading."""

import tempfile

import yaml

from jobimport.config import FEED_URLS_ENV, PipelineConfig, load_config


def test_load_default_config(monkeypatch):
    """Loading the project's config.yaml should work."""
    monkeypatch.delenv(FEED_URLS_ENV, raising=False)
    config = load_config()
    assert isinstance(config, PipelineConfig)
    assert len(config.feed_urls) > 0
    assert config.request_timeout_seconds == 30
    assert config.queue.concurrency == 5


def test_load_missing_file(monkeypatch):
    """Missing config file returns defaults."""
    monkeypatch.delenv(FEED_URLS_ENV, raising=False)
    config = load_config("/nonexistent/path.yaml")
    assert isinstance(config, PipelineConfig)
    assert config.feed_urls == []
    assert config.queue.attempts == 3
    assert config.queue.backoff_seconds == 2.0
    assert config.queue.rate_limit_max == 100
    assert config.user_agent == "Job-Importer-Bot/1.0"


def test_custom_config(monkeypatch):
    """A custom config should parse correctly, including queue overrides."""
    monkeypatch.delenv(FEED_URLS_ENV, raising=False)
    data = {
        "feed_urls": ["https://example.com/feed.xml"],
        "data_dir": "test_data",
        "log_level": "DEBUG",
        "queue": {"concurrency": 2, "attempts": 5},
    }

    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(data, f)
        f.flush()
        config = load_config(f.name)

    assert config.feed_urls == ["https://example.com/feed.xml"]
    assert config.data_dir == "test_data"
    assert config.log_level == "DEBUG"
    assert config.queue.concurrency == 2
    assert config.queue.attempts == 5
    # Unspecified queue settings keep their defaults
    assert config.queue.keep_failed_seconds == 86400


def test_env_overrides_feed_urls(monkeypatch):
    monkeypatch.setenv(FEED_URLS_ENV, " https://a.example/feed , https://b.example/feed,")
    config = load_config("/nonexistent/path.yaml")
    assert config.feed_urls == ["https://a.example/feed", "https://b.example/feed"]
