"""Configuration loader for the job import pipeline.

Reads config.yaml and returns typed configuration objects that the
pipeline, feed client and queue consume.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"

FEED_URLS_ENV = "JOB_FEED_URLS"


@dataclass
class QueueConfig:
    """Worker pool, retry and retention settings for the job queue."""

    concurrency: int = 5
    attempts: int = 3
    backoff_seconds: float = 2.0
    rate_limit_max: int = 100  # items per rate_limit_period_seconds, all workers combined
    rate_limit_period_seconds: float = 1.0
    keep_completed_seconds: float = 3600
    keep_completed_count: int = 1000
    keep_failed_seconds: float = 86400


@dataclass
class PipelineConfig:
    """Top-level pipeline configuration."""

    feed_urls: list[str] = field(default_factory=list)
    data_dir: str = "data"
    log_level: str = "INFO"
    request_timeout_seconds: float = 30.0
    user_agent: str = "Job-Importer-Bot/1.0"
    max_fetch_workers: int = 8
    shutdown_timeout_seconds: float = 10.0
    queue: QueueConfig = field(default_factory=QueueConfig)


def _feed_urls_from_env() -> list[str]:
    raw = os.environ.get(FEED_URLS_ENV, "")
    return [url.strip() for url in raw.split(",") if url.strip()]


def load_config(path: Path | str | None = None) -> PipelineConfig:
    """Load the pipeline configuration from a YAML file.

    JOB_FEED_URLS (comma-separated) overrides the configured feed list.
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        logger.warning("Config file not found at %s, using defaults", config_path)
        config = PipelineConfig()
    else:
        with open(config_path, "r") as f:
            raw = yaml.safe_load(f)
        config = _from_raw(raw or {})

    env_urls = _feed_urls_from_env()
    if env_urls:
        logger.info("Using %d feed URLs from %s", len(env_urls), FEED_URLS_ENV)
        config.feed_urls = env_urls

    return config


def _from_raw(raw: dict) -> PipelineConfig:
    queue_raw = raw.get("queue", {}) or {}
    defaults = QueueConfig()
    queue = QueueConfig(
        concurrency=queue_raw.get("concurrency", defaults.concurrency),
        attempts=queue_raw.get("attempts", defaults.attempts),
        backoff_seconds=queue_raw.get("backoff_seconds", defaults.backoff_seconds),
        rate_limit_max=queue_raw.get("rate_limit_max", defaults.rate_limit_max),
        rate_limit_period_seconds=queue_raw.get(
            "rate_limit_period_seconds", defaults.rate_limit_period_seconds
        ),
        keep_completed_seconds=queue_raw.get(
            "keep_completed_seconds", defaults.keep_completed_seconds
        ),
        keep_completed_count=queue_raw.get(
            "keep_completed_count", defaults.keep_completed_count
        ),
        keep_failed_seconds=queue_raw.get("keep_failed_seconds", defaults.keep_failed_seconds),
    )

    return PipelineConfig(
        feed_urls=raw.get("feed_urls", []) or [],
        data_dir=raw.get("data_dir", "data"),
        log_level=raw.get("log_level", "INFO"),
        request_timeout_seconds=raw.get("request_timeout_seconds", 30.0),
        user_agent=raw.get("user_agent", PipelineConfig.user_agent),
        max_fetch_workers=raw.get("max_fetch_workers", 8),
        shutdown_timeout_seconds=raw.get("shutdown_timeout_seconds", 10.0),
        queue=queue,
    )
