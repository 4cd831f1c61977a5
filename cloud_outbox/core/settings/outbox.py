"""Outbox relay, retry and retention settings."""

from __future__ import annotations

import math

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_outbox_yaml_source


class OutboxSettings(BaseSettings):
    """Tunables for the relay dispatcher and retention sweeper.

    Environment variables use OUTBOX_ prefix.
    Example: OUTBOX_BATCH_SIZE=50, OUTBOX_MAX_RETRIES=5, OUTBOX_RETENTION_DAYS=7
    """

    # ─────────────────────────────────────────────────────
    # Enable/disable toggles
    # ─────────────────────────────────────────────────────
    enabled: bool = Field(
        default=True,
        description="Run the relay dispatcher inside the API process.",
    )
    sweeper_enabled: bool = Field(
        default=True,
        description="Schedule the retention sweeper inside the API process.",
    )

    # ─────────────────────────────────────────────────────
    # Claim / polling
    # ─────────────────────────────────────────────────────
    batch_size: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Maximum number of events claimed per dispatcher iteration.",
    )
    poll_interval: float = Field(
        default=5.0,
        gt=0,
        le=300.0,
        description="Seconds between dispatcher iterations, regardless of outcome.",
    )
    claim_timeout: float = Field(
        default=5.0,
        gt=0,
        le=120.0,
        description="Upper bound (seconds) on a single claim statement.",
    )

    # ─────────────────────────────────────────────────────
    # Publishing
    # ─────────────────────────────────────────────────────
    publish_timeout: float = Field(
        default=10.0,
        gt=0,
        le=300.0,
        description="Upper bound (seconds) on one publish attempt; a timeout counts as a failure.",
    )
    publish_concurrency: int = Field(
        default=8,
        ge=1,
        le=256,
        description="Events of one batch published concurrently.",
    )

    # ─────────────────────────────────────────────────────
    # Retry / dead letter
    # ─────────────────────────────────────────────────────
    max_retries: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Failed publish attempts after which an event is dead-lettered.",
    )
    retry_base_delay: float = Field(
        default=1.0,
        ge=0,
        le=3600.0,
        description="Backoff (seconds) before the first retry; doubles on every further attempt.",
    )
    retry_max_delay: float = Field(
        default=300.0,
        ge=0,
        le=86400.0,
        description="Cap (seconds) on the retry backoff.",
    )
    retry_jitter: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Random spread applied to each backoff (0.2 = +/-20%) so failed batches do not retry in lockstep.",
    )

    # ─────────────────────────────────────────────────────
    # Stale claim recovery
    # ─────────────────────────────────────────────────────
    stale_after: float = Field(
        default=300.0,
        gt=0,
        description="Seconds an event may stay processing before it is released back to pending.",
    )
    stale_check_interval: float = Field(
        default=60.0,
        gt=0,
        description="Seconds between stale-claim releases.",
    )

    # ─────────────────────────────────────────────────────
    # Retention
    # ─────────────────────────────────────────────────────
    retention_days: int = Field(
        default=30,
        ge=1,
        le=3650,
        description="Published events older than this are deleted by the sweeper.",
    )
    sweep_interval_hours: float = Field(
        default=24.0,
        gt=0,
        le=24.0 * 30,
        description="Hours between retention sweeps.",
    )

    # ─────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────
    shutdown_timeout: float = Field(
        default=30.0,
        gt=0,
        le=600.0,
        description="Seconds stop() waits for an in-flight batch before cancelling it.",
    )

    model_config = SettingsConfigDict(
        env_prefix="OUTBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_outbox_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _check_delays(self) -> OutboxSettings:
        if self.retry_max_delay < self.retry_base_delay:
            msg = "retry_max_delay must be greater than or equal to retry_base_delay"
            raise ValueError(msg)
        if self.stale_after <= self.publish_timeout:
            msg = "stale_after must exceed publish_timeout or in-flight publishes get released"
            raise ValueError(msg)
        # Longest a claimed event can wait for its publish slot
        rounds = math.ceil(self.batch_size / self.publish_concurrency)
        batch_window = rounds * self.publish_timeout + self.claim_timeout
        if self.stale_after <= batch_window:
            msg = (
                f"stale_after ({self.stale_after}s) must exceed the time one batch can take "
                f"({batch_window}s = ceil(batch_size / publish_concurrency) * publish_timeout "
                f"+ claim_timeout) or queued events get released"
            )
            raise ValueError(msg)
        return self
