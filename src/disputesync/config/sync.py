"""Synchronization defaults for workers, retries and token handling."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .env import env_float, env_int

DEFAULT_TOKEN_REFRESH_BUFFER_MS = 5 * 60 * 1000
DEFAULT_MAX_ATTEMPTS = 6
DEFAULT_BACKOFF_BASE_SECONDS = 2.0
DEFAULT_BACKOFF_MAX_SECONDS = 600.0
DEFAULT_BATCH_SIZE = 50


@dataclass(frozen=True, slots=True)
class SyncConfig:
    token_refresh_buffer_ms: int = DEFAULT_TOKEN_REFRESH_BUFFER_MS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS
    backoff_max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS
    event_workers: int = 4
    outbound_workers: int = 4
    batch_size: int = DEFAULT_BATCH_SIZE
    poll_interval_seconds: float = 300.0
    sweep_interval_seconds: float = 900.0
    idle_sleep_seconds: float = 1.0
    rate_limit_blocking: bool = True
    rate_limit_wait_seconds: float = 30.0
    case_write_retries: int = 3


def get_sync_config() -> SyncConfig:
    blocking = os.getenv("DISPUTESYNC_RATE_LIMIT_BLOCKING", "true").strip().lower()
    return SyncConfig(
        token_refresh_buffer_ms=env_int(
            "DISPUTESYNC_TOKEN_BUFFER_MS", DEFAULT_TOKEN_REFRESH_BUFFER_MS
        ),
        max_attempts=env_int("DISPUTESYNC_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
        backoff_base_seconds=env_float(
            "DISPUTESYNC_BACKOFF_BASE_SECONDS", DEFAULT_BACKOFF_BASE_SECONDS
        ),
        backoff_max_seconds=env_float(
            "DISPUTESYNC_BACKOFF_MAX_SECONDS", DEFAULT_BACKOFF_MAX_SECONDS
        ),
        event_workers=env_int("DISPUTESYNC_EVENT_WORKERS", 4),
        outbound_workers=env_int("DISPUTESYNC_OUTBOUND_WORKERS", 4),
        batch_size=env_int("DISPUTESYNC_BATCH_SIZE", DEFAULT_BATCH_SIZE),
        poll_interval_seconds=env_float("DISPUTESYNC_POLL_INTERVAL_SECONDS", 300.0),
        sweep_interval_seconds=env_float("DISPUTESYNC_SWEEP_INTERVAL_SECONDS", 900.0),
        rate_limit_blocking=blocking not in {"0", "false", "no", "off"},
        rate_limit_wait_seconds=env_float("DISPUTESYNC_RATE_LIMIT_WAIT_SECONDS", 30.0),
    )
