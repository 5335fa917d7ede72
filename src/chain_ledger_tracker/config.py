"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Chain Ledger Tracker application, loading and validating environment
variables (and an optional `.env` file) at startup.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

logger = logging.getLogger(__name__)


def _normalize_address(v: str | None, *, name: str) -> str | None:
    if v is None:
        return None
    v = v.strip()
    if not v:
        return None
    if not _ADDRESS_RE.match(v):
        raise ValueError(f"{name} must be a 0x-prefixed 40 hex character address")
    return v.lower()


class ChainSettings(BaseSettings):
    """JSON-RPC endpoint and retry policy."""

    model_config = SettingsConfigDict(env_prefix="RPC_", extra="ignore")

    rpc_url: str | None = Field(
        default=None,
        alias="RPC_URL",
        description="JSON-RPC HTTP(S) endpoint",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        alias="RPC_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Per-call timeout; a timed-out call counts as a failed attempt",
    )
    max_retries: int = Field(
        default=3,
        alias="RPC_MAX_RETRIES",
        ge=1,
        le=20,
        description="Attempts per RPC call before the error surfaces",
    )
    retry_delay_seconds: float = Field(
        default=0.1,
        alias="RPC_RETRY_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Backoff delay after the first failed attempt",
    )
    max_retry_delay_seconds: float = Field(
        default=0.5,
        alias="RPC_MAX_RETRY_DELAY_SECONDS",
        ge=0.0,
        le=300.0,
        description="Upper bound on the backoff delay",
    )
    retry_jitter: bool = Field(
        default=False,
        alias="RPC_RETRY_JITTER",
        description="Randomize backoff delays (useful when several trackers share one provider)",
    )

    @field_validator("rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC_URL must be an HTTP(S) endpoint")
        return v.strip()


class TrackerSettings(BaseSettings):
    """Tracked address and on-disk locations."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    address: str | None = Field(
        default=None,
        alias="TRACKED_ADDRESS",
        description="Address whose incoming/outgoing transactions are tracked",
    )
    start_block: int = Field(
        default=1,
        alias="START_BLOCK",
        description="Lower block bound; nothing below it is ever scanned",
    )
    ledger_dir: Path = Field(
        default=Path("."),
        alias="LEDGER_DIR",
        description="Directory holding <address>.csv and <address>_progress.json",
    )

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str | None) -> str | None:
        return _normalize_address(v, name="TRACKED_ADDRESS")

    @field_validator("start_block")
    @classmethod
    def clamp_start_block(cls, v: int) -> int:
        if v < 1:
            logger.warning("START_BLOCK=%d is below 1, using 1", v)
            return 1
        return v

    @property
    def ledger_path(self) -> Path | None:
        if not self.address:
            return None
        return self.ledger_dir / f"{self.address}.csv"

    @property
    def progress_path(self) -> Path | None:
        if not self.address:
            return None
        return self.ledger_dir / f"{self.address}_progress.json"


class ScanSettings(BaseSettings):
    """Batching, fan-out and scheduling of block scans."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    batch_size: int = Field(
        default=1000,
        alias="BATCH_SIZE",
        ge=1,
        le=1_000_000,
        description="Blocks per committed batch",
    )
    max_concurrent_requests: int = Field(
        default=20,
        alias="MAX_CONCURRENT_REQUESTS",
        ge=1,
        le=1000,
        description="Simultaneous in-flight block fetches",
    )
    request_delay_ms: int = Field(
        default=10,
        alias="REQUEST_DELAY_MS",
        ge=0,
        le=60_000,
        description="Delay between fetch chunks (milliseconds)",
    )
    interval_seconds: int = Field(
        default=60,
        alias="SCAN_INTERVAL_SECONDS",
        ge=1,
        le=24 * 3600,
        description="Scheduler interval for incremental updates",
    )
    max_blocks_per_update: int = Field(
        default=100,
        alias="MAX_BLOCKS_PER_UPDATE",
        ge=1,
        le=1_000_000,
        description="Upper bound on blocks scanned by one incremental update",
    )
    progress_enabled: bool | None = Field(
        default=None,
        alias="SCAN_PROGRESS",
        description="Force the TTY progress line on/off (default: on when stderr is a TTY)",
    )


class AnalysisSettings(BaseSettings):
    """Categorization thresholds and analysis outputs."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    agent_address: str | None = Field(
        default=None,
        alias="AGENT_ADDRESS",
        description="Optional address whose 1-unit stakes are reported separately",
    )
    stake_unit: Decimal = Field(
        default=Decimal("0.00000001"),
        alias="STAKE_UNIT",
        gt=Decimal("0"),
        description="Smallest game stake; tiers are 1x, 10x and 100x this value",
    )
    float_tolerance: Decimal = Field(
        default=Decimal("1e-10"),
        alias="FLOAT_TOLERANCE",
        ge=Decimal("0"),
        description="Tolerance for exact-match stake comparison",
    )
    deduplicate: bool = Field(
        default=False,
        alias="DEDUPLICATE_TRANSACTIONS",
        description="Aggregate only the first occurrence of a repeated transaction hash",
    )
    network_tx_count: str | None = Field(
        default=None,
        alias="NETWORK_TX_COUNT",
        description="Daily network transaction counts: an HTTP(S) URL or an inline list",
    )
    artifacts_dir: Path = Field(
        default=Path("artifacts"),
        alias="ARTIFACTS_DIR",
        description="Default directory for exported reports",
    )

    @field_validator("agent_address")
    @classmethod
    def validate_agent_address(cls, v: str | None) -> str | None:
        return _normalize_address(v, name="AGENT_ADDRESS")


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from chain_ledger_tracker.config import get_settings

        settings = get_settings()
        print(settings.tracker.address)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    chain: ChainSettings = Field(
        default_factory=lambda: ChainSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    tracker: TrackerSettings = Field(
        default_factory=lambda: TrackerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scan: ScanSettings = Field(
        default_factory=lambda: ScanSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    analysis: AnalysisSettings = Field(
        default_factory=lambda: AnalysisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted."""
        return {
            "chain": {
                "rpc_url": self._redact_url(self.chain.rpc_url) if self.chain.rpc_url else "(not set)",
                "request_timeout_seconds": str(self.chain.request_timeout_seconds),
                "max_retries": str(self.chain.max_retries),
            },
            "tracker": {
                "address": self.tracker.address or "(not set)",
                "start_block": str(self.tracker.start_block),
                "ledger_dir": str(self.tracker.ledger_dir),
            },
            "scan": {
                "batch_size": str(self.scan.batch_size),
                "max_concurrent_requests": str(self.scan.max_concurrent_requests),
                "request_delay_ms": str(self.scan.request_delay_ms),
                "interval_seconds": str(self.scan.interval_seconds),
                "max_blocks_per_update": str(self.scan.max_blocks_per_update),
            },
            "analysis": {
                "agent_address": self.analysis.agent_address or "(not set)",
                "stake_unit": str(self.analysis.stake_unit),
                "deduplicate": str(self.analysis.deduplicate),
                "network_tx_count": "(set)" if self.analysis.network_tx_count else "(not set)",
            },
            "log_level": self.log_level,
        }

    def validate_requirements(self, *, command: Literal["run", "scan", "analyze", "stats"]) -> None:
        """Validate command-specific requirements.

        A command whose required configuration is missing must refuse to
        start; nothing is scanned or written before this check passes.
        """
        if command in ("run", "scan"):
            if not self.chain.rpc_url:
                raise ValueError("RPC_URL is required to scan blocks")
        if command in ("run", "scan", "stats"):
            if not self.tracker.address:
                raise ValueError("TRACKED_ADDRESS is required")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
