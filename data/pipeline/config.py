"""
Pipeline Configuration

Defines all configuration for the data pipeline including:
- Exchange source configurations (endpoints, failure ceilings, pacing)
- Validation thresholds
- Storage settings
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional


@dataclass
class SourceConfig:
    """Configuration for one exchange source."""

    name: str
    endpoints: List[str]  # Primary first, then mirrors

    # Failure policy
    max_failures: int = 5  # Consecutive failures before giving up
    timeout: float = 10.0  # Seconds per HTTP request
    retry_initial_delay: float = 2.0
    retry_max_delay: float = 30.0
    retry_jitter: bool = False

    # Pacing
    page_delay: float = 0.3  # Seconds between page requests
    pause_every: int = 100  # Extra pause every N accumulated records
    pause_seconds: float = 2.0

    page_limit: int = 1000
    enabled: bool = True

    def __post_init__(self):
        if self.max_failures < 1:
            raise ValueError(f"{self.name}: max_failures must be >= 1")
        if not self.endpoints:
            raise ValueError(f"{self.name}: at least one endpoint is required")


def default_sources() -> Dict[str, SourceConfig]:
    """Default exchange configurations."""
    return {
        "binance": SourceConfig(
            name="Binance",
            endpoints=[
                "https://api.binance.com",
                "https://api1.binance.com",
                "https://api2.binance.com",
                "https://api3.binance.com",
                "https://api4.binance.com",
            ],
            max_failures=10,
            timeout=5.0,
            page_limit=1000,
        ),
        "okx": SourceConfig(
            name="OKX",
            endpoints=[
                "https://www.okx.com",
                "https://aws.okx.com",
                "https://okx.com",
                "https://www.okex.com",
            ],
            max_failures=5,
            timeout=10.0,
            page_limit=100,
        ),
        "huobi": SourceConfig(
            name="Huobi",
            endpoints=[
                "https://api.huobi.pro",
                "https://api-aws.huobi.pro",
                "https://api.huobi.com",
            ],
            max_failures=5,
            timeout=10.0,
            page_limit=2000,
        ),
    }


@dataclass
class ValidationConfig:
    """Validator thresholds."""

    # Cross-exchange close divergence, percent of the mean close
    max_price_diff_pct: float = 1.0

    # Relative deviation from the neighbour-average volume (2.0 = 200%)
    volume_spike_ratio: float = 2.0

    # Close-to-close jump (0.2 = 20%)
    max_price_change: float = 0.2


@dataclass
class StorageConfig:
    """Storage configuration."""

    data_dir: str = "./data"

    validated_file: str = "btc_price_validated.json"
    anomalies_file: str = "btc_price_anomalies.json"
    analysis_file: str = "btc_price_analysis.json"

    # Raw per-exchange snapshots of each fetch
    save_raw: bool = True

    @classmethod
    def from_env(cls) -> "StorageConfig":
        """Create from environment variables."""
        return cls(
            data_dir=os.getenv("BTC_DATA_DIR", "./data"),
            save_raw=os.getenv("BTC_SAVE_RAW", "1") not in ("0", "false", "False"),
        )

    @property
    def path(self) -> Path:
        return Path(self.data_dir)


@dataclass
class PipelineConfig:
    """Complete pipeline configuration."""

    sources: Dict[str, SourceConfig] = field(default_factory=default_sources)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig.from_env)

    symbol: str = "BTCUSDT"
    history_start: str = "2017-07-01"  # Full-fetch start date (UTC)
    max_workers: Optional[int] = None  # Defaults to one worker per source

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create configuration from environment variables."""
        return cls(
            storage=StorageConfig.from_env(),
            history_start=os.getenv("BTC_HISTORY_START", "2017-07-01"),
        )

    def enabled_sources(self) -> List[SourceConfig]:
        """Sources that should be fetched, in configuration order."""
        return [s for s in self.sources.values() if s.enabled]

    def validate(self) -> List[str]:
        """Validate configuration. Returns list of issues."""
        issues = []

        if not self.enabled_sources():
            issues.append("No data sources enabled")

        if not self.storage.data_dir:
            issues.append("Data directory not configured")

        return issues
