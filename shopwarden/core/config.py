"""
Centralized shopwarden Configuration
====================================
Collects every tunable of the safety core into frozen dataclass sections
loaded from the environment (and an optional ``.env`` file):

1. Typed configuration via dataclass sections
2. Sensible defaults matching the documented behavior
3. A single import for all settings
"""

from __future__ import annotations

import dataclasses
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: Optional[int] = 0) -> int:
    value = int(os.getenv(name, str(default)))
    if minimum is None:
        return value
    return max(minimum, value)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    return max(minimum, float(os.getenv(name, str(default))))


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


@dataclass(frozen=True)
class AutonomyConfig:
    """Outcome-scored autonomy gate."""
    threshold: int = -10                     # net score below this closes the gate
    max_events: int = 500

    @classmethod
    def from_env(cls) -> "AutonomyConfig":
        return cls(
            threshold=_env_int("SHOPWARDEN_AUTONOMY_THRESHOLD", -10, minimum=None),
            max_events=_env_int("SHOPWARDEN_AUTONOMY_MAX_EVENTS", 500, minimum=1),
        )


@dataclass(frozen=True)
class LaneConfig:
    """Critical lane (serialized write queue)."""
    inter_task_delay: float = 0.05           # seconds between settlements

    @classmethod
    def from_env(cls) -> "LaneConfig":
        return cls(inter_task_delay=_env_float("SHOPWARDEN_LANE_DELAY_SEC", 0.05))


@dataclass(frozen=True)
class HealerConfig:
    """Self-healer retry budget and base delays (seconds)."""
    max_retries: int = 3
    retry_delay: float = 1.0
    retry_delay_long: float = 5.0
    backoff_delay: float = 30.0
    token_refresh_delay: float = 2.0
    max_error_records: int = 500

    @classmethod
    def from_env(cls) -> "HealerConfig":
        return cls(
            max_retries=_env_int("SHOPWARDEN_HEAL_MAX_RETRIES", 3, minimum=1),
            retry_delay=_env_float("SHOPWARDEN_HEAL_RETRY_DELAY_SEC", 1.0),
            retry_delay_long=_env_float("SHOPWARDEN_HEAL_RETRY_DELAY_LONG_SEC", 5.0),
            backoff_delay=_env_float("SHOPWARDEN_HEAL_BACKOFF_SEC", 30.0),
            token_refresh_delay=_env_float("SHOPWARDEN_HEAL_TOKEN_REFRESH_SEC", 2.0),
            max_error_records=_env_int("SHOPWARDEN_HEAL_MAX_ERRORS", 500, minimum=1),
        )


@dataclass(frozen=True)
class SnapshotConfig:
    """Snapshot retention (0 = keep everything)."""
    max_snapshots: int = 50

    @classmethod
    def from_env(cls) -> "SnapshotConfig":
        return cls(max_snapshots=_env_int("SHOPWARDEN_MAX_SNAPSHOTS", 50))


@dataclass(frozen=True)
class SchedulerConfig:
    """Cron scheduler."""
    timezone: str = "Europe/Istanbul"
    misfire_grace_seconds: int = 60

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        return cls(
            timezone=_env_str("SHOPWARDEN_TIMEZONE", "Europe/Istanbul"),
            misfire_grace_seconds=_env_int("SHOPWARDEN_MISFIRE_GRACE_SEC", 60, minimum=1),
        )


@dataclass(frozen=True)
class PricingConfig:
    """Pricing decision engine."""
    policy_path: str = "workspace/BRAND.md"
    max_decisions: int = 200
    low_stock_units: int = 5
    low_stock_ratio: float = 0.7
    scarcity_increase_pct: float = 5.0
    probe_increase_pct: float = 10.0
    min_price_change: float = 1.0
    persist_kill_switch: bool = True

    @classmethod
    def from_env(cls) -> "PricingConfig":
        return cls(
            policy_path=_env_str("SHOPWARDEN_POLICY_PATH", "workspace/BRAND.md"),
            max_decisions=_env_int("SHOPWARDEN_MAX_DECISIONS", 200, minimum=1),
            low_stock_units=_env_int("SHOPWARDEN_LOW_STOCK_UNITS", 5, minimum=1),
            low_stock_ratio=_env_float("SHOPWARDEN_LOW_STOCK_RATIO", 0.7),
            scarcity_increase_pct=_env_float("SHOPWARDEN_SCARCITY_INCREASE_PCT", 5.0),
            probe_increase_pct=_env_float("SHOPWARDEN_PROBE_INCREASE_PCT", 10.0),
            min_price_change=_env_float("SHOPWARDEN_MIN_PRICE_CHANGE", 1.0),
            persist_kill_switch=_env_bool("SHOPWARDEN_PERSIST_KILL_SWITCH", True),
        )


class ShopwardenConfig:
    """Aggregated configuration container."""

    def __init__(
        self,
        state_dir: Path,
        autonomy: AutonomyConfig,
        lane: LaneConfig,
        healer: HealerConfig,
        snapshots: SnapshotConfig,
        scheduler: SchedulerConfig,
        pricing: PricingConfig,
    ):
        self.state_dir = Path(state_dir)
        self.autonomy = autonomy
        self.lane = lane
        self.healer = healer
        self.snapshots = snapshots
        self.scheduler = scheduler
        self.pricing = pricing

    # Persisted document locations under the per-installation state dir.

    @property
    def autonomy_file(self) -> Path:
        return self.state_dir / "memory" / "autonomy.json"

    @property
    def error_log_file(self) -> Path:
        return self.state_dir / "memory" / "error-log.json"

    @property
    def kill_switch_file(self) -> Path:
        return self.state_dir / "memory" / "kill-switch.json"

    @property
    def jobs_file(self) -> Path:
        return self.state_dir / "cron" / "jobs.json"

    @property
    def snapshot_dir(self) -> Path:
        return self.state_dir / "snapshots"

    @property
    def lock_file(self) -> Path:
        return self.state_dir / "shopwarden.lock"

    @classmethod
    def load(cls, state_dir: Optional[str] = None) -> "ShopwardenConfig":
        """Load all configuration from environment variables."""
        load_dotenv()
        root = state_dir or _env_str("SHOPWARDEN_STATE_DIR", str(Path.home() / ".shopwarden"))
        return cls(
            state_dir=Path(root).expanduser(),
            autonomy=AutonomyConfig.from_env(),
            lane=LaneConfig.from_env(),
            healer=HealerConfig.from_env(),
            snapshots=SnapshotConfig.from_env(),
            scheduler=SchedulerConfig.from_env(),
            pricing=PricingConfig.from_env(),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize all config for status/debug inspection."""
        result: Dict[str, Any] = {"state_dir": str(self.state_dir)}
        for section_name in ["autonomy", "lane", "healer", "snapshots", "scheduler", "pricing"]:
            result[section_name] = dataclasses.asdict(getattr(self, section_name))
        return result


# ── Module-level singleton ──────────────────────────────────────

_config: Optional[ShopwardenConfig] = None
_config_lock = threading.Lock()


def get_config() -> ShopwardenConfig:
    """Get or create the singleton ShopwardenConfig."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = ShopwardenConfig.load()
    return _config


def reload_config() -> ShopwardenConfig:
    """Force reload configuration from environment."""
    global _config
    with _config_lock:
        _config = ShopwardenConfig.load()
    return _config
