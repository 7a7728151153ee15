"""
Engine Configuration
====================
Model constants and simulation defaults.

Constants are plain module attributes.  Run-level settings (trial count,
horizon, seed, worker count, log level) are collected in ``SimulationConfig``
and can be overridden through environment variables prefixed with
``CRYPTO_RISK_``:

    CRYPTO_RISK_NUM_TRIALS=10000
    CRYPTO_RISK_HORIZON_DAYS=30
    CRYPTO_RISK_SEED=42
    CRYPTO_RISK_MAX_WORKERS=4
    CRYPTO_RISK_LOG_LEVEL=DEBUG
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Calendar
# ─────────────────────────────────────────────────────────────
DAYS_PER_YEAR: int = 365
HOURS_PER_YEAR: int = DAYS_PER_YEAR * 24

# ─────────────────────────────────────────────────────────────
# Credit model constants
# ─────────────────────────────────────────────────────────────
# Minimum loss severity even when collateral nominally covers the loan
BASELINE_LGD: float = 0.30

# Calibrated wrong-way-risk slope: PD × (1 + drawdown × leverage × 2)
WRONG_WAY_RISK_FACTOR: float = 2.0

# SOFR baseline used by the risk-adjusted return ratios
RISK_FREE_RATE: float = 0.045

# Volatility proxy used when expected loss is zero
MIN_VOLATILITY_PROXY: float = 0.01

# ─────────────────────────────────────────────────────────────
# Simulation defaults
# ─────────────────────────────────────────────────────────────
DEFAULT_NUM_TRIALS: int = 1_000
DEFAULT_HORIZON_DAYS: int = 30
DEFAULT_SEED: int = 42
DEFAULT_NUM_PATHS: int = 100
CONFIDENCE_LEVELS = (0.95, 0.99)

PD_CURVE_HORIZONS = (1, 3, 5, 7, 14, 30, 60, 90, 180, 365)

_ENV_PREFIX = "CRYPTO_RISK_"


def _get_env(key: str, default: Any, value_type: type = str) -> Any:
    """
    Read ``CRYPTO_RISK_<KEY>`` and convert it, falling back to ``default``.

    Malformed values are logged and ignored rather than raised.
    """
    env_name = f"{_ENV_PREFIX}{key.upper()}"
    env_value = os.environ.get(env_name)

    if env_value is None:
        return default

    try:
        if value_type == int:
            return int(env_value)
        if value_type == float:
            return float(env_value)
        return env_value
    except (ValueError, TypeError):
        logger.warning("Ignoring malformed %s=%r", env_name, env_value)
        return default


@dataclass(frozen=True)
class SimulationConfig:
    """
    Run-level Monte Carlo settings.

    Attributes
    ----------
    num_trials : int
        Number of Monte Carlo trials per simulation.
    horizon_days : int
        Simulation horizon in days.
    seed : int, optional
        Base seed; ``None`` draws fresh OS entropy on every run.
    max_workers : int
        Worker threads for the trial loop (1 = sequential).
    log_level : str
        Logging level name used by the pipeline script.
    """
    num_trials: int = DEFAULT_NUM_TRIALS
    horizon_days: int = DEFAULT_HORIZON_DAYS
    seed: Optional[int] = DEFAULT_SEED
    max_workers: int = 1
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "SimulationConfig":
        """Build a config from ``CRYPTO_RISK_*`` environment variables."""
        seed = _get_env("SEED", DEFAULT_SEED, int)
        return cls(
            num_trials=max(1, _get_env("NUM_TRIALS", DEFAULT_NUM_TRIALS, int)),
            horizon_days=max(1, _get_env("HORIZON_DAYS", DEFAULT_HORIZON_DAYS, int)),
            seed=seed if seed >= 0 else None,
            max_workers=max(1, _get_env("MAX_WORKERS", 1, int)),
            log_level=str(_get_env("LOG_LEVEL", "INFO", str)).upper(),
        )
