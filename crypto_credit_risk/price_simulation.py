"""
Correlated Price Simulation
===========================
Joint terminal-price draws for the collateral universe and synthetic
hourly price histories, both driven by the same Cholesky machinery.

Mathematical Foundation:
    Correlation:   ρ = L L^T
    Shocks:        z = L ε,  ε ~ N(0, I)
    GBM terminal:  S_T = S_0 · exp(−½σ²T + σ√T z) · shock
    Volatility:    σ = σ_asset · volatility_multiplier(scenario)
    Horizon:       T = days / 365
"""

import copy
import logging
from typing import Dict, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from crypto_credit_risk.assets import (
    AssetType,
    COLLATERAL_UNIVERSE,
    DEFAULT_CORRELATIONS,
    DEFAULT_HISTORY_START_PRICES,
    annualized_volatility,
)
from crypto_credit_risk.config import DAYS_PER_YEAR, HOURS_PER_YEAR
from crypto_credit_risk.exceptions import InvalidPriceError
from crypto_credit_risk.portfolio import validate_prices
from crypto_credit_risk.scenarios import ScenarioParameters
from crypto_credit_risk.statistics import build_correlation_matrix, cholesky_factor

logger = logging.getLogger(__name__)


class CorrelatedPriceSimulator:
    """
    One-period correlated GBM simulator for the collateral universe.

    The random source is injected; the simulator never touches global
    random state.

    Parameters
    ----------
    scenario : ScenarioParameters
        Supplies the volatility multiplier, correlation overrides and
        deterministic asset shocks.
    rng : np.random.Generator
        Random number generator owned by the caller.
    volatilities : Mapping[AssetType, float], optional
        Base annualized volatilities (default: asset configuration).
    assets : sequence of AssetType, optional
        Simulated universe in a fixed order (default: full universe).
    """

    def __init__(
        self,
        scenario: ScenarioParameters,
        rng: np.random.Generator,
        volatilities: Optional[Mapping[AssetType, float]] = None,
        assets: Optional[Sequence[AssetType]] = None,
    ):
        self.scenario = scenario
        self.rng = rng
        self.assets = tuple(assets) if assets is not None else COLLATERAL_UNIVERSE

        base_vols = dict(volatilities) if volatilities is not None else {}
        self.volatilities = np.array([
            base_vols.get(asset, annualized_volatility(asset)) for asset in self.assets
        ]) * scenario.volatility_multiplier
        self.shocks = np.array([scenario.asset_shock(asset) for asset in self.assets])

        self.correlation = build_correlation_matrix(self.assets, scenario.correlation_overrides)
        self.cholesky = cholesky_factor(self.correlation)

    def correlated_normals(self, size: Optional[int] = None) -> np.ndarray:
        """
        Standard normals with the target correlation.

        Returns
        -------
        np.ndarray
            Shape (N,) for a single draw, or (size, N).
        """
        if size is None:
            return self.cholesky @ self.rng.standard_normal(len(self.assets))
        eps = self.rng.standard_normal((size, len(self.assets)))
        return eps @ self.cholesky.T

    def with_rng(self, rng: np.random.Generator) -> "CorrelatedPriceSimulator":
        """Shallow copy sharing the correlation factor but drawing from ``rng``."""
        clone = copy.copy(self)
        clone.rng = rng
        return clone

    def _terminal_prices(self, spot: np.ndarray, z: np.ndarray, horizon_days: float) -> np.ndarray:
        T = horizon_days / DAYS_PER_YEAR
        drift = -0.5 * self.volatilities ** 2 * T
        diffusion = self.volatilities * np.sqrt(T) * z
        return spot * np.exp(drift + diffusion) * self.shocks

    def simulate(
        self,
        current_prices: Mapping[AssetType, float],
        horizon_days: float,
    ) -> Dict[AssetType, float]:
        """
        Draw one joint outcome of period-end prices.

        Parameters
        ----------
        current_prices : Mapping[AssetType, float]
            Spot USD price per asset.
        horizon_days : float
            Horizon in days.

        Returns
        -------
        dict
            Simulated price per asset.
        """
        spot = np.array([current_prices[asset] for asset in self.assets], dtype=float)
        terminal = self._terminal_prices(spot, self.correlated_normals(), horizon_days)
        return dict(zip(self.assets, terminal.tolist()))

    def simulate_many(
        self,
        current_prices: Mapping[AssetType, float],
        horizon_days: float,
        num_draws: int,
    ) -> pd.DataFrame:
        """
        Vectorized batch of independent joint draws (diagnostics, charts).

        Returns
        -------
        pd.DataFrame
            num_draws × N terminal prices, one column per asset ticker.
        """
        prices = validate_prices(current_prices, self.assets)
        spot = np.array([prices[asset] for asset in self.assets])
        terminal = self._terminal_prices(spot, self.correlated_normals(num_draws), horizon_days)
        return pd.DataFrame(terminal, columns=[asset.value for asset in self.assets])


def generate_historical_prices(
    current_prices: Mapping[AssetType, float],
    rng: np.random.Generator,
    start_prices: Optional[Mapping[AssetType, float]] = None,
    years: float = 4.0,
    end: Optional[pd.Timestamp] = None,
    volatilities: Optional[Mapping[AssetType, float]] = None,
    correlations: Optional[Mapping] = None,
    pin_terminal: bool = True,
) -> pd.DataFrame:
    """
    Synthetic hourly close prices ending at the current market snapshot.

    Algorithm:
        1. steps = years · 8760
        2. drift_i = ln(target_i / start_i) / steps
        3. Hourly shocks z_t = L ε_t   (same Cholesky factor as the simulator)
        4. r_t = drift_i + σ_i/√8760 · z_t
        5. P_t = start_i · exp(Σ r)

    With ``pin_terminal`` the shocks of every asset are demeaned over the
    path so the final close equals the target exactly; otherwise it matches
    only in expectation of the log price.

    Parameters
    ----------
    current_prices : Mapping[AssetType, float]
        Target (final) price per asset.
    rng : np.random.Generator
        Random number generator.
    start_prices : Mapping[AssetType, float], optional
        Prices at the start of the history (defaults to configuration).
    years : float
        Length of history.
    end : pd.Timestamp, optional
        Timestamp of the last bar (default: current hour).
    volatilities : Mapping[AssetType, float], optional
        Annualized volatilities (default: asset configuration).
    correlations : Mapping, optional
        Pair → correlation (default: configured correlations).
    pin_terminal : bool
        Force the last close onto the target.

    Returns
    -------
    pd.DataFrame
        Hourly close prices, DatetimeIndex, one column per asset ticker.

    Raises
    ------
    InvalidPriceError
        If a start or target price is missing, negative or zero (a log-price
        path cannot reach zero).
    """
    targets = validate_prices(current_prices)
    assets = [asset for asset in COLLATERAL_UNIVERSE if asset in targets]
    starts = validate_prices(start_prices or DEFAULT_HISTORY_START_PRICES, assets)
    volatilities = volatilities or {}

    steps = max(1, int(round(years * HOURS_PER_YEAR)))
    n = len(assets)

    start = np.array([starts[a] for a in assets])
    target = np.array([targets[a] for a in assets])
    non_positive = [a.value for a, s, t in zip(assets, start, target) if s <= 0 or t <= 0]
    if non_positive:
        raise InvalidPriceError(
            f"Historical paths need positive start and target prices: {non_positive}"
        )
    drift = np.log(target / start) / steps
    hourly_vol = np.array([
        volatilities.get(a, annualized_volatility(a)) for a in assets
    ]) / np.sqrt(HOURS_PER_YEAR)

    L = cholesky_factor(build_correlation_matrix(assets, correlations or DEFAULT_CORRELATIONS))
    shocks = rng.standard_normal((steps, n)) @ L.T
    if pin_terminal:
        shocks -= shocks.mean(axis=0)

    log_paths = np.log(start) + np.cumsum(drift + hourly_vol * shocks, axis=0)
    closes = np.exp(log_paths)

    if end is None:
        end = pd.Timestamp.now().floor("h")
    index = pd.date_range(end=end, periods=steps, freq="h", name="timestamp")

    logger.debug("Generated %d hourly bars for %s", steps, [a.value for a in assets])
    return pd.DataFrame(closes, index=index, columns=[a.value for a in assets])
