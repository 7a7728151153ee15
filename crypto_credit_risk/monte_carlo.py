"""
Monte Carlo Credit Loss Engine (Flagship Module)
================================================
Combines correlated collateral prices and correlated borrower defaults
into an empirical portfolio loss distribution.

Mathematical Foundation:
    Per trial k:
        S^k      ~ CorrelatedPriceSimulator       (joint terminal prices)
        D^k      ~ CorrelatedDefaultSimulator     (joint default flags)
        Loss_i^k = D_i^k · max(0, P_i − Q_i S^k (1 − s_i · m_s))
        L^k      = Σ_i Loss_i^k
    Statistics on the ascending sort L_(0) ≤ … ≤ L_(n−1):
        VaR_p    = L_(⌊n·p⌋)
        CVaR_p   = mean(L_(⌊n·p⌋), …, L_(n−1))
    Marginal VaR_i = VaR95(L) − VaR95(L − Loss_i)

Reproducibility:
    Trial k draws from its own generator spawned by
    SeedSequence(seed).spawn(num_trials)[k], so a fixed seed yields
    identical results for any number of worker threads.
"""

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from crypto_credit_risk.assets import AssetType, COLLATERAL_UNIVERSE, annualized_volatility
from crypto_credit_risk.config import (
    CONFIDENCE_LEVELS,
    DAYS_PER_YEAR,
    DEFAULT_HORIZON_DAYS,
    DEFAULT_NUM_PATHS,
    DEFAULT_NUM_TRIALS,
)
from crypto_credit_risk.default_simulation import CorrelatedDefaultSimulator
from crypto_credit_risk.exceptions import InvalidPriceError, SimulationAborted
from crypto_credit_risk.portfolio import Portfolio, validate_prices
from crypto_credit_risk.price_simulation import CorrelatedPriceSimulator
from crypto_credit_risk.scenarios import ScenarioParameters

logger = logging.getLogger(__name__)

# Half-width of the rank window (as a fraction of trials) for component VaR
COMPONENT_VAR_WINDOW: float = 0.005


# ─────────────────────────────────────────────────────────────
# Result types
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LossStatistics:
    """Summary statistics of a simulated loss distribution (USD)."""
    mean_loss: float = 0.0
    median_loss: float = 0.0
    var_95: float = 0.0
    var_99: float = 0.0
    cvar_95: float = 0.0
    cvar_99: float = 0.0
    max_loss: float = 0.0
    probability_of_loss: float = 0.0


@dataclass(frozen=True)
class SimulationResult:
    """
    Outcome of one ``simulate_portfolio_loss`` call.

    Attributes
    ----------
    scenario_id : str
        Scenario that parameterized the run.
    num_trials : int
        Number of trials simulated.
    horizon_days : float
        Simulation horizon.
    losses : np.ndarray
        Read-only, ascending portfolio loss per trial (empty for an empty
        portfolio).
    statistics : LossStatistics
        Derived tail and location statistics.
    default_frequencies : Mapping[str, float]
        Read-only loan id → fraction of trials in which the loan defaulted.
    """
    scenario_id: str
    num_trials: int
    horizon_days: float
    losses: np.ndarray
    statistics: LossStatistics
    default_frequencies: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "default_frequencies", MappingProxyType(dict(self.default_frequencies))
        )

    @property
    def var_95(self) -> float:
        return self.statistics.var_95

    @property
    def var_99(self) -> float:
        return self.statistics.var_99

    @property
    def cvar_95(self) -> float:
        return self.statistics.cvar_95

    @property
    def cvar_99(self) -> float:
        return self.statistics.cvar_99


@dataclass(frozen=True)
class RiskContribution:
    """Per-loan contribution to portfolio VaR95."""
    loan_id: str
    marginal_var_95: float
    percent_of_total: float
    component_var_95: float
    default_frequency: float


@dataclass(frozen=True)
class PricePathSimulation:
    """Independent single-asset GBM price paths with daily steps."""
    asset: AssetType
    days: np.ndarray
    paths: np.ndarray

    def percentile_bands(self, percentiles=(5, 25, 50, 75, 95)) -> pd.DataFrame:
        """Cross-sectional price percentiles per day (fan-chart input)."""
        bands = np.percentile(self.paths, percentiles, axis=0).T
        return pd.DataFrame(
            bands,
            index=pd.Index(self.days, name="day"),
            columns=[f"p{p}" for p in percentiles],
        )


# ─────────────────────────────────────────────────────────────
# Distribution statistics
# ─────────────────────────────────────────────────────────────

def _tail_index(n: int, confidence_level: float) -> int:
    return min(int(math.floor(n * confidence_level)), n - 1)


def compute_var(sorted_losses: np.ndarray, confidence_level: float = 0.95) -> float:
    """
    Value-at-Risk from an ascending loss distribution.

    VaR_p is the sorted loss at index ⌊n·p⌋ (clamped to the last element).

    Parameters
    ----------
    sorted_losses : np.ndarray
        Portfolio losses sorted ascending.
    confidence_level : float
        Confidence level p (default: 0.95).

    Returns
    -------
    float
        VaR as a positive loss amount (0.0 for an empty distribution).
    """
    n = len(sorted_losses)
    if n == 0:
        return 0.0
    return float(sorted_losses[_tail_index(n, confidence_level)])


def compute_cvar(sorted_losses: np.ndarray, confidence_level: float = 0.95) -> float:
    """
    Conditional VaR (Expected Shortfall): mean of all losses at or above
    the VaR index.

    Returns
    -------
    float
        CVaR as a positive loss amount (0.0 for an empty distribution).
    """
    n = len(sorted_losses)
    if n == 0:
        return 0.0
    return float(np.mean(sorted_losses[_tail_index(n, confidence_level):]))


def compute_loss_statistics(sorted_losses: np.ndarray) -> LossStatistics:
    """Summary statistics of an ascending loss distribution."""
    n = len(sorted_losses)
    if n == 0:
        return LossStatistics()

    p_95, p_99 = CONFIDENCE_LEVELS
    return LossStatistics(
        mean_loss=float(np.mean(sorted_losses)),
        median_loss=float(sorted_losses[n // 2]),
        var_95=compute_var(sorted_losses, p_95),
        var_99=compute_var(sorted_losses, p_99),
        cvar_95=compute_cvar(sorted_losses, p_95),
        cvar_99=compute_cvar(sorted_losses, p_99),
        max_loss=float(sorted_losses[-1]),
        probability_of_loss=float(np.count_nonzero(sorted_losses > 0) / n),
    )


# ─────────────────────────────────────────────────────────────
# Engine
# ─────────────────────────────────────────────────────────────

class MonteCarloEngine:
    """
    Monte Carlo orchestrator for portfolio credit losses.

    Parameters
    ----------
    num_trials : int
        Trials per simulation (default: 1,000).
    seed : int, optional
        Base seed.  ``None`` draws fresh OS entropy on every call.
    max_workers : int
        Worker threads for the trial loop (1 = run inline).
    should_abort : callable, optional
        Zero-argument callable polled between trials; returning True
        stops the run with ``SimulationAborted``.
    """

    def __init__(
        self,
        num_trials: int = DEFAULT_NUM_TRIALS,
        seed: Optional[int] = None,
        max_workers: int = 1,
        should_abort: Optional[Callable[[], bool]] = None,
    ):
        if num_trials < 1:
            raise ValueError(f"num_trials must be >= 1, got {num_trials}")
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.num_trials = int(num_trials)
        self.seed = seed
        self.max_workers = int(max_workers)
        self.should_abort = should_abort

    @classmethod
    def from_config(cls, config, should_abort: Optional[Callable[[], bool]] = None) -> "MonteCarloEngine":
        """Build an engine from a ``SimulationConfig``."""
        return cls(
            num_trials=config.num_trials,
            seed=config.seed,
            max_workers=config.max_workers,
            should_abort=should_abort,
        )

    # ── trial loop ──────────────────────────────────────────

    def _simulate_loss_matrix(
        self,
        portfolio: Portfolio,
        current_prices: Mapping[AssetType, float],
        scenario: ScenarioParameters,
        horizon_days: float,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Run every trial and keep per-loan detail.

        Returns
        -------
        tuple[np.ndarray, np.ndarray]
            (losses, defaults), both shape (num_trials, num_loans).
        """
        loans = portfolio.loans
        assets = [a for a in COLLATERAL_UNIVERSE if any(l.asset_type is a for l in loans)]
        prices = validate_prices(current_prices, assets)

        price_simulator = CorrelatedPriceSimulator(scenario, rng=None, assets=assets)
        default_simulator = CorrelatedDefaultSimulator(scenario, rng=None)
        probabilities = default_simulator.default_probabilities(loans, horizon_days)

        asset_index = np.array([assets.index(loan.asset_type) for loan in loans])
        quantities = np.array([loan.collateral.quantity for loan in loans], dtype=float)
        principals = np.array([loan.principal_usd for loan in loans], dtype=float)
        haircuts = np.maximum(0.0, 1 - np.array([
            loan.collateral.characteristics.liquidation_slippage for loan in loans
        ]) * scenario.liquidation_slippage_multiplier)

        def run_trial(rng: np.random.Generator) -> Tuple[np.ndarray, np.ndarray]:
            simulated = price_simulator.with_rng(rng).simulate(prices, horizon_days)
            defaults = default_simulator.with_rng(rng).simulate(loans, horizon_days, probabilities)
            terminal = np.array([simulated[a] for a in assets])[asset_index]
            proceeds = quantities * terminal * haircuts
            return np.where(defaults, np.maximum(0.0, principals - proceeds), 0.0), defaults

        children = np.random.SeedSequence(self.seed).spawn(self.num_trials)
        stop = threading.Event()

        def run_batch(start: int, stop_at: int) -> List[Tuple[np.ndarray, np.ndarray]]:
            rows = []
            for k in range(start, stop_at):
                if stop.is_set() or (self.should_abort is not None and self.should_abort()):
                    stop.set()
                    break
                rows.append(run_trial(np.random.default_rng(children[k])))
            return rows

        if self.max_workers == 1:
            batches = [run_batch(0, self.num_trials)]
        else:
            batch_size = max(1, math.ceil(self.num_trials / (self.max_workers * 4)))
            bounds = [
                (start, min(start + batch_size, self.num_trials))
                for start in range(0, self.num_trials, batch_size)
            ]
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                batches = list(executor.map(lambda b: run_batch(*b), bounds))

        rows = [row for batch in batches for row in batch]
        if stop.is_set():
            logger.info("Simulation aborted after %d of %d trials", len(rows), self.num_trials)
            raise SimulationAborted(len(rows), self.num_trials)

        losses = np.vstack([r[0] for r in rows])
        defaults = np.vstack([r[1] for r in rows])
        return losses, defaults

    # ── public API ──────────────────────────────────────────

    def simulate_portfolio_loss(
        self,
        portfolio: Portfolio,
        current_prices: Mapping[AssetType, float],
        scenario: ScenarioParameters,
        horizon_days: float = DEFAULT_HORIZON_DAYS,
    ) -> SimulationResult:
        """
        Simulate the portfolio loss distribution under a scenario.

        Parameters
        ----------
        portfolio : Portfolio
            Loan book (not mutated).
        current_prices : Mapping[AssetType, float]
            Spot prices for every collateral asset in the book.
        scenario : ScenarioParameters
            Stress parameterization.
        horizon_days : float
            Horizon in days (default: 30).

        Returns
        -------
        SimulationResult

        Raises
        ------
        InvalidPriceError
            If a collateral asset has no valid price.
        SimulationAborted
            If ``should_abort`` fires before all trials complete.
        """
        if len(portfolio) == 0:
            logger.info("Empty portfolio; returning zero loss distribution")
            losses = np.empty(0)
            losses.flags.writeable = False
            return SimulationResult(scenario.scenario_id, self.num_trials, horizon_days,
                                    losses, LossStatistics(), {})

        logger.info(
            "Simulating %d loans over %s days: scenario=%s trials=%d workers=%d",
            len(portfolio), horizon_days, scenario.scenario_id, self.num_trials, self.max_workers,
        )
        loss_matrix, defaults = self._simulate_loss_matrix(
            portfolio, current_prices, scenario, horizon_days
        )
        result = self._build_result(portfolio, scenario, horizon_days, loss_matrix, defaults)
        logger.info(
            "Scenario %s: VaR95=%.0f VaR99=%.0f CVaR99=%.0f",
            scenario.scenario_id, result.var_95, result.var_99, result.cvar_99,
        )
        return result

    def _build_result(
        self,
        portfolio: Portfolio,
        scenario: ScenarioParameters,
        horizon_days: float,
        loss_matrix: np.ndarray,
        defaults: np.ndarray,
    ) -> SimulationResult:
        losses = np.sort(loss_matrix.sum(axis=1))
        losses.flags.writeable = False
        frequencies = defaults.mean(axis=0)
        return SimulationResult(
            scenario_id=scenario.scenario_id,
            num_trials=self.num_trials,
            horizon_days=horizon_days,
            losses=losses,
            statistics=compute_loss_statistics(losses),
            default_frequencies={
                loan_id: float(freq) for loan_id, freq in zip(portfolio.loan_ids, frequencies)
            },
        )

    def calculate_risk_contributions(
        self,
        portfolio: Portfolio,
        current_prices: Mapping[AssetType, float],
        scenario: ScenarioParameters,
        horizon_days: float = DEFAULT_HORIZON_DAYS,
    ) -> List[RiskContribution]:
        """
        Marginal and component VaR95 of every loan.

        Algorithm:
            1. One simulation, keeping the per-trial per-loan loss matrix
            2. Marginal_i = VaR95(Σ_j Loss_j) − VaR95(Σ_j Loss_j − Loss_i)
            3. Component_i = mean Loss_i over trials ranked near the VaR95
               index, rescaled so components sum to VaR95

        Loans interact only through the shared draws, so removing a column
        is the same as re-simulating without that loan on common random
        numbers.

        Returns
        -------
        list of RiskContribution
            One entry per loan, in portfolio order.
        """
        if len(portfolio) == 0:
            return []

        loss_matrix, defaults = self._simulate_loss_matrix(
            portfolio, current_prices, scenario, horizon_days
        )
        totals = loss_matrix.sum(axis=1)
        n = len(totals)
        var_95 = compute_var(np.sort(totals), 0.95)

        order = np.argsort(totals, kind="stable")
        idx = _tail_index(n, 0.95)
        half_width = max(1, int(n * COMPONENT_VAR_WINDOW))
        window = order[max(0, idx - half_width):min(n, idx + half_width + 1)]
        raw_components = loss_matrix[window].mean(axis=0)
        raw_total = raw_components.sum()
        scale = var_95 / raw_total if raw_total > 0 else 0.0

        frequencies = defaults.mean(axis=0)
        contributions = []
        for i, loan in enumerate(portfolio.loans):
            var_without = compute_var(np.sort(totals - loss_matrix[:, i]), 0.95)
            marginal = var_95 - var_without
            contributions.append(RiskContribution(
                loan_id=loan.loan_id,
                marginal_var_95=float(marginal),
                percent_of_total=float(marginal / var_95 * 100) if var_95 > 0 else 0.0,
                component_var_95=float(raw_components[i] * scale),
                default_frequency=float(frequencies[i]),
            ))

        logger.debug("Risk contributions computed for %d loans", len(contributions))
        return contributions

    def simulate_price_paths(
        self,
        asset: AssetType,
        current_price: float,
        horizon_days: int = DEFAULT_HORIZON_DAYS,
        num_paths: int = DEFAULT_NUM_PATHS,
        scenario: Optional[ScenarioParameters] = None,
    ) -> PricePathSimulation:
        """
        Independent GBM paths for one asset with daily steps.

        S_{t+1} = S_t · exp(−½σ²Δt + σ√Δt · ε),   Δt = 1/365

        Parameters
        ----------
        asset : AssetType
            Collateral asset.
        current_price : float
            Starting price.
        horizon_days : int
            Number of daily steps.
        num_paths : int
            Number of paths.
        scenario : ScenarioParameters, optional
            Scales volatility by the scenario's multiplier.

        Returns
        -------
        PricePathSimulation
            ``paths`` has shape (num_paths, horizon_days + 1); column 0 is
            the current price.
        """
        asset = AssetType(asset)
        if not math.isfinite(current_price) or current_price < 0:
            raise InvalidPriceError(f"Price for {asset.value} must be non-negative, got {current_price}")

        sigma = annualized_volatility(asset)
        if scenario is not None:
            sigma *= scenario.volatility_multiplier
        dt = 1 / DAYS_PER_YEAR
        steps = int(horizon_days)

        # Per-asset stream; paths of different assets are independent
        streams = np.random.SeedSequence(self.seed).spawn(len(COLLATERAL_UNIVERSE))
        rng = np.random.default_rng(streams[COLLATERAL_UNIVERSE.index(asset)])
        eps = rng.standard_normal((num_paths, steps))
        log_increments = -0.5 * sigma ** 2 * dt + sigma * math.sqrt(dt) * eps
        log_paths = np.concatenate(
            [np.zeros((num_paths, 1)), np.cumsum(log_increments, axis=1)], axis=1
        )
        return PricePathSimulation(
            asset=asset,
            days=np.arange(steps + 1),
            paths=current_price * np.exp(log_paths),
        )
