"""
Scenario Catalog
================
Named stress parameterizations consumed by the simulators.

Each ``ScenarioParameters`` bundles:
    Market stress:   drawdown, volatility multiplier, per-asset price shocks
    Dependence:      pairwise asset correlation overrides
    Credit stress:   PD / LGD multipliers
    Default copula:  t-copula degrees of freedom ν, default correlation ρ
    Liquidity:       liquidation slippage multiplier, cure probability

The built-in scenarios are plain immutable data.  A ``ScenarioCatalog`` is
constructed explicitly (``default_catalog()``) and carries its own
custom-scenario mapping, so independent catalogs never share state.
"""

import math
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from crypto_credit_risk.assets import AssetType, pair_key
from crypto_credit_risk.config import DAYS_PER_YEAR, PD_CURVE_HORIZONS
from crypto_credit_risk.exceptions import ScenarioValidationError, UnknownScenarioError
from crypto_credit_risk.risk_metrics import stressed_pd


AssetPair = Tuple[AssetType, AssetType]


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ScenarioValidationError(message)


@dataclass(frozen=True)
class ScenarioParameters:
    """
    Immutable stress configuration.

    Attributes
    ----------
    scenario_id : str
        Catalog key.
    name, description, timeframe : str
        Display metadata.
    market_drawdown : float
        Overall market stress level in [0, 1].
    volatility_multiplier : float
        Multiplier (> 0) on every asset's base volatility.
    asset_shocks : dict
        Deterministic terminal price factor per asset (> 0; 0.5 = −50%).
    correlation_overrides : dict
        Pairwise asset return correlation in [-1, 1], keyed by asset pair.
    pd_multiplier, lgd_multiplier : float
        Credit stress multipliers (≥ 0).
    t_copula_dof : float
        Degrees of freedom ν > 0 (``inf`` = Gaussian copula).
    default_correlation : float
        Common-factor loading ρ in [0, 1].
    liquidation_slippage_multiplier : float
        Multiplier (≥ 0) on every asset's liquidation slippage.
    cure_probability : float
        Probability that a borrower cures a margin call, in [0, 1].

    Raises
    ------
    ScenarioValidationError
        If any parameter is outside its range.
    """
    scenario_id: str
    name: str
    market_drawdown: float = 0.0
    volatility_multiplier: float = 1.0
    asset_shocks: Mapping[AssetType, float] = field(default_factory=dict)
    correlation_overrides: Mapping[AssetPair, float] = field(default_factory=dict)
    pd_multiplier: float = 1.0
    lgd_multiplier: float = 1.0
    t_copula_dof: float = 5.0
    default_correlation: float = 0.30
    liquidation_slippage_multiplier: float = 1.0
    cure_probability: float = 0.65
    description: str = ""
    timeframe: str = ""

    def __post_init__(self) -> None:
        shocks = {AssetType(asset): float(v) for asset, v in self.asset_shocks.items()}
        overrides = {pair_key(*pair): float(v) for pair, v in self.correlation_overrides.items()}
        object.__setattr__(self, "asset_shocks", MappingProxyType(shocks))
        object.__setattr__(self, "correlation_overrides", MappingProxyType(overrides))

        _require(0 <= self.market_drawdown <= 1,
                 f"market_drawdown must be in [0, 1], got {self.market_drawdown}")
        _require(self.volatility_multiplier > 0,
                 f"volatility_multiplier must be > 0, got {self.volatility_multiplier}")
        for asset, shock in shocks.items():
            _require(math.isfinite(shock) and shock > 0,
                     f"asset shock for {asset.value} must be > 0, got {shock}")
        for pair, rho in overrides.items():
            _require(-1 <= rho <= 1,
                     f"correlation for {pair[0].value}/{pair[1].value} must be in [-1, 1], got {rho}")
        _require(self.pd_multiplier >= 0, f"pd_multiplier must be >= 0, got {self.pd_multiplier}")
        _require(self.lgd_multiplier >= 0, f"lgd_multiplier must be >= 0, got {self.lgd_multiplier}")
        _require(self.t_copula_dof > 0, f"t_copula_dof must be > 0, got {self.t_copula_dof}")
        _require(0 <= self.default_correlation <= 1,
                 f"default_correlation must be in [0, 1], got {self.default_correlation}")
        _require(self.liquidation_slippage_multiplier >= 0,
                 "liquidation_slippage_multiplier must be >= 0, "
                 f"got {self.liquidation_slippage_multiplier}")
        _require(0 <= self.cure_probability <= 1,
                 f"cure_probability must be in [0, 1], got {self.cure_probability}")

    def __hash__(self) -> int:
        # Equal scenarios share an id; the mapping fields are unhashable
        return hash(self.scenario_id)

    def asset_shock(self, asset: AssetType) -> float:
        """Price factor for ``asset`` (1.0 when the scenario leaves it unshocked)."""
        return self.asset_shocks.get(AssetType(asset), 1.0)


def _shocks(btc: float, eth: float, sol: float) -> Dict[AssetType, float]:
    return {AssetType.BTC: btc, AssetType.ETH: eth, AssetType.SOL: sol}


def _correlations(btc_eth: float, btc_sol: float, eth_sol: float) -> Dict[AssetPair, float]:
    return {
        (AssetType.BTC, AssetType.ETH): btc_eth,
        (AssetType.BTC, AssetType.SOL): btc_sol,
        (AssetType.ETH, AssetType.SOL): eth_sol,
    }


# ─────────────────────────────────────────────────────────────
# Built-in scenarios
# ─────────────────────────────────────────────────────────────
BUILTIN_SCENARIOS: Tuple[ScenarioParameters, ...] = (
    ScenarioParameters(
        scenario_id="baseline",
        name="Baseline",
        description="Current market with no price shocks and unstressed credit",
        timeframe="Today",
        market_drawdown=0.0,
        volatility_multiplier=1.0,
        asset_shocks=_shocks(1.0, 1.0, 1.0),
        correlation_overrides=_correlations(0.82, 0.68, 0.75),
        pd_multiplier=1.0,
        lgd_multiplier=1.0,
        t_copula_dof=5,
        default_correlation=0.30,
        liquidation_slippage_multiplier=1.0,
        cure_probability=0.65,
    ),
    ScenarioParameters(
        scenario_id="bull-market",
        name="Bull Market Rally",
        description="Strong upward momentum with improving correlations and low default risk",
        timeframe="2023 Q1",
        market_drawdown=0.0,
        volatility_multiplier=0.7,
        asset_shocks=_shocks(1.5, 1.6, 1.8),
        correlation_overrides=_correlations(0.88, 0.75, 0.82),
        pd_multiplier=0.5,
        lgd_multiplier=0.7,
        t_copula_dof=8,
        default_correlation=0.15,
        liquidation_slippage_multiplier=0.8,
        cure_probability=0.85,
    ),
    ScenarioParameters(
        scenario_id="covid-crash",
        name="2020 COVID Crash",
        description="Extreme liquidity crisis with synchronized asset collapse",
        timeframe="March 2020",
        market_drawdown=0.5,
        volatility_multiplier=3.0,
        asset_shocks=_shocks(0.5, 0.45, 0.40),
        correlation_overrides=_correlations(0.95, 0.88, 0.92),
        pd_multiplier=3.0,
        lgd_multiplier=2.0,
        t_copula_dof=3,
        default_correlation=0.65,
        liquidation_slippage_multiplier=2.5,
        cure_probability=0.30,
    ),
    ScenarioParameters(
        scenario_id="luna-collapse",
        name="2022 Luna/FTX Collapse",
        description="Contagion-driven crypto-specific crash with leverage unwind",
        timeframe="May-Nov 2022",
        market_drawdown=0.65,
        volatility_multiplier=2.5,
        asset_shocks=_shocks(0.65, 0.60, 0.45),
        correlation_overrides=_correlations(0.92, 0.85, 0.88),
        pd_multiplier=4.0,
        lgd_multiplier=2.5,
        t_copula_dof=2.5,
        default_correlation=0.75,
        liquidation_slippage_multiplier=3.0,
        cure_probability=0.20,
    ),
    ScenarioParameters(
        scenario_id="stable-growth",
        name="Stable Growth",
        description="Moderate growth with typical correlations and default rates",
        timeframe="Baseline",
        market_drawdown=0.0,
        volatility_multiplier=1.0,
        asset_shocks=_shocks(1.15, 1.18, 1.22),
        correlation_overrides=_correlations(0.82, 0.68, 0.75),
        pd_multiplier=1.0,
        lgd_multiplier=1.0,
        t_copula_dof=5,
        default_correlation=0.30,
        liquidation_slippage_multiplier=1.0,
        cure_probability=0.65,
    ),
    ScenarioParameters(
        scenario_id="high-volatility",
        name="High Volatility Regime",
        description="Elevated volatility with mean-reverting prices but increased tail risk",
        timeframe="2024",
        market_drawdown=0.15,
        volatility_multiplier=2.0,
        asset_shocks=_shocks(1.05, 1.02, 0.98),
        correlation_overrides=_correlations(0.75, 0.58, 0.65),
        pd_multiplier=1.5,
        lgd_multiplier=1.3,
        t_copula_dof=4,
        default_correlation=0.40,
        liquidation_slippage_multiplier=1.5,
        cure_probability=0.50,
    ),
)


@dataclass(frozen=True)
class ScenarioComparison:
    """Selected scenarios plus averages of their headline stress fields."""
    scenarios: List[ScenarioParameters]
    avg_drawdown: float
    avg_pd_multiplier: float
    avg_volatility_multiplier: float


class ScenarioCatalog:
    """
    Immutable base registry plus an explicit custom-scenario mapping.

    Custom scenarios shadow base scenarios with the same id.  Registration
    performs only the range checks of ``ScenarioParameters``; it does not
    check that a correlation triple is jointly consistent (the simulators
    clamp such triples).

    Parameters
    ----------
    base : Mapping[str, ScenarioParameters], optional
        Base scenarios (defaults to ``BUILTIN_SCENARIOS``).
    custom : MutableMapping[str, ScenarioParameters], optional
        Caller-owned mapping that receives custom registrations.
    """

    def __init__(
        self,
        base: Optional[Mapping[str, ScenarioParameters]] = None,
        custom: Optional[MutableMapping[str, ScenarioParameters]] = None,
    ):
        if base is None:
            base = {s.scenario_id: s for s in BUILTIN_SCENARIOS}
        self._base = MappingProxyType(dict(base))
        self._custom = custom if custom is not None else {}

    def __contains__(self, scenario_id: object) -> bool:
        return scenario_id in self._custom or scenario_id in self._base

    def __len__(self) -> int:
        return len(self.ids())

    def get(self, scenario_id: str) -> ScenarioParameters:
        """
        Look up a scenario.

        Raises
        ------
        UnknownScenarioError
            If no scenario is registered under ``scenario_id``.
        """
        if scenario_id in self._custom:
            return self._custom[scenario_id]
        if scenario_id in self._base:
            return self._base[scenario_id]
        raise UnknownScenarioError(scenario_id)

    def ids(self) -> List[str]:
        """Scenario ids, base scenarios first, in registration order."""
        ids = list(self._base)
        ids.extend(sid for sid in self._custom if sid not in self._base)
        return ids

    def all(self) -> List[ScenarioParameters]:
        return [self.get(sid) for sid in self.ids()]

    def register_custom(self, scenario_id: str, params: ScenarioParameters) -> ScenarioParameters:
        """
        Register or overwrite a custom scenario under ``scenario_id``.

        The stored parameters carry ``scenario_id`` as their id.
        """
        if not isinstance(params, ScenarioParameters):
            raise ScenarioValidationError(
                f"Expected ScenarioParameters, got {type(params).__name__}"
            )
        if params.scenario_id != scenario_id:
            params = replace(params, scenario_id=scenario_id)
        self._custom[scenario_id] = params
        return params

    def compare(self, scenario_ids: Sequence[str]) -> ScenarioComparison:
        """
        Average drawdown, PD multiplier and volatility multiplier.

        Unknown ids are skipped.  With no matching scenario every average is
        NaN.
        """
        selected = [self.get(sid) for sid in scenario_ids if sid in self]
        if not selected:
            nan = float("nan")
            return ScenarioComparison([], nan, nan, nan)

        n = len(selected)
        return ScenarioComparison(
            scenarios=selected,
            avg_drawdown=sum(s.market_drawdown for s in selected) / n,
            avg_pd_multiplier=sum(s.pd_multiplier for s in selected) / n,
            avg_volatility_multiplier=sum(s.volatility_multiplier for s in selected) / n,
        )


def default_catalog() -> ScenarioCatalog:
    """A fresh catalog over the built-in scenarios with an empty custom map."""
    return ScenarioCatalog()


# ─────────────────────────────────────────────────────────────
# Scenario-stressed credit parameters
# ─────────────────────────────────────────────────────────────

def apply_scenario_prices(
    current_prices: Mapping[AssetType, float],
    scenario: ScenarioParameters,
) -> Dict[AssetType, float]:
    """Deterministically shock current prices by the scenario's asset factors."""
    return {
        AssetType(asset): float(price) * scenario.asset_shock(asset)
        for asset, price in current_prices.items()
    }


def scenario_stressed_pd(base_pd: float, scenario: ScenarioParameters, leverage: float) -> float:
    """
    PD under a scenario: PD multiplier, then the wrong-way-risk law.

    PD_s = min(1, PD · m_PD · (1 + drawdown · leverage · 2))
    """
    return stressed_pd(base_pd * scenario.pd_multiplier, scenario.market_drawdown, leverage)


def scenario_stressed_lgd(base_lgd: float, scenario: ScenarioParameters) -> float:
    """LGD × scenario LGD multiplier, capped at 1.0."""
    return min(base_lgd * scenario.lgd_multiplier, 1.0)


def horizon_default_probability(
    base_annual_pd: float,
    leverage: float,
    scenario: ScenarioParameters,
    horizon_days: float,
) -> float:
    """Scenario-stressed annual PD scaled linearly to the horizon, capped at 1."""
    annual = scenario_stressed_pd(base_annual_pd, scenario, leverage)
    return min(annual * horizon_days / DAYS_PER_YEAR, 1.0)


def generate_pd_curve(
    base_pd: float,
    leverage: float,
    scenario: ScenarioParameters,
    max_days: int = DAYS_PER_YEAR,
) -> List[Tuple[int, float]]:
    """
    Term structure of scenario PD at standard horizons up to ``max_days``.

    Returns
    -------
    list of (days, pd)
    """
    return [
        (days, horizon_default_probability(base_pd, leverage, scenario, days))
        for days in PD_CURVE_HORIZONS
        if days <= max_days
    ]
