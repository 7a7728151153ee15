"""
Stress Testing Module
=====================
Deterministic scenario repricing of the loan book and side-by-side Monte
Carlo comparison of catalog scenarios against the baseline.

Stress mechanics per scenario:
    1. Prices:       S_s = S · shock_asset
    2. Metrics:      LTV and margin status at S_s
    3. Credit:       PD_s = min(1, PD · m_PD · (1 + d_s · leverage · 2))
                     LGD_s = min(1, LGD(S_s, slippage · m_slip) · m_LGD)
    4. Margin calls: P(uncured) = P(call within horizon) · (1 − cure_prob)
    5. Simulation:   VaR / CVaR change versus the baseline scenario
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence

import pandas as pd

from crypto_credit_risk.assets import AssetType
from crypto_credit_risk.config import DAYS_PER_YEAR, DEFAULT_HORIZON_DAYS
from crypto_credit_risk.monte_carlo import MonteCarloEngine, SimulationResult
from crypto_credit_risk.portfolio import Portfolio, validate_prices
from crypto_credit_risk.risk_metrics import (
    MarginEvent,
    MarginStatus,
    PortfolioMetrics,
    calculate_portfolio_metrics,
    loan_margin_event_probability,
    loss_given_default,
    sharpe_ratio,
    sortino_ratio,
)
from crypto_credit_risk.scenarios import (
    ScenarioCatalog,
    ScenarioParameters,
    apply_scenario_prices,
    scenario_stressed_lgd,
    scenario_stressed_pd,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScenarioStressResult:
    """
    Deterministic view of the portfolio under one scenario.

    Attributes
    ----------
    scenario : ScenarioParameters
        Applied scenario.
    shocked_prices : dict
        Asset prices after the scenario's price factors.
    metrics : PortfolioMetrics
        Portfolio metrics at the shocked prices; PD, expected loss and the
        risk-adjusted ratios use the scenario PD / LGD.
    loan_stress : pd.DataFrame
        Per loan: shocked LTV, margin status, scenario PD, LGD, expected
        loss and probability of an uncured margin call.
    """
    scenario: ScenarioParameters
    shocked_prices: Dict[AssetType, float]
    metrics: PortfolioMetrics
    loan_stress: pd.DataFrame

    @property
    def total_expected_loss_usd(self) -> float:
        if self.loan_stress.empty:
            return 0.0
        return float(self.loan_stress["expected_loss_usd"].sum())

    def count_in_status(self, status: MarginStatus) -> int:
        status = MarginStatus(status)
        if self.loan_stress.empty:
            return 0
        return int((self.loan_stress["margin_status"] == status.value).sum())


def stress_portfolio(
    portfolio: Portfolio,
    prices: Mapping[AssetType, float],
    scenario: ScenarioParameters,
    horizon_days: float = DEFAULT_HORIZON_DAYS,
) -> ScenarioStressResult:
    """
    Reprice the loan book under a scenario without simulation.

    Parameters
    ----------
    portfolio : Portfolio
        Loan book.
    prices : Mapping[AssetType, float]
        Current asset prices.
    scenario : ScenarioParameters
        Scenario to apply.
    horizon_days : float
        Look-ahead horizon for the margin-call probability.

    Returns
    -------
    ScenarioStressResult
    """
    prices = validate_prices(prices, {loan.asset_type for loan in portfolio.loans})
    shocked = apply_scenario_prices(prices, scenario)
    snapshot = calculate_portfolio_metrics(portfolio, shocked, scenario.market_drawdown)

    rows = []
    loan_metrics = {}
    for loan in portfolio.loans:
        price = shocked[loan.asset_type]
        value = loan.collateral.value(price)
        slippage = (
            loan.collateral.characteristics.liquidation_slippage
            * scenario.liquidation_slippage_multiplier
        )
        pd_s = scenario_stressed_pd(loan.rating.annual_pd, scenario, loan.leverage)
        lgd_s = scenario_stressed_lgd(
            loss_given_default(value, loan.principal_usd, slippage), scenario
        )
        el_s = loan.principal_usd * pd_s * lgd_s
        call_probability = loan_margin_event_probability(
            loan,
            price,
            loan.collateral.annualized_volatility * scenario.volatility_multiplier,
            horizon_days,
            MarginEvent.CALL,
        )
        loan_metrics[loan.loan_id] = replace(
            snapshot.loan_metrics[loan.loan_id], expected_loss_usd=el_s, current_pd=pd_s
        )
        rows.append({
            "loan_id": loan.loan_id,
            "collateral_value_usd": value,
            "loan_to_value": loan_metrics[loan.loan_id].loan_to_value,
            "margin_status": loan_metrics[loan.loan_id].margin_status.value,
            "stressed_pd": pd_s,
            "stressed_lgd": lgd_s,
            "expected_loss_usd": el_s,
            "margin_call_probability": call_probability,
            "uncured_call_probability": call_probability * (1 - scenario.cure_probability),
        })

    columns = [
        "loan_id", "collateral_value_usd", "loan_to_value", "margin_status",
        "stressed_pd", "stressed_lgd", "expected_loss_usd",
        "margin_call_probability", "uncured_call_probability",
    ]
    loan_stress = pd.DataFrame(rows, columns=columns).set_index("loan_id")

    # Credit figures follow the scenario PD / LGD, not the drawdown-only snapshot
    total_el = float(sum(m.expected_loss_usd for m in loan_metrics.values()))
    annual_revenue = snapshot.total_daily_revenue_usd * DAYS_PER_YEAR
    metrics = replace(
        snapshot,
        total_expected_loss_usd=total_el,
        sharpe_ratio=sharpe_ratio(annual_revenue, total_el, portfolio.risk_capital_usd),
        sortino_ratio=sortino_ratio(annual_revenue, total_el, portfolio.risk_capital_usd),
        loan_metrics=loan_metrics,
    )

    return ScenarioStressResult(scenario, shocked, metrics, loan_stress)


def compute_stress_impact(
    base_result: SimulationResult,
    stressed_result: SimulationResult,
) -> Dict[str, float]:
    """
    Compare base and stressed simulated tail metrics.

    Parameters
    ----------
    base_result : SimulationResult
        Baseline simulation.
    stressed_result : SimulationResult
        Stressed simulation.

    Returns
    -------
    dict
        ``<metric>_base``, ``<metric>_stressed`` and ``<metric>_pct_change``
        for VaR95, VaR99, CVaR95 and CVaR99 (0.0 change when the base is 0).
    """
    metrics = ["var_95", "var_99", "cvar_95", "cvar_99"]
    impact = {}

    for m in metrics:
        base_val = getattr(base_result.statistics, m)
        stress_val = getattr(stressed_result.statistics, m)
        pct_change = ((stress_val - base_val) / base_val) * 100 if base_val != 0 else 0.0
        impact[f"{m}_base"] = base_val
        impact[f"{m}_stressed"] = stress_val
        impact[f"{m}_pct_change"] = pct_change

    return impact


def full_stress_analysis(
    engine: MonteCarloEngine,
    portfolio: Portfolio,
    prices: Mapping[AssetType, float],
    catalog: ScenarioCatalog,
    scenario_ids: Optional[Sequence[str]] = None,
    baseline_id: str = "baseline",
    horizon_days: float = DEFAULT_HORIZON_DAYS,
) -> Dict[str, Dict]:
    """
    Execute the scenario stress suite.

    Every scenario is repriced deterministically, simulated with the same
    engine (and therefore the same seed), and compared with the baseline.

    Parameters
    ----------
    engine : MonteCarloEngine
        Configured simulation engine.
    portfolio : Portfolio
        Loan book.
    prices : Mapping[AssetType, float]
        Current asset prices.
    catalog : ScenarioCatalog
        Scenario source.
    scenario_ids : sequence of str, optional
        Scenarios to run (default: every catalog scenario).
    baseline_id : str
        Reference scenario for the impact figures.
    horizon_days : float
        Simulation horizon.

    Returns
    -------
    dict
        scenario id → {"stress", "simulation", "impact"}.

    Raises
    ------
    UnknownScenarioError
        If the baseline or a requested scenario is not in the catalog.
    """
    scenario_ids = list(scenario_ids) if scenario_ids is not None else catalog.ids()
    baseline = catalog.get(baseline_id)
    base_result = engine.simulate_portfolio_loss(portfolio, prices, baseline, horizon_days)

    analysis: Dict[str, Dict] = {}
    for scenario_id in scenario_ids:
        scenario = catalog.get(scenario_id)
        if scenario_id == baseline_id:
            simulation = base_result
        else:
            simulation = engine.simulate_portfolio_loss(portfolio, prices, scenario, horizon_days)
        analysis[scenario_id] = {
            "stress": stress_portfolio(portfolio, prices, scenario, horizon_days),
            "simulation": simulation,
            "impact": compute_stress_impact(base_result, simulation),
        }
        logger.debug("Stress scenario %s complete", scenario_id)

    return analysis


def scenario_comparison_table(analysis: Dict[str, Dict]) -> pd.DataFrame:
    """
    One row per scenario with stress inputs and simulated tail metrics.

    Parameters
    ----------
    analysis : dict
        Output of ``full_stress_analysis``.

    Returns
    -------
    pd.DataFrame
        Indexed by scenario id.
    """
    rows: List[Dict[str, object]] = []
    for scenario_id, entry in analysis.items():
        stress: ScenarioStressResult = entry["stress"]
        stats = entry["simulation"].statistics
        rows.append({
            "scenario_id": scenario_id,
            "name": stress.scenario.name,
            "market_drawdown": stress.scenario.market_drawdown,
            "pd_multiplier": stress.scenario.pd_multiplier,
            "aggregate_ltv": stress.metrics.aggregate_ltv,
            "expected_loss_usd": stress.total_expected_loss_usd,
            "loans_in_liquidation": stress.count_in_status(MarginStatus.LIQUIDATION),
            "mean_loss": stats.mean_loss,
            "var_95": stats.var_95,
            "var_99": stats.var_99,
            "cvar_95": stats.cvar_95,
            "cvar_99": stats.cvar_99,
            "probability_of_loss": stats.probability_of_loss,
            "var_99_pct_change": entry["impact"]["var_99_pct_change"],
        })

    return pd.DataFrame(rows).set_index("scenario_id") if rows else pd.DataFrame()
