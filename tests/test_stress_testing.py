"""Tests for deterministic scenario repricing and scenario comparison."""

import numpy as np
import pytest

from crypto_credit_risk.assets import AssetType
from crypto_credit_risk.exceptions import UnknownScenarioError
from crypto_credit_risk.monte_carlo import LossStatistics, MonteCarloEngine, SimulationResult
from crypto_credit_risk.risk_metrics import MarginStatus, calculate_portfolio_metrics, sharpe_ratio
from crypto_credit_risk.stress_testing import (
    compute_stress_impact,
    full_stress_analysis,
    scenario_comparison_table,
    stress_portfolio,
)


def _result(**statistics):
    return SimulationResult("x", 1, 30, np.empty(0), LossStatistics(**statistics))


def test_baseline_stress_matches_current_metrics(sample_portfolio, prices, baseline):
    stressed = stress_portfolio(sample_portfolio, prices, baseline)
    current = calculate_portfolio_metrics(sample_portfolio, prices)
    assert stressed.shocked_prices == pytest.approx(prices)
    assert stressed.metrics.aggregate_ltv == pytest.approx(current.aggregate_ltv)


def test_covid_stress(sample_portfolio, prices, catalog, baseline):
    covid = catalog.get("covid-crash")
    stressed = stress_portfolio(sample_portfolio, prices, covid)
    calm = stress_portfolio(sample_portfolio, prices, baseline)

    assert stressed.shocked_prices[AssetType.BTC] == pytest.approx(prices[AssetType.BTC] * 0.5)
    assert stressed.metrics.aggregate_ltv > calm.metrics.aggregate_ltv
    assert stressed.total_expected_loss_usd > calm.total_expected_loss_usd

    table = stressed.loan_stress
    assert list(table.index) == sample_portfolio.loan_ids
    assert (table["stressed_pd"] >= calm.loan_stress["stressed_pd"]).all()
    assert (table["stressed_lgd"] <= 1.0).all()
    np.testing.assert_allclose(
        table["uncured_call_probability"],
        table["margin_call_probability"] * (1 - covid.cure_probability),
    )
    # Halved collateral pushes every loan past its liquidation threshold
    assert stressed.count_in_status(MarginStatus.LIQUIDATION) == len(sample_portfolio)


def test_stress_metrics_use_scenario_credit_parameters(sample_portfolio, prices, catalog):
    covid = catalog.get("covid-crash")
    stressed = stress_portfolio(sample_portfolio, prices, covid)
    snapshot = calculate_portfolio_metrics(
        sample_portfolio, stressed.shocked_prices, covid.market_drawdown
    )

    assert stressed.metrics.total_expected_loss_usd == pytest.approx(
        stressed.total_expected_loss_usd
    )
    assert stressed.metrics.total_expected_loss_usd > snapshot.total_expected_loss_usd
    for loan_id, row in stressed.loan_stress.iterrows():
        loan_metrics = stressed.metrics.loan_metrics[loan_id]
        assert loan_metrics.current_pd == pytest.approx(row["stressed_pd"])
        assert loan_metrics.expected_loss_usd == pytest.approx(row["expected_loss_usd"])

    annual_revenue = stressed.metrics.total_daily_revenue_usd * 365
    assert stressed.metrics.sharpe_ratio == pytest.approx(
        sharpe_ratio(
            annual_revenue, stressed.total_expected_loss_usd, sample_portfolio.risk_capital_usd
        )
    )
    assert stressed.metrics.aggregate_ltv == pytest.approx(snapshot.aggregate_ltv)


def test_compute_stress_impact():
    base = _result(var_95=100.0, var_99=200.0, cvar_95=150.0, cvar_99=0.0)
    stressed = _result(var_95=150.0, var_99=200.0, cvar_95=300.0, cvar_99=50.0)
    impact = compute_stress_impact(base, stressed)

    assert impact["var_95_pct_change"] == pytest.approx(50.0)
    assert impact["var_99_pct_change"] == pytest.approx(0.0)
    assert impact["cvar_95_pct_change"] == pytest.approx(100.0)
    assert impact["cvar_99_pct_change"] == 0.0
    assert impact["var_95_base"] == 100.0
    assert impact["var_95_stressed"] == 150.0


def test_full_stress_analysis(sample_portfolio, prices, catalog):
    engine = MonteCarloEngine(num_trials=200, seed=17)
    analysis = full_stress_analysis(
        engine, sample_portfolio, prices, catalog,
        scenario_ids=["baseline", "covid-crash"], horizon_days=30,
    )

    assert list(analysis) == ["baseline", "covid-crash"]
    assert analysis["baseline"]["impact"]["var_99_pct_change"] == 0.0
    assert analysis["covid-crash"]["simulation"].scenario_id == "covid-crash"
    assert (
        analysis["covid-crash"]["stress"].total_expected_loss_usd
        > analysis["baseline"]["stress"].total_expected_loss_usd
    )

    table = scenario_comparison_table(analysis)
    assert list(table.index) == ["baseline", "covid-crash"]
    assert {"var_95", "cvar_99", "loans_in_liquidation", "var_99_pct_change"} <= set(table.columns)
    assert table.loc["covid-crash", "loans_in_liquidation"] == len(sample_portfolio)


def test_full_stress_analysis_unknown_baseline(sample_portfolio, prices, catalog, engine):
    with pytest.raises(UnknownScenarioError):
        full_stress_analysis(engine, sample_portfolio, prices, catalog, baseline_id="missing")


def test_empty_comparison_table():
    assert scenario_comparison_table({}).empty
