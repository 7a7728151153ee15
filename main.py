"""
Crypto Credit Risk Engine — Main Orchestrator
=============================================
Entry point for the complete loan-book risk analysis pipeline.

Execution Flow:
    1. Load the sample loan book and market snapshot
    2. Real-time loan and portfolio metrics
    3. Monte Carlo loss distribution (baseline scenario)
    4. Marginal risk contributions per loan
    5. Scenario stress testing across the catalog
    6. Margin-event backtest on synthetic hourly history
    7. Results export

Settings are read from ``CRYPTO_RISK_*`` environment variables.
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path

import numpy as np
import pandas as pd

from crypto_credit_risk.assets import DEFAULT_CURRENT_PRICES
from crypto_credit_risk.backtesting import (
    compute_event_statistics,
    kupiec_test,
    margin_event_backtest,
)
from crypto_credit_risk.config import SimulationConfig
from crypto_credit_risk.monte_carlo import MonteCarloEngine
from crypto_credit_risk.portfolio import get_portfolio_summary
from crypto_credit_risk.price_simulation import generate_historical_prices
from crypto_credit_risk.risk_metrics import calculate_portfolio_metrics
from crypto_credit_risk.sample_data import generate_sample_portfolio
from crypto_credit_risk.scenarios import default_catalog, generate_pd_curve
from crypto_credit_risk.serialization import portfolio_to_dict, simulation_result_to_dict
from crypto_credit_risk.stress_testing import full_stress_analysis, scenario_comparison_table

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────
# Output locations
# ─────────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
RESULTS_DIR = PROJECT_ROOT / "results"
TABLES_DIR = RESULTS_DIR / "tables"

BACKTEST_LOAN_ID = "LOAN-005"
BACKTEST_YEARS = 1.0


def print_header(text: str) -> None:
    """Print formatted section header."""
    width = 60
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width)


def print_metrics(metrics: dict, indent: int = 4) -> None:
    """Print dictionary of metrics with formatting."""
    prefix = " " * indent
    for key, val in metrics.items():
        if isinstance(val, float):
            print(f"{prefix}{key:.<35} {val:>16,.4f}")
        else:
            print(f"{prefix}{key:.<35} {str(val):>16}")


def main() -> None:
    """Execute the complete credit risk pipeline."""
    config = SimulationConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("\n" + "╔" + "═" * 58 + "╗")
    print("║   CRYPTO-COLLATERALIZED CREDIT RISK ENGINE              ║")
    print("║   Loan Book Monte Carlo Risk Model                      ║")
    print("╚" + "═" * 58 + "╝")

    # ── PHASE 1: Portfolio ─────────────────────────────────────
    print_header("PHASE 1 — LOAN BOOK & MARKET SNAPSHOT")

    portfolio = generate_sample_portfolio()
    prices = dict(DEFAULT_CURRENT_PRICES)
    catalog = default_catalog()

    print(f"\n  Loans:         {len(portfolio)}")
    print(f"  Risk capital:  ${portfolio.risk_capital_usd:,.0f}")
    print("  Prices:        " + ", ".join(f"{a.value} ${p:,.2f}" for a, p in prices.items()))

    summary = get_portfolio_summary(portfolio)
    print("\n  Portfolio Summary:")
    print_metrics({k: v for k, v in summary.items() if not isinstance(v, dict)})

    # ── PHASE 2: Real-time metrics ─────────────────────────────
    print_header("PHASE 2 — REAL-TIME RISK METRICS")

    metrics = calculate_portfolio_metrics(portfolio, prices)
    print_metrics({
        "total_exposure_usd": metrics.total_exposure_usd,
        "total_collateral_value_usd": metrics.total_collateral_value_usd,
        "aggregate_ltv": metrics.aggregate_ltv,
        "total_expected_loss_usd": metrics.total_expected_loss_usd,
        "total_daily_revenue_usd": metrics.total_daily_revenue_usd,
        "sharpe_ratio": metrics.sharpe_ratio,
        "borrower_hhi": metrics.concentration.borrower_hhi,
    })

    loan_table = pd.DataFrame({
        loan_id: {
            "ltv": m.loan_to_value,
            "status": m.margin_status.value,
            "pd": m.current_pd,
            "expected_loss": m.expected_loss_usd,
        }
        for loan_id, m in metrics.loan_metrics.items()
    }).T
    print("\n" + loan_table.to_string())

    # ── PHASE 3: Monte Carlo ───────────────────────────────────
    print_header("PHASE 3 — MONTE CARLO LOSS DISTRIBUTION")

    engine = MonteCarloEngine.from_config(config)
    baseline = catalog.get("baseline")
    print(f"    Running {config.num_trials:,} trials over {config.horizon_days} days...")
    mc_result = engine.simulate_portfolio_loss(portfolio, prices, baseline, config.horizon_days)
    mc_metrics = simulation_result_to_dict(mc_result)["statistics"]
    print_metrics(mc_metrics)

    # ── PHASE 4: Risk contributions ────────────────────────────
    print_header("PHASE 4 — MARGINAL RISK CONTRIBUTIONS")

    contributions = engine.calculate_risk_contributions(
        portfolio, prices, baseline, config.horizon_days
    )
    contribution_table = pd.DataFrame([asdict(c) for c in contributions]).set_index("loan_id")
    print("\n" + contribution_table.to_string(float_format=lambda x: f"{x:,.2f}"))

    print("\n  PD term structure (LOAN-001, baseline):")
    loan = portfolio.get("LOAN-001")
    for days, pd_value in generate_pd_curve(loan.rating.annual_pd, loan.leverage, baseline):
        print(f"    {days:>4}d  {pd_value:.6f}")

    # ── PHASE 5: Stress testing ────────────────────────────────
    print_header("PHASE 5 — SCENARIO STRESS TESTING")

    analysis = full_stress_analysis(
        engine, portfolio, prices, catalog, horizon_days=config.horizon_days
    )
    comparison = scenario_comparison_table(analysis)
    print("\n" + comparison.drop(columns=["name"]).to_string(float_format=lambda x: f"{x:,.2f}"))

    # ── PHASE 6: Backtesting ───────────────────────────────────
    print_header("PHASE 6 — MARGIN-EVENT BACKTESTING")

    history = generate_historical_prices(
        prices, rng=np.random.default_rng(config.seed), years=BACKTEST_YEARS
    )
    bt_loan = portfolio.get(BACKTEST_LOAN_ID)
    bt_results = margin_event_backtest(bt_loan, history)
    event_stats = compute_event_statistics(bt_results)
    kupiec = kupiec_test(bt_results)

    print(f"  Loan: {BACKTEST_LOAN_ID} | History: {len(history):,} hourly bars")
    print("\n  Event Statistics:")
    print_metrics(event_stats)
    print("\n  Kupiec POF Test:")
    print_metrics(kupiec)

    # ── Results export ─────────────────────────────────────────
    print_header("RESULTS EXPORT")

    TABLES_DIR.mkdir(parents=True, exist_ok=True)
    comparison.to_csv(TABLES_DIR / "scenario_comparison.csv")
    contribution_table.to_csv(TABLES_DIR / "risk_contributions.csv")

    all_results = {
        "portfolio": portfolio_to_dict(portfolio),
        "summary": summary,
        "monte_carlo": simulation_result_to_dict(mc_result),
        "stress_testing": {sid: entry["impact"] for sid, entry in analysis.items()},
        "backtesting": {
            "event_stats": event_stats,
            "kupiec_test": kupiec,
        },
    }

    results_path = TABLES_DIR / "full_results.json"
    with open(results_path, "w") as f:
        json.dump(all_results, f, indent=2, default=str)

    logger.info("Results saved to %s", results_path)
    print(f"\n  Results saved to: {results_path}")

    print("\n" + "╔" + "═" * 58 + "╗")
    print("║   RISK ENGINE EXECUTION COMPLETE                        ║")
    print("╚" + "═" * 58 + "╝\n")


if __name__ == "__main__":
    main()
