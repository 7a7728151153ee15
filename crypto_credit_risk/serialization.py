"""
Serialization
=============
Plain-dict and JSON conversion of engine records.

The records themselves carry no I/O; everything that turns them into
JSON-compatible structures lives here.  Dates are ISO-8601 strings, asset
pairs are ``"BTC_ETH"`` labels and enums are their string values.
"""

import json
import math
from dataclasses import asdict
from datetime import date
from typing import Any, Dict, Optional

from crypto_credit_risk.assets import AssetType, CollateralAsset, pair_label, parse_pair_label
from crypto_credit_risk.monte_carlo import SimulationResult
from crypto_credit_risk.portfolio import Loan, LoanTerms, Portfolio
from crypto_credit_risk.scenarios import ScenarioParameters


def _date_to_str(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _date_from_str(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _json_float(value: float) -> Any:
    # JSON has no infinity
    return value if math.isfinite(value) else str(value)


# ─────────────────────────────────────────────────────────────
# Loans and portfolios
# ─────────────────────────────────────────────────────────────

def loan_to_dict(loan: Loan) -> Dict[str, Any]:
    return {
        "loan_id": loan.loan_id,
        "borrower_name": loan.borrower_name,
        "rating": loan.rating.value,
        "principal_usd": loan.terms.principal_usd,
        "lending_rate": loan.terms.lending_rate,
        "cost_of_capital": loan.terms.cost_of_capital,
        "tenor_days": loan.terms.tenor_days,
        "roll_date": _date_to_str(loan.terms.roll_date),
        "collateral": {
            "asset_type": loan.asset_type.value,
            "quantity": loan.collateral.quantity,
        },
        "leverage": loan.leverage,
        "origination_date": _date_to_str(loan.origination_date),
    }


def loan_from_dict(data: Dict[str, Any]) -> Loan:
    """
    Rebuild a loan; validation errors of the records propagate.

    Raises
    ------
    KeyError
        If a required field is missing.
    """
    terms = LoanTerms(
        principal_usd=float(data["principal_usd"]),
        lending_rate=float(data["lending_rate"]),
        cost_of_capital=float(data.get("cost_of_capital", 0.0)),
        tenor_days=int(data.get("tenor_days", 30)),
        roll_date=_date_from_str(data.get("roll_date")),
    )
    collateral = CollateralAsset(
        AssetType(data["collateral"]["asset_type"]),
        float(data["collateral"]["quantity"]),
    )
    return Loan(
        loan_id=data["loan_id"],
        borrower_name=data.get("borrower_name", ""),
        rating=data["rating"],
        terms=terms,
        collateral=collateral,
        leverage=float(data.get("leverage", 1.0)),
        origination_date=_date_from_str(data.get("origination_date")),
    )


def portfolio_to_dict(portfolio: Portfolio) -> Dict[str, Any]:
    return {
        "risk_capital_usd": portfolio.risk_capital_usd,
        "loans": [loan_to_dict(loan) for loan in portfolio.loans],
    }


def portfolio_from_dict(data: Dict[str, Any]) -> Portfolio:
    return Portfolio(
        loans=tuple(loan_from_dict(item) for item in data.get("loans", [])),
        risk_capital_usd=float(data.get("risk_capital_usd", 0.0)),
    )


def dumps_portfolio(portfolio: Portfolio, indent: Optional[int] = 2) -> str:
    return json.dumps(portfolio_to_dict(portfolio), indent=indent)


def loads_portfolio(text: str) -> Portfolio:
    return portfolio_from_dict(json.loads(text))


# ─────────────────────────────────────────────────────────────
# Scenarios
# ─────────────────────────────────────────────────────────────

def scenario_to_dict(scenario: ScenarioParameters) -> Dict[str, Any]:
    return {
        "scenario_id": scenario.scenario_id,
        "name": scenario.name,
        "description": scenario.description,
        "timeframe": scenario.timeframe,
        "market_drawdown": scenario.market_drawdown,
        "volatility_multiplier": scenario.volatility_multiplier,
        "asset_shocks": {asset.value: v for asset, v in scenario.asset_shocks.items()},
        "correlation_overrides": {
            pair_label(pair): v for pair, v in scenario.correlation_overrides.items()
        },
        "pd_multiplier": scenario.pd_multiplier,
        "lgd_multiplier": scenario.lgd_multiplier,
        "t_copula_dof": _json_float(scenario.t_copula_dof),
        "default_correlation": scenario.default_correlation,
        "liquidation_slippage_multiplier": scenario.liquidation_slippage_multiplier,
        "cure_probability": scenario.cure_probability,
    }


def scenario_from_dict(data: Dict[str, Any]) -> ScenarioParameters:
    """Rebuild scenario parameters (range checks run on construction)."""
    fields = dict(data)
    fields["asset_shocks"] = {
        AssetType(asset): float(v) for asset, v in data.get("asset_shocks", {}).items()
    }
    fields["correlation_overrides"] = {
        parse_pair_label(label): float(v)
        for label, v in data.get("correlation_overrides", {}).items()
    }
    if "t_copula_dof" in fields:
        fields["t_copula_dof"] = float(fields["t_copula_dof"])
    return ScenarioParameters(**fields)


# ─────────────────────────────────────────────────────────────
# Simulation output
# ─────────────────────────────────────────────────────────────

def simulation_result_to_dict(
    result: SimulationResult,
    include_distribution: bool = False,
) -> Dict[str, Any]:
    """
    Summary of a simulation run.

    The full loss distribution is included only on request.
    """
    data = {
        "scenario_id": result.scenario_id,
        "num_trials": result.num_trials,
        "horizon_days": result.horizon_days,
        "statistics": asdict(result.statistics),
        "default_frequencies": dict(result.default_frequencies),
    }
    if include_distribution:
        data["losses"] = result.losses.tolist()
    return data
