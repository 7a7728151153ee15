"""
Risk Metrics Module
====================
Deterministic loan- and portfolio-level credit risk metrics.

Mathematical Foundation:
    LTV:             LTV = principal / collateral value
    Wrong-way PD:    PD_s = min(1, PD · (1 + drawdown · leverage · 2))
    LGD:             LGD = clip(max(0, P − C·(1−slippage)) / P, 0.30, 1)
    Expected loss:   EL = EAD · PD_s · LGD        (EAD = principal)
    Margin event:    P(hit) = Φ(−ln(1/(1−drop)) / (σ·√(t/365)))
    Concentration:   HHI = Σ (100 · share_i)²      (0 – 10,000)

No randomness.  Extreme markets produce clamped or sentinel values
(``inf`` LTV, PD = 1), never exceptions.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping

from scipy import stats

from crypto_credit_risk.assets import AssetType, MarginPolicy
from crypto_credit_risk.config import (
    BASELINE_LGD,
    DAYS_PER_YEAR,
    MIN_VOLATILITY_PROXY,
    RISK_FREE_RATE,
    WRONG_WAY_RISK_FACTOR,
)
from crypto_credit_risk.portfolio import Loan, Portfolio, validate_prices


class MarginStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CALL = "call"
    LIQUIDATION = "liquidation"


class MarginEvent(str, Enum):
    CALL = "call"
    LIQUIDATION = "liquidation"


@dataclass(frozen=True)
class LoanMetrics:
    """Real-time metrics for a single loan at one collateral value."""
    loan_to_value: float
    margin_status: MarginStatus
    excess_collateral_usd: float
    daily_interest_usd: float
    expected_loss_usd: float
    current_pd: float


@dataclass(frozen=True)
class ConcentrationMetrics:
    """
    Attributes
    ----------
    asset_concentration : dict
        Percent of total collateral value held in each asset.
    borrower_hhi : float
        Herfindahl-Hirschman Index of principal shares (0 – 10,000).
    largest_exposure_percent : float
        Largest single principal as a percent of total exposure.
    """
    asset_concentration: Dict[AssetType, float]
    borrower_hhi: float
    largest_exposure_percent: float


@dataclass(frozen=True)
class PortfolioMetrics:
    """Aggregate portfolio metrics at one price snapshot."""
    total_exposure_usd: float
    total_collateral_value_usd: float
    aggregate_ltv: float
    total_expected_loss_usd: float
    total_daily_revenue_usd: float
    sharpe_ratio: float
    sortino_ratio: float
    concentration: ConcentrationMetrics
    loan_metrics: Dict[str, LoanMetrics]


# ─────────────────────────────────────────────────────────────
# Loan-level metrics
# ─────────────────────────────────────────────────────────────

def loan_to_value(loan: Loan, collateral_value_usd: float) -> float:
    """
    Current loan-to-value ratio.

    Returns
    -------
    float
        principal / collateral value, or ``math.inf`` when the collateral is
        worth nothing (total loss of coverage).
    """
    if collateral_value_usd == 0:
        return math.inf
    return loan.principal_usd / collateral_value_usd


def margin_status(ltv: float, policy: MarginPolicy) -> MarginStatus:
    """
    Bucket an LTV against a margin policy.

    A value exactly at a threshold belongs to the higher-risk bucket.
    """
    if ltv >= policy.liquidation_threshold:
        return MarginStatus.LIQUIDATION
    if ltv >= policy.call_threshold:
        return MarginStatus.CALL
    if ltv >= policy.warn_threshold:
        return MarginStatus.WARNING
    return MarginStatus.HEALTHY


def stressed_pd(base_annual_pd: float, market_drawdown: float, leverage: float) -> float:
    """
    Wrong-way-risk adjusted probability of default.

    Mathematical Definition:
        PD_s = min(1, PD · (1 + drawdown · leverage · 2))

    Default probability rises with the severity of the collateral-market
    drawdown and with the borrower's own leverage.  The factor of 2 is a
    calibrated constant.

    Parameters
    ----------
    base_annual_pd : float
        Unstressed annual PD.
    market_drawdown : float
        Collateral-market drawdown (0 to 1).
    leverage : float
        Counterparty leverage ratio.

    Returns
    -------
    float
        Stressed PD in [0, 1].
    """
    stress_factor = 1 + market_drawdown * leverage * WRONG_WAY_RISK_FACTOR
    return min(base_annual_pd * stress_factor, 1.0)


def loss_given_default(
    collateral_value_usd: float,
    principal_usd: float,
    liquidation_slippage: float,
) -> float:
    """
    Loss severity after liquidating collateral at a slippage haircut.

    Mathematical Definition:
        LGD = max(0, P − C · (1 − s)) / P,  floored at 0.30, capped at 1.0

    The floor represents operational and liquidity friction that remains
    even when the collateral nominally covers the loan.
    """
    if principal_usd <= 0:
        return BASELINE_LGD
    proceeds = max(0.0, collateral_value_usd * (1 - liquidation_slippage))
    lgd = max(0.0, principal_usd - proceeds) / principal_usd
    return min(max(lgd, BASELINE_LGD), 1.0)


def expected_loss(loan: Loan, collateral_value_usd: float, market_drawdown: float = 0.0) -> float:
    """Classic EAD × PD × LGD with EAD = principal."""
    pd_stressed = stressed_pd(loan.rating.annual_pd, market_drawdown, loan.leverage)
    lgd = loss_given_default(
        collateral_value_usd,
        loan.principal_usd,
        loan.collateral.characteristics.liquidation_slippage,
    )
    return loan.principal_usd * pd_stressed * lgd


def daily_interest(loan: Loan) -> float:
    """Gross interest accrued per day (ACT/365)."""
    return loan.principal_usd * loan.terms.lending_rate / DAYS_PER_YEAR


def daily_net_interest(loan: Loan) -> float:
    """Interest per day net of the lender's cost of capital."""
    spread = loan.terms.lending_rate - loan.terms.cost_of_capital
    return loan.principal_usd * spread / DAYS_PER_YEAR


def excess_collateral(loan: Loan, collateral_value_usd: float) -> float:
    """Collateral value above the level at which the loan hits liquidation."""
    threshold_value = loan.principal_usd / loan.collateral.margin_policy.liquidation_threshold
    return collateral_value_usd - threshold_value


def margin_event_probability(
    current_ltv: float,
    threshold_ltv: float,
    annualized_volatility: float,
    horizon_days: float,
) -> float:
    """
    Probability that a log-normal collateral price crosses an LTV threshold.

    Algorithm:
        1. Required fractional price drop: d = 1 − LTV / LTV_threshold
           (already at or beyond the threshold ⇒ 1.0)
        2. Horizon volatility: σ_h = σ · √(days / 365)
        3. z = ln(1 / (1 − d)) / σ_h
        4. P = Φ(−z)

    Parameters
    ----------
    current_ltv : float
        Current loan-to-value ratio.
    threshold_ltv : float
        LTV at which the event fires.
    annualized_volatility : float
        Annualized volatility of the collateral price.
    horizon_days : float
        Look-ahead horizon in days.

    Returns
    -------
    float
        Event probability in [0, 1].
    """
    required_drop = 1 - current_ltv / threshold_ltv
    if required_drop <= 0:
        return 1.0

    scaled_volatility = annualized_volatility * math.sqrt(max(horizon_days, 0) / DAYS_PER_YEAR)
    if scaled_volatility <= 0:
        return 0.0

    z_score = math.log(1 / (1 - required_drop)) / scaled_volatility
    return float(stats.norm.cdf(-z_score))


def loan_margin_event_probability(
    loan: Loan,
    current_price_usd: float,
    annualized_volatility: float,
    horizon_days: float,
    event_kind: MarginEvent = MarginEvent.CALL,
) -> float:
    """``margin_event_probability`` against the loan's own call or liquidation threshold."""
    policy = loan.collateral.margin_policy
    event_kind = MarginEvent(event_kind)
    threshold = (
        policy.call_threshold if event_kind is MarginEvent.CALL
        else policy.liquidation_threshold
    )
    ltv = loan_to_value(loan, loan.collateral.value(current_price_usd))
    return margin_event_probability(ltv, threshold, annualized_volatility, horizon_days)


def calculate_loan_metrics(
    loan: Loan,
    collateral_value_usd: float,
    market_drawdown: float = 0.0,
) -> LoanMetrics:
    """
    Comprehensive real-time metrics for one loan.

    Parameters
    ----------
    loan : Loan
        Loan to evaluate.
    collateral_value_usd : float
        Current market value of the pledged collateral.
    market_drawdown : float
        Market drawdown feeding the wrong-way PD adjustment.

    Returns
    -------
    LoanMetrics
    """
    ltv = loan_to_value(loan, collateral_value_usd)
    return LoanMetrics(
        loan_to_value=ltv,
        margin_status=margin_status(ltv, loan.collateral.margin_policy),
        excess_collateral_usd=excess_collateral(loan, collateral_value_usd),
        daily_interest_usd=daily_interest(loan),
        expected_loss_usd=expected_loss(loan, collateral_value_usd, market_drawdown),
        current_pd=stressed_pd(loan.rating.annual_pd, market_drawdown, loan.leverage),
    )


def collateral_value(loan: Loan, prices: Mapping[AssetType, float]) -> float:
    """Value of a loan's collateral at the given asset prices."""
    return loan.collateral.value(prices[loan.asset_type])


# ─────────────────────────────────────────────────────────────
# Portfolio-level metrics
# ─────────────────────────────────────────────────────────────

def herfindahl_index(exposures: Iterable[float]) -> float:
    """
    Herfindahl-Hirschman Index over exposure shares in percent.

    HHI = Σ (100 · x_i / Σx)²   (10,000 for a single name, 0 when empty)
    """
    exposures = [float(x) for x in exposures]
    total = sum(exposures)
    if total <= 0:
        return 0.0
    return float(sum((100 * x / total) ** 2 for x in exposures))


def asset_concentration(
    collateral_values: Mapping[str, float],
    asset_types: Mapping[str, AssetType],
) -> Dict[AssetType, float]:
    """
    Percent of total collateral value per asset (all zeros without collateral).
    """
    concentration = {asset: 0.0 for asset in AssetType}
    total = sum(collateral_values.values())
    if total <= 0:
        return concentration
    for loan_id, value in collateral_values.items():
        concentration[asset_types[loan_id]] += value / total * 100
    return concentration


def risk_adjusted_ratio(
    annual_revenue_usd: float,
    expected_loss_usd: float,
    risk_capital_usd: float,
    risk_free_rate: float = RISK_FREE_RATE,
) -> float:
    """
    Sharpe-style ratio on risk capital.

    ratio = (r − r_f) / sqrt(EL / capital),   r = (revenue − EL) / capital

    The denominator is a volatility proxy built from expected loss, not a
    standard deviation of a return series.  Returns 0.0 without capital.
    """
    if risk_capital_usd <= 0:
        return 0.0
    expected_return = (annual_revenue_usd - expected_loss_usd) / risk_capital_usd
    proxy = math.sqrt(max(expected_loss_usd, 0.0) / risk_capital_usd)
    return (expected_return - risk_free_rate) / (proxy or MIN_VOLATILITY_PROXY)


def sharpe_ratio(annual_revenue_usd: float, expected_loss_usd: float, risk_capital_usd: float) -> float:
    return risk_adjusted_ratio(annual_revenue_usd, expected_loss_usd, risk_capital_usd)


def sortino_ratio(annual_revenue_usd: float, expected_loss_usd: float, risk_capital_usd: float) -> float:
    # Credit losses are one-sided, so the downside proxy equals the Sharpe proxy
    return risk_adjusted_ratio(annual_revenue_usd, expected_loss_usd, risk_capital_usd)


def calculate_portfolio_metrics(
    portfolio: Portfolio,
    prices: Mapping,
    market_drawdown: float = 0.0,
) -> PortfolioMetrics:
    """
    Aggregate portfolio metrics at a price snapshot.

    Aggregate LTV is defined as 0.0 when total collateral value is zero so
    that infinity never propagates to portfolio level; per-loan LTVs keep
    their ``inf`` sentinel.

    Parameters
    ----------
    portfolio : Portfolio
        Loan book.
    prices : Mapping
        Current USD price per collateral asset.
    market_drawdown : float
        Drawdown feeding the wrong-way PD adjustment.

    Returns
    -------
    PortfolioMetrics

    Raises
    ------
    InvalidPriceError
        If an asset held as collateral has no valid price.
    """
    prices = validate_prices(prices, {loan.asset_type for loan in portfolio.loans})

    values = {loan.loan_id: collateral_value(loan, prices) for loan in portfolio.loans}
    loan_metrics = {
        loan.loan_id: calculate_loan_metrics(loan, values[loan.loan_id], market_drawdown)
        for loan in portfolio.loans
    }

    total_exposure = portfolio.total_exposure_usd
    total_collateral = float(sum(values.values()))
    total_el = float(sum(m.expected_loss_usd for m in loan_metrics.values()))
    total_daily_revenue = float(sum(m.daily_interest_usd for m in loan_metrics.values()))

    aggregate_ltv = total_exposure / total_collateral if total_collateral > 0 else 0.0

    principals = [loan.principal_usd for loan in portfolio.loans]
    largest_pct = max(principals) / total_exposure * 100 if total_exposure > 0 else 0.0
    concentration = ConcentrationMetrics(
        asset_concentration=asset_concentration(
            values, {loan.loan_id: loan.asset_type for loan in portfolio.loans}
        ),
        borrower_hhi=herfindahl_index(principals),
        largest_exposure_percent=largest_pct,
    )

    annual_revenue = total_daily_revenue * DAYS_PER_YEAR

    return PortfolioMetrics(
        total_exposure_usd=total_exposure,
        total_collateral_value_usd=total_collateral,
        aggregate_ltv=aggregate_ltv,
        total_expected_loss_usd=total_el,
        total_daily_revenue_usd=total_daily_revenue,
        sharpe_ratio=sharpe_ratio(annual_revenue, total_el, portfolio.risk_capital_usd),
        sortino_ratio=sortino_ratio(annual_revenue, total_el, portfolio.risk_capital_usd),
        concentration=concentration,
        loan_metrics=loan_metrics,
    )


def loans_by_status(
    portfolio: Portfolio,
    prices: Mapping,
    status: MarginStatus,
) -> List[Loan]:
    """Loans currently in the given margin bucket."""
    status = MarginStatus(status)
    prices = validate_prices(prices, {loan.asset_type for loan in portfolio.loans})
    return [
        loan for loan in portfolio.loans
        if margin_status(
            loan_to_value(loan, collateral_value(loan, prices)),
            loan.collateral.margin_policy,
        ) is status
    ]
