"""Tests for the deterministic loan and portfolio risk metrics."""

import math
from dataclasses import replace

import pytest
from scipy import stats

from crypto_credit_risk.assets import AssetType, MARGIN_POLICIES
from crypto_credit_risk.exceptions import InvalidPriceError
from crypto_credit_risk.portfolio import CreditRatingTier, LoanTerms, Portfolio
from crypto_credit_risk.risk_metrics import (
    MarginEvent,
    MarginStatus,
    calculate_loan_metrics,
    calculate_portfolio_metrics,
    daily_interest,
    daily_net_interest,
    excess_collateral,
    expected_loss,
    herfindahl_index,
    loan_margin_event_probability,
    loan_to_value,
    loans_by_status,
    loss_given_default,
    margin_event_probability,
    margin_status,
    sharpe_ratio,
    sortino_ratio,
    stressed_pd,
)


# ─────────────────────────────────────────────────────────────
# Loan level
# ─────────────────────────────────────────────────────────────

def test_fully_drawn_loan_is_in_liquidation(make_loan):
    loan = make_loan(principal=1_000_000.0, quantity=10.0)
    metrics = calculate_loan_metrics(loan, loan.collateral.value(100_000.0))
    assert metrics.loan_to_value == pytest.approx(1.0)
    assert metrics.margin_status is MarginStatus.LIQUIDATION


def test_half_drawn_loan_is_healthy(make_loan):
    loan = make_loan(principal=1_000_000.0, quantity=20.0, rate=0.0945)
    metrics = calculate_loan_metrics(loan, loan.collateral.value(100_000.0))
    assert metrics.loan_to_value == pytest.approx(0.5)
    assert metrics.margin_status is MarginStatus.HEALTHY
    assert metrics.daily_interest_usd == pytest.approx(1_000_000.0 * 0.0945 / 365)


@pytest.mark.parametrize("ltv, expected", [
    (0.69999, MarginStatus.HEALTHY),
    (0.70, MarginStatus.WARNING),
    (0.79, MarginStatus.WARNING),
    (0.80, MarginStatus.CALL),
    (0.89, MarginStatus.CALL),
    (0.90, MarginStatus.LIQUIDATION),
    (math.inf, MarginStatus.LIQUIDATION),
])
def test_btc_margin_transitions(ltv, expected):
    assert margin_status(ltv, MARGIN_POLICIES[AssetType.BTC]) is expected


def test_worthless_collateral_gives_infinite_ltv(make_loan):
    loan = make_loan()
    assert loan_to_value(loan, 0.0) == math.inf


def test_stressed_pd_identity_at_zero_drawdown():
    for tier in CreditRatingTier:
        assert stressed_pd(tier.annual_pd, 0.0, 3.0) == tier.annual_pd


def test_stressed_pd_formula():
    assert stressed_pd(0.015, 0.5, 2.0) == pytest.approx(0.015 * (1 + 0.5 * 2.0 * 2))


def test_stressed_pd_is_monotone_and_capped():
    by_drawdown = [stressed_pd(0.015, d, 2.0) for d in (0.0, 0.2, 0.4, 0.8)]
    by_leverage = [stressed_pd(0.015, 0.3, lev) for lev in (0.5, 1.0, 2.0, 4.0)]
    assert by_drawdown == sorted(by_drawdown)
    assert by_leverage == sorted(by_leverage)
    assert stressed_pd(0.5, 1.0, 10.0) == 1.0


def test_stressed_pd_preserves_tier_order():
    pds = [stressed_pd(t.annual_pd, 0.4, 2.0) for t in
           (CreditRatingTier.BBB, CreditRatingTier.A, CreditRatingTier.AA)]
    assert pds[0] > pds[1] > pds[2]


def test_lgd_floor_when_overcollateralized():
    assert loss_given_default(2_000_000.0, 1_000_000.0, 0.04) == pytest.approx(0.30)


def test_lgd_undercollateralized():
    # proceeds = 500k * 0.96 = 480k
    assert loss_given_default(500_000.0, 1_000_000.0, 0.04) == pytest.approx(0.52)


def test_lgd_capped_at_one():
    assert loss_given_default(0.0, 1_000_000.0, 0.04) == 1.0
    assert loss_given_default(100.0, 1_000_000.0, 5.0) == 1.0


def test_expected_loss_is_ead_pd_lgd(make_loan):
    loan = make_loan(principal=1_000_000.0, quantity=5.0, leverage=2.0)
    value = loan.collateral.value(100_000.0)
    expected = 1_000_000.0 * stressed_pd(0.015, 0.25, 2.0) * loss_given_default(value, 1_000_000.0, 0.04)
    assert expected_loss(loan, value, 0.25) == pytest.approx(expected)


def test_interest_and_excess_collateral(make_loan):
    loan = replace(
        make_loan(principal=900_000.0, quantity=20.0),
        terms=LoanTerms(900_000.0, 0.0945, cost_of_capital=0.045),
    )
    assert daily_net_interest(loan) == pytest.approx(900_000.0 * 0.0495 / 365)
    # liquidation value = 900k / 0.90 = 1M
    assert excess_collateral(loan, 2_000_000.0) == pytest.approx(1_000_000.0)
    assert daily_interest(loan) > daily_net_interest(loan)


def test_margin_event_probability_known_value():
    # Price must halve: z = ln 2 / 0.5
    expected = stats.norm.cdf(-math.log(2) / 0.5)
    assert margin_event_probability(0.4, 0.8, 0.5, 365) == pytest.approx(expected)


def test_margin_event_probability_edge_cases():
    assert margin_event_probability(0.85, 0.80, 0.5, 30) == 1.0
    assert margin_event_probability(0.40, 0.80, 0.0, 30) == 0.0
    assert margin_event_probability(0.40, 0.80, 0.5, 0) == 0.0


def test_margin_event_probability_increases_with_horizon():
    probs = [margin_event_probability(0.6, 0.8, 0.5, d) for d in (1, 7, 30, 90)]
    assert probs == sorted(probs)


def test_liquidation_less_likely_than_call(make_loan):
    loan = make_loan(principal=1_000_000.0, quantity=20.0)
    call = loan_margin_event_probability(loan, 100_000.0, 0.5, 30, MarginEvent.CALL)
    liquidation = loan_margin_event_probability(loan, 100_000.0, 0.5, 30, MarginEvent.LIQUIDATION)
    assert 0 < liquidation < call < 1


# ─────────────────────────────────────────────────────────────
# Portfolio level
# ─────────────────────────────────────────────────────────────

def test_hhi_reference_values():
    assert herfindahl_index([30, 30, 30, 10]) == pytest.approx(2800.0)
    assert herfindahl_index([5_000_000]) == pytest.approx(10_000.0)
    assert herfindahl_index([]) == 0.0


def test_portfolio_metrics(sample_portfolio, prices):
    metrics = calculate_portfolio_metrics(sample_portfolio, prices)

    collateral = sum(loan.collateral.value(prices[loan.asset_type]) for loan in sample_portfolio)
    assert metrics.total_exposure_usd == pytest.approx(96_000_000.0)
    assert metrics.total_collateral_value_usd == pytest.approx(collateral)
    assert metrics.aggregate_ltv == pytest.approx(96_000_000.0 / collateral)
    assert metrics.total_expected_loss_usd == pytest.approx(
        sum(m.expected_loss_usd for m in metrics.loan_metrics.values())
    )
    assert sum(metrics.concentration.asset_concentration.values()) == pytest.approx(100.0)
    assert metrics.concentration.largest_exposure_percent == pytest.approx(15 / 96 * 100)
    assert set(metrics.loan_metrics) == set(sample_portfolio.loan_ids)
    assert metrics.sharpe_ratio == metrics.sortino_ratio


def test_portfolio_metrics_with_worthless_collateral(sample_portfolio):
    zero_prices = {asset: 0.0 for asset in AssetType}
    metrics = calculate_portfolio_metrics(sample_portfolio, zero_prices)
    assert metrics.aggregate_ltv == 0.0
    assert all(m.loan_to_value == math.inf for m in metrics.loan_metrics.values())
    assert all(m.margin_status is MarginStatus.LIQUIDATION for m in metrics.loan_metrics.values())


def test_portfolio_metrics_requires_prices(sample_portfolio):
    with pytest.raises(InvalidPriceError):
        calculate_portfolio_metrics(sample_portfolio, {AssetType.BTC: 100_000.0})


def test_empty_portfolio_metrics(prices):
    metrics = calculate_portfolio_metrics(Portfolio(), prices)
    assert metrics.total_exposure_usd == 0.0
    assert metrics.aggregate_ltv == 0.0
    assert metrics.concentration.borrower_hhi == 0.0


def test_risk_adjusted_ratios_without_capital():
    assert sharpe_ratio(1_000_000.0, 100_000.0, 0.0) == 0.0
    assert sortino_ratio(1_000_000.0, 100_000.0, 0.0) == 0.0


def test_sharpe_ratio_formula():
    # r = (10M - 1M) / 100M = 0.09; proxy = sqrt(0.01) = 0.1
    assert sharpe_ratio(10_000_000.0, 1_000_000.0, 100_000_000.0) == pytest.approx((0.09 - 0.045) / 0.1)


def test_loans_by_status(sample_portfolio, prices):
    warning = loans_by_status(sample_portfolio, prices, MarginStatus.WARNING)
    assert "LOAN-005" in [loan.loan_id for loan in warning]
    for loan in warning:
        ltv = loan_to_value(loan, loan.collateral.value(prices[loan.asset_type]))
        assert margin_status(ltv, loan.collateral.margin_policy) is MarginStatus.WARNING
