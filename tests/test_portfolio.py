"""Tests for loan records, the portfolio aggregate and price validation."""

import math
from dataclasses import replace
from datetime import date

import pytest

from crypto_credit_risk.assets import AssetType
from crypto_credit_risk.exceptions import (
    InvalidLoanError,
    InvalidPriceError,
    PortfolioValidationError,
)
from crypto_credit_risk.portfolio import (
    CreditRatingTier,
    LoanTerms,
    Portfolio,
    get_portfolio_summary,
    portfolio_to_frame,
    validate_prices,
)


def test_base_pd_decreases_with_credit_quality():
    assert CreditRatingTier.BBB.annual_pd > CreditRatingTier.A.annual_pd > CreditRatingTier.AA.annual_pd


def test_pd_for_horizon_is_linear_and_capped():
    assert CreditRatingTier.BBB.pd_for_horizon(365) == pytest.approx(0.015)
    assert CreditRatingTier.BBB.pd_for_horizon(73) == pytest.approx(0.003)
    assert CreditRatingTier.BBB.pd_for_horizon(365 * 1000) == 1.0


def test_loan_coerces_rating_string(make_loan):
    assert make_loan(rating="AA").rating is CreditRatingTier.AA


def test_unknown_rating_raises(make_loan):
    with pytest.raises(InvalidLoanError):
        make_loan(rating="CCC")


@pytest.mark.parametrize("principal", [-1.0, math.nan])
def test_invalid_principal_raises(principal):
    with pytest.raises(InvalidLoanError):
        LoanTerms(principal_usd=principal, lending_rate=0.1)


def test_negative_leverage_raises(make_loan):
    with pytest.raises(InvalidLoanError):
        make_loan(leverage=-0.5)


def test_duplicate_loan_ids_rejected(make_loan):
    with pytest.raises(PortfolioValidationError):
        Portfolio((make_loan(loan_id="X"), make_loan(loan_id="X")))


def test_negative_risk_capital_rejected(make_loan):
    with pytest.raises(PortfolioValidationError):
        Portfolio((make_loan(),), risk_capital_usd=-1.0)


def test_with_loan_replaces_and_appends(make_loan):
    portfolio = Portfolio((make_loan(loan_id="A"), make_loan(loan_id="B")))
    edited = replace(portfolio.get("A"), leverage=3.0)

    updated = portfolio.with_loan(edited)
    assert updated.loan_ids == ["A", "B"]
    assert updated.get("A").leverage == 3.0
    assert portfolio.get("A").leverage == 1.0

    appended = portfolio.with_loan(make_loan(loan_id="C"))
    assert appended.loan_ids == ["A", "B", "C"]


def test_without_loan(make_loan):
    portfolio = Portfolio((make_loan(loan_id="A"), make_loan(loan_id="B")), 5.0)
    reduced = portfolio.without_loan("A")
    assert reduced.loan_ids == ["B"]
    assert reduced.risk_capital_usd == 5.0
    assert portfolio.without_loan("missing").loan_ids == ["A", "B"]


def test_get_missing_loan_raises(sample_portfolio):
    with pytest.raises(KeyError):
        sample_portfolio.get("LOAN-999")


def test_validate_prices_normalizes_and_checks():
    validated = validate_prices({"BTC": 100.0, AssetType.ETH: 10})
    assert validated == {AssetType.BTC: 100.0, AssetType.ETH: 10.0}

    with pytest.raises(InvalidPriceError):
        validate_prices({AssetType.BTC: 100.0}, [AssetType.SOL])
    with pytest.raises(InvalidPriceError):
        validate_prices({AssetType.BTC: -1.0})
    with pytest.raises(InvalidPriceError):
        validate_prices({AssetType.BTC: math.inf})
    with pytest.raises(InvalidPriceError):
        validate_prices({"DOGE": 1.0})


def test_sample_portfolio_shape(sample_portfolio):
    assert len(sample_portfolio) == 10
    assert sample_portfolio.risk_capital_usd == 100_000_000.0
    assert sample_portfolio.total_exposure_usd == pytest.approx(96_000_000.0)

    loan = sample_portfolio.get("LOAN-001")
    assert loan.terms.roll_date == date(2025, 1, 26)
    assert loan.origination_date == date(2024, 7, 5)


def test_portfolio_frame(sample_portfolio):
    frame = portfolio_to_frame(sample_portfolio)
    assert list(frame.index) == sample_portfolio.loan_ids
    assert frame.loc["LOAN-003", "collateral_asset"] == "SOL"
    assert frame["principal_usd"].sum() == pytest.approx(96_000_000.0)


def test_portfolio_summary(sample_portfolio):
    summary = get_portfolio_summary(sample_portfolio)
    assert summary["num_loans"] == 10
    assert summary["rating_breakdown"] == pytest.approx(
        {"BBB": 45_000_000.0, "A": 40_000_000.0, "AA": 11_000_000.0}
    )
    assert summary["asset_breakdown"] == pytest.approx(
        {"BTC": 43_000_000.0, "ETH": 32_000_000.0, "SOL": 21_000_000.0}
    )
    assert summary["avg_leverage"] == pytest.approx(2.15)


def test_empty_portfolio_summary():
    summary = get_portfolio_summary(Portfolio())
    assert summary["num_loans"] == 0
    assert summary["total_exposure_usd"] == 0.0
    assert summary["avg_leverage"] == 0.0
