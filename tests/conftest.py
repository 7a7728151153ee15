"""
tests/conftest.py

Pytest configuration for import paths and shared fixtures.
"""

import os
import sys
from datetime import date

import pytest

workspace_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if workspace_root not in sys.path:
    sys.path.insert(0, workspace_root)

from crypto_credit_risk.assets import AssetType, CollateralAsset, DEFAULT_CURRENT_PRICES
from crypto_credit_risk.monte_carlo import MonteCarloEngine
from crypto_credit_risk.portfolio import CreditRatingTier, Loan, LoanTerms, Portfolio
from crypto_credit_risk.sample_data import generate_sample_portfolio
from crypto_credit_risk.scenarios import default_catalog


@pytest.fixture
def prices():
    return dict(DEFAULT_CURRENT_PRICES)


@pytest.fixture
def sample_portfolio():
    return generate_sample_portfolio(today=date(2025, 1, 1))


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def baseline(catalog):
    return catalog.get("baseline")


@pytest.fixture
def engine():
    return MonteCarloEngine(num_trials=500, seed=7)


@pytest.fixture
def make_loan():
    """Factory for single loans with sensible defaults."""

    def _make(
        loan_id="TEST-1",
        principal=1_000_000.0,
        asset=AssetType.BTC,
        quantity=10.0,
        rating=CreditRatingTier.BBB,
        rate=0.10,
        leverage=1.0,
    ):
        return Loan(
            loan_id=loan_id,
            borrower_name="Test Borrower",
            rating=rating,
            terms=LoanTerms(principal_usd=principal, lending_rate=rate),
            collateral=CollateralAsset(asset, quantity),
            leverage=leverage,
        )

    return _make


@pytest.fixture
def single_loan_portfolio(make_loan):
    def _make(**kwargs):
        return Portfolio((make_loan(**kwargs),), risk_capital_usd=10_000_000.0)

    return _make
