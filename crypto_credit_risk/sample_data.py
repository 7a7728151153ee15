"""
Sample loan book used by the demo pipeline and the test suite.

Ten loans across the three collateral assets and three rating tiers,
backed by $100M of risk capital.
"""

from datetime import date, timedelta
from typing import Optional

from crypto_credit_risk.assets import AssetType, CollateralAsset
from crypto_credit_risk.config import RISK_FREE_RATE
from crypto_credit_risk.portfolio import CreditRatingTier, Loan, LoanTerms, Portfolio

SAMPLE_RISK_CAPITAL_USD: float = 100_000_000.0

# loan_id, borrower, tier, principal, rate, asset, quantity, leverage, roll in, originated ago
_SAMPLE_LOANS = (
    ("LOAN-001", "Crypto Capital Partners", "BBB", 15_000_000, 0.0945, "BTC", 200, 2.5, 25, 180),
    ("LOAN-002", "DeFi Ventures LLC", "A", 8_000_000, 0.0895, "ETH", 3_000, 1.8, 18, 120),
    ("LOAN-003", "Blockchain Treasury Fund", "AA", 5_000_000, 0.0795, "SOL", 35_000, 1.2, 12, 90),
    ("LOAN-004", "Institutional Crypto Holdings", "A", 12_000_000, 0.0895, "BTC", 160, 2.0, 22, 150),
    ("LOAN-005", "Crypto Trading Group", "BBB", 10_000_000, 0.0945, "BTC", 120, 3.5, 8, 60),
    ("LOAN-006", "Digital Asset Management", "A", 11_000_000, 0.0895, "ETH", 4_200, 1.5, 28, 200),
    ("LOAN-007", "Solana Investments Ltd", "BBB", 7_000_000, 0.0945, "SOL", 50_000, 2.8, 15, 45),
    ("LOAN-008", "Prime Digital Assets", "AA", 6_000_000, 0.0795, "BTC", 90, 1.0, 20, 240),
    ("LOAN-009", "Ethereum Capital Group", "BBB", 13_000_000, 0.0945, "ETH", 5_000, 3.0, 5, 30),
    ("LOAN-010", "Layer 1 Holdings", "A", 9_000_000, 0.0895, "SOL", 65_000, 2.2, 27, 100),
)


def generate_sample_portfolio(today: Optional[date] = None) -> Portfolio:
    """
    Build the sample portfolio with roll and origination dates relative to
    ``today`` (default: the current date).
    """
    today = today or date.today()
    loans = []
    for (loan_id, borrower, tier, principal, rate, asset, quantity,
         leverage, roll_in, originated_ago) in _SAMPLE_LOANS:
        loans.append(Loan(
            loan_id=loan_id,
            borrower_name=borrower,
            rating=CreditRatingTier(tier),
            terms=LoanTerms(
                principal_usd=float(principal),
                lending_rate=rate,
                cost_of_capital=RISK_FREE_RATE,
                tenor_days=30,
                roll_date=today + timedelta(days=roll_in),
            ),
            collateral=CollateralAsset(AssetType(asset), float(quantity)),
            leverage=leverage,
            origination_date=today - timedelta(days=originated_ago),
        ))
    return Portfolio(tuple(loans), SAMPLE_RISK_CAPITAL_USD)
