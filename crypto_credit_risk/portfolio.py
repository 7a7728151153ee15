"""
Loan Portfolio Module
=====================
Data records for the loan book: credit rating tiers, loan terms, loans and
the portfolio aggregate root, plus price validation and tabular export.

Records are immutable.  Editing a loan means building a new ``Loan`` (for
example with ``dataclasses.replace``) and swapping it into a new
``Portfolio`` via ``with_loan``.  All metrics live in ``risk_metrics``;
(de)serialization lives in ``serialization``.
"""

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import pandas as pd

from crypto_credit_risk.assets import AssetType, CollateralAsset
from crypto_credit_risk.config import DAYS_PER_YEAR
from crypto_credit_risk.exceptions import (
    InvalidLoanError,
    InvalidPriceError,
    PortfolioValidationError,
)


class CreditRatingTier(str, Enum):
    """Borrower credit tier, riskiest first."""
    BBB = "BBB"
    A = "A"
    AA = "AA"

    @property
    def annual_pd(self) -> float:
        return BASE_ANNUAL_PD[self]

    def pd_for_horizon(self, days: float) -> float:
        """
        Time-scaled PD using the linear approximation PD_t = PD_annual · t/365.
        """
        return min(self.annual_pd * (days / DAYS_PER_YEAR), 1.0)


# Strictly decreasing as credit quality improves
BASE_ANNUAL_PD: Dict[CreditRatingTier, float] = {
    CreditRatingTier.BBB: 0.015,
    CreditRatingTier.A: 0.008,
    CreditRatingTier.AA: 0.003,
}


@dataclass(frozen=True)
class LoanTerms:
    """Commercial terms of a loan."""
    principal_usd: float
    lending_rate: float
    cost_of_capital: float = 0.0
    tenor_days: int = 30
    roll_date: Optional[date] = None

    def __post_init__(self) -> None:
        if not math.isfinite(self.principal_usd) or self.principal_usd < 0:
            raise InvalidLoanError(
                f"Principal must be a non-negative finite amount, got {self.principal_usd}"
            )
        if not math.isfinite(self.lending_rate) or not math.isfinite(self.cost_of_capital):
            raise InvalidLoanError("Lending rate and cost of capital must be finite")
        if self.tenor_days < 0:
            raise InvalidLoanError(f"Tenor must be non-negative, got {self.tenor_days}")


@dataclass(frozen=True)
class Loan:
    """
    A crypto-collateralized loan.

    Attributes
    ----------
    loan_id : str
        Identifier, unique within a portfolio.
    borrower_name : str
        Counterparty name.
    rating : CreditRatingTier
        Borrower credit tier.
    terms : LoanTerms
        Principal, rates, tenor and roll date.
    collateral : CollateralAsset
        Pledged asset and quantity.
    leverage : float
        Counterparty leverage ratio (drives wrong-way risk).
    origination_date : date, optional
        Date the loan was booked.
    """
    loan_id: str
    borrower_name: str
    rating: CreditRatingTier
    terms: LoanTerms
    collateral: CollateralAsset
    leverage: float = 1.0
    origination_date: Optional[date] = None

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "rating", CreditRatingTier(self.rating))
        except ValueError as exc:
            raise InvalidLoanError(f"Unknown credit rating {self.rating!r}") from exc
        if not math.isfinite(self.leverage) or self.leverage < 0:
            raise InvalidLoanError(
                f"Leverage must be a non-negative finite ratio, got {self.leverage}"
            )

    @property
    def principal_usd(self) -> float:
        return self.terms.principal_usd

    @property
    def asset_type(self) -> AssetType:
        return self.collateral.asset_type


@dataclass(frozen=True)
class Portfolio:
    """
    Ordered collection of loans sharing one risk-capital pool.

    Raises
    ------
    PortfolioValidationError
        On duplicate loan ids or negative / non-finite risk capital.
    """
    loans: Tuple[Loan, ...] = field(default_factory=tuple)
    risk_capital_usd: float = 0.0

    def __post_init__(self) -> None:
        loans = tuple(self.loans)
        object.__setattr__(self, "loans", loans)

        seen = set()
        duplicates = []
        for loan in loans:
            if loan.loan_id in seen:
                duplicates.append(loan.loan_id)
            seen.add(loan.loan_id)
        if duplicates:
            raise PortfolioValidationError(f"Duplicate loan ids: {sorted(set(duplicates))}")

        if not math.isfinite(self.risk_capital_usd) or self.risk_capital_usd < 0:
            raise PortfolioValidationError(
                f"Risk capital must be a non-negative finite amount, got {self.risk_capital_usd}"
            )

    def __len__(self) -> int:
        return len(self.loans)

    def __iter__(self) -> Iterator[Loan]:
        return iter(self.loans)

    @property
    def loan_ids(self) -> List[str]:
        return [loan.loan_id for loan in self.loans]

    @property
    def total_exposure_usd(self) -> float:
        return float(sum(loan.principal_usd for loan in self.loans))

    def get(self, loan_id: str) -> Loan:
        for loan in self.loans:
            if loan.loan_id == loan_id:
                return loan
        raise KeyError(loan_id)

    def with_loan(self, loan: Loan) -> "Portfolio":
        """Return a portfolio with ``loan`` replacing its namesake, or appended."""
        loans = list(self.loans)
        for i, existing in enumerate(loans):
            if existing.loan_id == loan.loan_id:
                loans[i] = loan
                break
        else:
            loans.append(loan)
        return Portfolio(tuple(loans), self.risk_capital_usd)

    def without_loan(self, loan_id: str) -> "Portfolio":
        """Return a portfolio without ``loan_id`` (unchanged if absent)."""
        return Portfolio(
            tuple(loan for loan in self.loans if loan.loan_id != loan_id),
            self.risk_capital_usd,
        )


def validate_prices(
    prices: Mapping,
    assets: Optional[Iterable[AssetType]] = None,
) -> Dict[AssetType, float]:
    """
    Check that every required asset has a finite, non-negative USD price.

    Parameters
    ----------
    prices : Mapping
        Asset → USD price (keys may be ``AssetType`` or ticker strings).
    assets : iterable of AssetType, optional
        Assets that must be priced.  Defaults to the keys of ``prices``.

    Returns
    -------
    dict
        Validated prices keyed by ``AssetType``.

    Raises
    ------
    InvalidPriceError
        If a required price is missing, negative or not finite.
    """
    try:
        normalized = {AssetType(asset): price for asset, price in prices.items()}
    except ValueError as exc:
        raise InvalidPriceError(str(exc)) from exc

    required = list(assets) if assets is not None else list(normalized)
    validated: Dict[AssetType, float] = {}

    for asset in required:
        asset = AssetType(asset)
        if asset not in normalized:
            raise InvalidPriceError(f"No price supplied for {asset.value}")
        try:
            price = float(normalized[asset])
        except (TypeError, ValueError) as exc:
            raise InvalidPriceError(f"Price for {asset.value} is not numeric") from exc
        if not math.isfinite(price) or price < 0:
            raise InvalidPriceError(
                f"Price for {asset.value} must be a non-negative finite number, got {price}"
            )
        validated[asset] = price

    for asset, price in normalized.items():
        if asset not in validated:
            validated[asset] = float(price)

    return validated


def portfolio_to_frame(portfolio: Portfolio) -> pd.DataFrame:
    """
    Flatten the loan book into one row per loan.

    Parameters
    ----------
    portfolio : Portfolio
        Portfolio to tabulate.

    Returns
    -------
    pd.DataFrame
        Indexed by loan id, with borrower, rating, principal, rates, tenor,
        collateral asset/quantity and leverage columns.
    """
    rows = [
        {
            "loan_id": loan.loan_id,
            "borrower_name": loan.borrower_name,
            "rating": loan.rating.value,
            "principal_usd": loan.principal_usd,
            "lending_rate": loan.terms.lending_rate,
            "cost_of_capital": loan.terms.cost_of_capital,
            "tenor_days": loan.terms.tenor_days,
            "collateral_asset": loan.asset_type.value,
            "collateral_quantity": loan.collateral.quantity,
            "leverage": loan.leverage,
        }
        for loan in portfolio.loans
    ]
    columns = [
        "loan_id", "borrower_name", "rating", "principal_usd", "lending_rate",
        "cost_of_capital", "tenor_days", "collateral_asset",
        "collateral_quantity", "leverage",
    ]
    return pd.DataFrame(rows, columns=columns).set_index("loan_id")


def get_portfolio_summary(portfolio: Portfolio) -> Dict[str, object]:
    """
    Headline composition of the loan book.

    Returns
    -------
    dict
        total_exposure_usd, num_loans, exposure by rating tier, exposure by
        collateral asset and average leverage.
    """
    frame = portfolio_to_frame(portfolio)
    rating_breakdown = {tier.value: 0.0 for tier in CreditRatingTier}
    asset_breakdown = {asset.value: 0.0 for asset in AssetType}

    if not frame.empty:
        rating_breakdown.update(frame.groupby("rating")["principal_usd"].sum().to_dict())
        asset_breakdown.update(frame.groupby("collateral_asset")["principal_usd"].sum().to_dict())

    return {
        "total_exposure_usd": portfolio.total_exposure_usd,
        "num_loans": len(portfolio),
        "rating_breakdown": rating_breakdown,
        "asset_breakdown": asset_breakdown,
        "avg_leverage": float(frame["leverage"].mean()) if not frame.empty else 0.0,
    }
