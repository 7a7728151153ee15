"""
Statistical Estimation Module
==============================
Correlation structure construction and return-series estimators shared by
the simulators and the backtester.

Mathematical Foundation:
    Correlation:   ρ_ij = Cov(r_i, r_j) / (σ_i σ_j)
    Cholesky:      ρ = L L^T,  L lower triangular
    Log return:    r_t = ln(P_t / P_{t-1})
    Drawdown:      DD_t = (max_{s≤t} P_s − P_t) / max_{s≤t} P_s
"""

import math
import warnings
from typing import Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from crypto_credit_risk.assets import (
    AssetType,
    DEFAULT_CORRELATIONS,
    pair_key,
)
from crypto_credit_risk.config import HOURS_PER_YEAR


def build_correlation_matrix(
    assets: Sequence[AssetType],
    overrides: Optional[Mapping[Tuple[AssetType, AssetType], float]] = None,
    defaults: Mapping[Tuple[AssetType, AssetType], float] = DEFAULT_CORRELATIONS,
) -> np.ndarray:
    """
    Assemble a symmetric correlation matrix for ``assets``.

    Pairs missing from ``overrides`` fall back to ``defaults`` and then to
    zero.

    Parameters
    ----------
    assets : sequence of AssetType
        Row/column order of the matrix.
    overrides : Mapping, optional
        Pair → correlation (e.g. a scenario's correlation overrides).
    defaults : Mapping
        Pair → correlation used when a pair is not overridden.

    Returns
    -------
    np.ndarray
        Correlation matrix (N x N) with unit diagonal.
    """
    overrides = {pair_key(*p): v for p, v in (overrides or {}).items()}
    defaults = {pair_key(*p): v for p, v in defaults.items()}

    n = len(assets)
    corr = np.eye(n)
    for i in range(n):
        for j in range(i + 1, n):
            key = pair_key(assets[i], assets[j])
            rho = overrides.get(key, defaults.get(key, 0.0))
            corr[i, j] = corr[j, i] = rho
    return corr


def is_positive_semidefinite(matrix: np.ndarray, tol: float = 1e-10) -> bool:
    """
    Check if a matrix is symmetric and positive semi-definite.

    Parameters
    ----------
    matrix : np.ndarray
        Matrix to validate.
    tol : float
        Numerical tolerance for symmetry and eigenvalue sign.

    Returns
    -------
    bool
        True if valid, False otherwise.
    """
    if not np.allclose(matrix, matrix.T, atol=tol):
        return False

    eigenvalues = np.linalg.eigvalsh(matrix)
    return bool(np.all(eigenvalues >= -tol))


def cholesky_factor(corr_matrix: np.ndarray) -> np.ndarray:
    """
    Lower-triangular factor L with L L^T = ρ for a consistent ρ.

    Row-by-row Cholesky–Banachiewicz construction.  For three assets A, B, C
    it reduces to:

        L11 = 1
        L21 = ρ_AB           L22 = √(1 − ρ_AB²)
        L31 = ρ_AC           L32 = (ρ_BC − ρ_AB·ρ_AC) / L22
        L33 = √(max(0, 1 − ρ_AC² − L32²))

    Numerical-stability clamp: an inconsistent correlation set (not positive
    semi-definite) can force a negative radicand on the diagonal.  The
    radicand is clamped to zero and a ``RuntimeWarning`` is issued; the
    resulting factor reproduces the input correlations only approximately.
    A zero pivot (perfect correlation) yields a zero sub-column instead of a
    division by zero.

    Parameters
    ----------
    corr_matrix : np.ndarray
        Symmetric correlation matrix (N x N).

    Returns
    -------
    np.ndarray
        Lower triangular factor L (N x N).
    """
    corr = np.asarray(corr_matrix, dtype=float)
    n = corr.shape[0]
    L = np.zeros((n, n))
    clamped = False

    for i in range(n):
        for j in range(i):
            if L[j, j] > 0:
                L[i, j] = (corr[i, j] - L[i, :j] @ L[j, :j]) / L[j, j]
            else:
                L[i, j] = 0.0
        radicand = corr[i, i] - L[i, :i] @ L[i, :i]
        if radicand < -1e-12:
            clamped = True
        L[i, i] = math.sqrt(max(0.0, radicand))

    if clamped:
        warnings.warn(
            "Correlation matrix is not positive semi-definite; "
            "negative Cholesky radicand clamped to zero.",
            RuntimeWarning,
            stacklevel=2,
        )

    return L


def compute_log_returns(prices: pd.DataFrame) -> pd.DataFrame:
    """
    Compute logarithmic returns from price series.

    Mathematical Definition:
        r_t = ln(P_t / P_{t-1})

    Parameters
    ----------
    prices : pd.DataFrame
        DataFrame of asset prices.

    Returns
    -------
    pd.DataFrame
        DataFrame of log returns (first row dropped).
    """
    return np.log(prices / prices.shift(1)).dropna()


def compute_simple_returns(prices: pd.DataFrame) -> pd.DataFrame:
    """Arithmetic returns r_t = (P_t − P_{t-1}) / P_{t-1} (first row dropped)."""
    return prices.pct_change().dropna()


def compute_correlation_matrix(returns: pd.DataFrame) -> pd.DataFrame:
    """
    Pearson correlation matrix of a return panel.

    Columns with zero variance produce NaN entries.
    """
    return returns.corr(method="pearson")


def historical_correlation(returns_a: Sequence[float], returns_b: Sequence[float]) -> float:
    """
    Pearson correlation of two return series.

    Returns
    -------
    float
        Correlation in [-1, 1]; NaN when either series has zero variance or
        the series lengths differ or are shorter than two observations.
    """
    a = np.asarray(returns_a, dtype=float)
    b = np.asarray(returns_b, dtype=float)
    if a.shape != b.shape or a.size < 2:
        return float("nan")

    da = a - a.mean()
    db = b - b.mean()
    denominator = math.sqrt(float(da @ da) * float(db @ db))
    if denominator == 0:
        return float("nan")
    return float(da @ db) / denominator


def annualized_volatility(
    prices: pd.Series,
    periods_per_year: int = HOURS_PER_YEAR,
) -> float:
    """
    Annualized volatility of simple returns of a price series.

    Parameters
    ----------
    prices : pd.Series
        Price series sampled at a fixed frequency.
    periods_per_year : int
        Sampling periods per year (8760 for hourly bars).

    Returns
    -------
    float
        σ_period · √periods_per_year (0.0 for fewer than two returns).
    """
    returns = prices.pct_change().dropna()
    if len(returns) < 2:
        return 0.0
    return float(returns.std(ddof=0) * np.sqrt(periods_per_year))


def max_drawdown(prices: pd.Series) -> float:
    """
    Largest peak-to-trough decline as a fraction of the peak.

    Returns
    -------
    float
        Maximum drawdown in [0, 1] (0.0 for an empty series).
    """
    if prices.empty:
        return 0.0
    running_peak = prices.cummax()
    drawdowns = (running_peak - prices) / running_peak
    return float(drawdowns.max())
