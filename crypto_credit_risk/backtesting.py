"""
Backtesting Module
==================
Replays a loan against historical collateral prices to check the
calibration of the margin-event probability model.

Framework:
    1. Trailing window of hourly closes → realized annualized volatility
    2. Predict P(margin event within horizon) from current LTV and σ
    3. Observe whether the LTV actually reached the threshold in the
       following horizon
    4. Compare predicted and realized event rates
    5. Kupiec POF test at the mean predicted probability
"""

import math
from typing import Dict, Union

import numpy as np
import pandas as pd
from scipy import stats

from crypto_credit_risk.config import HOURS_PER_YEAR
from crypto_credit_risk.portfolio import Loan
from crypto_credit_risk.risk_metrics import (
    MarginEvent,
    loan_margin_event_probability,
    loan_to_value,
    margin_status,
)


# ─────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────
DEFAULT_HORIZON_HOURS: int = 24 * 7
DEFAULT_WINDOW_HOURS: int = 24 * 30
DEFAULT_STEP_HOURS: int = 24


def _close_series(loan: Loan, close_prices: Union[pd.DataFrame, pd.Series]) -> pd.Series:
    if isinstance(close_prices, pd.DataFrame):
        return close_prices[loan.asset_type.value]
    return close_prices


def ltv_history(loan: Loan, close_prices: Union[pd.DataFrame, pd.Series]) -> pd.DataFrame:
    """
    Loan-to-value path of a loan over a price history.

    Parameters
    ----------
    loan : Loan
        Loan to replay.
    close_prices : pd.DataFrame or pd.Series
        Close prices; a DataFrame is indexed by the loan's asset ticker.

    Returns
    -------
    pd.DataFrame
        Columns: price, collateral_value_usd, loan_to_value, margin_status.
    """
    prices = _close_series(loan, close_prices)
    values = prices * loan.collateral.quantity
    ltv = values.map(lambda v: loan_to_value(loan, float(v)))
    policy = loan.collateral.margin_policy

    return pd.DataFrame({
        "price": prices,
        "collateral_value_usd": values,
        "loan_to_value": ltv,
        "margin_status": ltv.map(lambda x: margin_status(x, policy).value),
    })


def margin_event_backtest(
    loan: Loan,
    close_prices: Union[pd.DataFrame, pd.Series],
    horizon_hours: int = DEFAULT_HORIZON_HOURS,
    window_hours: int = DEFAULT_WINDOW_HOURS,
    step_hours: int = DEFAULT_STEP_HOURS,
    event_kind: MarginEvent = MarginEvent.CALL,
) -> pd.DataFrame:
    """
    Rolling calibration test of the margin-event probability.

    Algorithm:
        For each observation t (every ``step_hours`` from ``window_hours``):
            1. σ_t = std(log returns over [t − window, t)) · √8760
            2. p_t = P(event within horizon | price_t, σ_t)
            3. event_t = max LTV over (t, t + horizon] ≥ threshold

    Consecutive observations overlap when ``step_hours < horizon_hours``,
    so realized events are serially correlated.

    Parameters
    ----------
    loan : Loan
        Loan to replay.
    close_prices : pd.DataFrame or pd.Series
        Hourly close prices.
    horizon_hours : int
        Look-ahead horizon.
    window_hours : int
        Volatility estimation window.
    step_hours : int
        Spacing between observations.
    event_kind : MarginEvent
        Margin call or liquidation threshold.

    Returns
    -------
    pd.DataFrame
        Columns: date, loan_to_value, volatility, predicted_probability,
        event.
    """
    event_kind = MarginEvent(event_kind)
    policy = loan.collateral.margin_policy
    threshold = (
        policy.call_threshold if event_kind is MarginEvent.CALL
        else policy.liquidation_threshold
    )

    prices = _close_series(loan, close_prices)
    log_returns = np.log(prices / prices.shift(1))
    ltv_path = ltv_history(loan, prices)["loan_to_value"].to_numpy()
    price_values = prices.to_numpy(dtype=float)

    results = []
    for t in range(window_hours, len(prices) - horizon_hours, step_hours):
        window_returns = log_returns.iloc[t - window_hours + 1:t + 1]
        volatility = float(window_returns.std(ddof=1) * math.sqrt(HOURS_PER_YEAR))
        if not math.isfinite(volatility):
            volatility = 0.0

        predicted = loan_margin_event_probability(
            loan, price_values[t], volatility, horizon_hours / 24, event_kind
        )
        future_ltv = ltv_path[t + 1:t + horizon_hours + 1]

        results.append({
            "date": prices.index[t],
            "loan_to_value": ltv_path[t],
            "volatility": volatility,
            "predicted_probability": predicted,
            "event": bool(np.max(future_ltv) >= threshold),
        })

    columns = ["date", "loan_to_value", "volatility", "predicted_probability", "event"]
    return pd.DataFrame(results, columns=columns)


def compute_event_statistics(backtest_results: pd.DataFrame) -> Dict[str, float]:
    """
    Predicted versus realized event frequency.

    Returns
    -------
    dict
        Contains: total_observations, num_events, event_rate,
        mean_predicted_probability, calibration_ratio, brier_score.
    """
    total = len(backtest_results)
    if total == 0:
        return {
            "total_observations": 0,
            "num_events": 0,
            "event_rate": 0.0,
            "mean_predicted_probability": 0.0,
            "calibration_ratio": 0.0,
            "brier_score": 0.0,
        }

    events = backtest_results["event"].astype(float)
    predicted = backtest_results["predicted_probability"].astype(float)
    event_rate = float(events.mean())
    mean_predicted = float(predicted.mean())

    return {
        "total_observations": total,
        "num_events": int(events.sum()),
        "event_rate": event_rate,
        "mean_predicted_probability": mean_predicted,
        "calibration_ratio": event_rate / mean_predicted if mean_predicted > 0 else 0.0,
        "brier_score": float(((predicted - events) ** 2).mean()),
    }


def kupiec_test(backtest_results: pd.DataFrame) -> Dict[str, object]:
    """
    Kupiec Proportion of Failures (POF) test on margin events.

    Null hypothesis: realized event rate = mean predicted probability p.

    Likelihood Ratio Statistic:
        LR = -2 ln[(1-p)^(T-x) · p^x] + 2 ln[(1-x/T)^(T-x) · (x/T)^x]

    Under H0, LR ~ χ²(1).

    Returns
    -------
    dict
        Contains: lr_statistic, p_value, reject_h0 (at 5% significance),
        interpretation.
    """
    T = len(backtest_results)
    x = int(backtest_results["event"].sum()) if T else 0
    p = float(backtest_results["predicted_probability"].mean()) if T else 0.0

    if x == 0 or x == T or not 0 < p < 1:
        return {
            "lr_statistic": 0.0,
            "p_value": 1.0,
            "reject_h0": False,
            "interpretation": "Insufficient events for test",
        }

    p_hat = x / T

    lr = -2 * (
        (T - x) * np.log(1 - p) + x * np.log(p)
        - (T - x) * np.log(1 - p_hat) - x * np.log(p_hat)
    )

    p_value = 1 - stats.chi2.cdf(lr, df=1)
    reject = bool(p_value < 0.05)

    if reject:
        interpretation = "Model rejected: predicted margin-event rate is miscalibrated"
    else:
        interpretation = "Model not rejected: predicted margin-event rate appears adequate"

    return {
        "lr_statistic": float(lr),
        "p_value": float(p_value),
        "reject_h0": reject,
        "interpretation": interpretation,
    }
