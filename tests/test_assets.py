"""Tests for the collateral universe tables and collateral records."""

import math

import pytest

from crypto_credit_risk.assets import (
    AssetType,
    CollateralAsset,
    MarginPolicy,
    annualized_volatility,
    pair_key,
    pair_label,
    parse_pair_label,
    prices_by_asset,
)
from crypto_credit_risk.exceptions import InvalidCollateralError


def test_btc_margin_policy():
    policy = CollateralAsset(AssetType.BTC, 1.0).margin_policy
    assert policy.warn_threshold == 0.70
    assert policy.call_threshold == 0.80
    assert policy.liquidation_threshold == 0.90


def test_margin_policy_requires_increasing_thresholds():
    with pytest.raises(ValueError):
        MarginPolicy(0.8, 0.7, 0.9)


def test_collateral_value():
    assert CollateralAsset(AssetType.ETH, 3.0).value(2_000.0) == pytest.approx(6_000.0)


@pytest.mark.parametrize("quantity", [-1.0, math.nan, math.inf])
def test_invalid_collateral_quantity(quantity):
    with pytest.raises(InvalidCollateralError):
        CollateralAsset(AssetType.BTC, quantity)


def test_collateral_accepts_ticker_string():
    assert CollateralAsset("SOL", 5.0).asset_type is AssetType.SOL


def test_volatility_scales_with_asset_multiplier():
    assert annualized_volatility(AssetType.BTC) == pytest.approx(0.50)
    assert annualized_volatility(AssetType.ETH) == pytest.approx(0.65)
    assert annualized_volatility(AssetType.SOL) == pytest.approx(0.90)


def test_slippage_increases_with_asset_risk():
    slippages = [CollateralAsset(a, 1.0).characteristics.liquidation_slippage for a in AssetType]
    assert slippages == sorted(slippages)


def test_pair_key_is_order_independent():
    assert pair_key(AssetType.SOL, AssetType.BTC) == (AssetType.BTC, AssetType.SOL)
    assert pair_key(AssetType.BTC, AssetType.SOL) == (AssetType.BTC, AssetType.SOL)


def test_pair_key_rejects_same_asset():
    with pytest.raises(ValueError):
        pair_key(AssetType.ETH, AssetType.ETH)


def test_pair_label_round_trip():
    assert pair_label((AssetType.ETH, AssetType.BTC)) == "BTC_ETH"
    assert parse_pair_label("ETH_SOL") == (AssetType.ETH, AssetType.SOL)


def test_prices_by_asset_normalizes_keys():
    assert prices_by_asset({"BTC": 1, "ETH": "2.5"}) == {AssetType.BTC: 1.0, AssetType.ETH: 2.5}
