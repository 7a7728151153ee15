"""
Collateral Universe
===================
Supported collateral asset types and their fixed, asset-specific policies.

Every asset carries:
    Margin policy:     warn < call < liquidation LTV thresholds
    Characteristics:   liquidation slippage, volatility multiplier

Annualized volatility:
    σ_asset = σ_ref · volatility_multiplier      (σ_ref = 50%)

The universe is driven entirely by the tables below; simulators iterate
over ``COLLATERAL_UNIVERSE`` and never name an asset directly.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Tuple

from crypto_credit_risk.exceptions import InvalidCollateralError


class AssetType(str, Enum):
    BTC = "BTC"
    ETH = "ETH"
    SOL = "SOL"


@dataclass(frozen=True)
class MarginPolicy:
    """LTV thresholds that trigger a warning, a margin call and liquidation."""
    warn_threshold: float
    call_threshold: float
    liquidation_threshold: float

    def __post_init__(self) -> None:
        if not (0 < self.warn_threshold < self.call_threshold < self.liquidation_threshold):
            raise ValueError(
                "Margin thresholds must be positive and strictly increasing, got "
                f"{self.warn_threshold}/{self.call_threshold}/{self.liquidation_threshold}"
            )


@dataclass(frozen=True)
class AssetCharacteristics:
    """Liquidation slippage fraction and base volatility scaling factor."""
    liquidation_slippage: float
    volatility_multiplier: float


# ─────────────────────────────────────────────────────────────
# Configuration tables
# ─────────────────────────────────────────────────────────────
COLLATERAL_UNIVERSE: Tuple[AssetType, ...] = (
    AssetType.BTC,
    AssetType.ETH,
    AssetType.SOL,
)

MARGIN_POLICIES: Dict[AssetType, MarginPolicy] = {
    AssetType.BTC: MarginPolicy(0.70, 0.80, 0.90),
    AssetType.ETH: MarginPolicy(0.65, 0.75, 0.85),
    AssetType.SOL: MarginPolicy(0.60, 0.70, 0.80),
}

ASSET_CHARACTERISTICS: Dict[AssetType, AssetCharacteristics] = {
    AssetType.BTC: AssetCharacteristics(liquidation_slippage=0.04, volatility_multiplier=1.0),
    AssetType.ETH: AssetCharacteristics(liquidation_slippage=0.07, volatility_multiplier=1.3),
    AssetType.SOL: AssetCharacteristics(liquidation_slippage=0.10, volatility_multiplier=1.8),
}

# Annualized volatility of the reference asset (BTC ≈ 50%)
REFERENCE_VOLATILITY: float = 0.50

# Pairwise return correlations used when a scenario does not override a pair
DEFAULT_CORRELATIONS: Dict[Tuple[AssetType, AssetType], float] = {
    (AssetType.BTC, AssetType.ETH): 0.82,
    (AssetType.BTC, AssetType.SOL): 0.68,
    (AssetType.ETH, AssetType.SOL): 0.75,
}

# Market snapshot (USD) used by the demo pipeline
DEFAULT_CURRENT_PRICES: Dict[AssetType, float] = {
    AssetType.BTC: 111_839.0,
    AssetType.ETH: 4_119.60,
    AssetType.SOL: 209.43,
}

# Approximate prices four years before the snapshot
DEFAULT_HISTORY_START_PRICES: Dict[AssetType, float] = {
    AssetType.BTC: 25_000.0,
    AssetType.ETH: 1_800.0,
    AssetType.SOL: 40.0,
}


def annualized_volatility(asset_type: AssetType) -> float:
    """Base annualized volatility of an asset before any scenario scaling."""
    return REFERENCE_VOLATILITY * ASSET_CHARACTERISTICS[asset_type].volatility_multiplier


def pair_key(first: AssetType, second: AssetType) -> Tuple[AssetType, AssetType]:
    """
    Canonical key for an unordered asset pair (universe order).

    Raises
    ------
    ValueError
        If both assets are the same.
    """
    first, second = AssetType(first), AssetType(second)
    if first == second:
        raise ValueError(f"An asset pair needs two distinct assets, got {first.value} twice")
    order = {asset: i for i, asset in enumerate(COLLATERAL_UNIVERSE)}
    if order.get(first, len(order)) <= order.get(second, len(order)):
        return first, second
    return second, first


def pair_label(pair: Tuple[AssetType, AssetType]) -> str:
    """``(BTC, ETH)`` → ``"BTC_ETH"``."""
    first, second = pair_key(*pair)
    return f"{first.value}_{second.value}"


def parse_pair_label(label: str) -> Tuple[AssetType, AssetType]:
    """``"BTC_ETH"`` → ``(BTC, ETH)``."""
    first, second = label.split("_")
    return pair_key(AssetType(first), AssetType(second))


@dataclass(frozen=True)
class CollateralAsset:
    """
    Collateral position: an asset type and a non-negative quantity.

    Raises
    ------
    InvalidCollateralError
        If the quantity is negative or not finite.
    """
    asset_type: AssetType
    quantity: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "asset_type", AssetType(self.asset_type))
        if not math.isfinite(self.quantity) or self.quantity < 0:
            raise InvalidCollateralError(
                f"Collateral quantity must be a non-negative finite number, got {self.quantity}"
            )

    @property
    def margin_policy(self) -> MarginPolicy:
        return MARGIN_POLICIES[self.asset_type]

    @property
    def characteristics(self) -> AssetCharacteristics:
        return ASSET_CHARACTERISTICS[self.asset_type]

    @property
    def annualized_volatility(self) -> float:
        return annualized_volatility(self.asset_type)

    def value(self, price_usd: float) -> float:
        """Collateral market value in USD at ``price_usd``."""
        return self.quantity * price_usd


def prices_by_asset(prices: Mapping) -> Dict[AssetType, float]:
    """Normalize a price mapping keyed by ``AssetType`` or ticker string."""
    return {AssetType(asset): float(price) for asset, price in prices.items()}
