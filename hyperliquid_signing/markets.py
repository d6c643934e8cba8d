"""
markets.py

WTFPL litepresence.com Dec 2021 & squidKid-deluxe Jan 2024

Market metadata and the price / size rounding the exchange enforces.
Prices carry at most 5 significant figures (integers are always valid) and at
most MAX_PERP_DECIMALS, or MAX_SPOT_DECIMALS for spot, minus the market's size
decimals.  Sizes are truncated to the market's size decimals.
"""

# STANDARD PYTHON MODULES
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

# HYPERLIQUID SIGNING MODULES
from .config import MAX_PERP_DECIMALS, MAX_SIGNIFICANT_FIGURES, MAX_SPOT_DECIMALS
from .errors import EncodingError

# spot assets are addressed as 10000 + their index in the spot universe
SPOT_ASSET_OFFSET = 10000


@dataclass(frozen=True)
class Market:
    name: str
    index: int
    sz_decimals: int
    tick_size: Optional[Decimal] = None
    is_spot: bool = False

    @property
    def asset(self):
        """
        the integer the order wire addresses this market by
        """
        return SPOT_ASSET_OFFSET + self.index if self.is_spot else self.index

    @property
    def max_price_decimals(self):
        ceiling = MAX_SPOT_DECIMALS if self.is_spot else MAX_PERP_DECIMALS
        return max(0, ceiling - self.sz_decimals)

    @classmethod
    def from_meta(cls, entry, index, is_spot=False):
        """
        from one element of the exchange's "universe" metadata
        """
        try:
            return cls(entry["name"], index, int(entry["szDecimals"]), is_spot=is_spot)
        except (KeyError, TypeError, ValueError) as error:
            raise EncodingError(f"malformed market metadata {entry!r}") from error


def to_decimal(value, name="value"):
    if isinstance(value, bool):
        raise EncodingError(f"{name} must be a number, got {value!r}")
    if isinstance(value, float):
        value = repr(value)
    try:
        value = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as error:
        raise EncodingError(f"{name} is not a number: {value!r}") from error
    if not value.is_finite():
        raise EncodingError(f"{name} must be finite")
    return value


def round_price(price, market):
    """
    nearest price the exchange will accept for ``market``

    :return Decimal:
    """
    price = to_decimal(price, "price")
    if price <= 0:
        raise EncodingError(f"price must be positive, got {price}")
    if price != price.to_integral_value():
        # digits after the point that keep 5 significant figures
        decimals = MAX_SIGNIFICANT_FIGURES - 1 - price.adjusted()
        decimals = max(0, min(decimals, market.max_price_decimals))
        price = price.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)
    if market.tick_size:
        tick = to_decimal(market.tick_size, "tick size")
        price = (price / tick).to_integral_value(rounding=ROUND_HALF_UP) * tick
    if price <= 0:
        raise EncodingError(f"price rounds to zero on {market.name}")
    return price


def round_size(size, market):
    """
    ``size`` truncated to the market's size decimals

    :return Decimal:
    """
    size = to_decimal(size, "size")
    if size < 0:
        raise EncodingError(f"size may not be negative, got {size}")
    return size.quantize(Decimal(1).scaleb(-market.sz_decimals), rounding=ROUND_DOWN)
