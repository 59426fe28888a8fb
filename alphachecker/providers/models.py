"""Data models for Binance alpha and futures payloads."""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from alphachecker.utils.time import from_epoch_ms


def _to_float(value: Any) -> Optional[float]:
    """Parse a numeric field that Binance may send as a string."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _to_bool(value: Any) -> bool:
    """Parse a flag that Binance may send as a bool, number or string."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


@dataclass(frozen=True)
class UniverseToken:
    """One entry of the Binance alpha token universe."""
    symbol: str
    name: Optional[str] = None
    price_usdt: Optional[float] = None
    change_24h_pct: Optional[float] = None
    volume_24h: Optional[float] = None
    market_cap: Optional[float] = None
    fdv: Optional[float] = None
    total_supply: Optional[float] = None
    circulating_supply: Optional[float] = None
    liquidity: Optional[float] = None
    holders: Optional[int] = None
    chain_id: Optional[str] = None
    chain_name: Optional[str] = None
    contract_address: Optional[str] = None
    alpha_id: Optional[str] = None
    decimals: Optional[int] = None
    listing_cex: bool = False
    hot_tag: bool = False
    
    @classmethod
    def from_payload(cls, item: Dict[str, Any]) -> "UniverseToken":
        """Build from one item of the alpha token list response."""
        return cls(
            symbol=str(item["symbol"]).strip(),
            name=_to_str(item.get("name")),
            price_usdt=_to_float(item.get("price")),
            change_24h_pct=_to_float(item.get("percentChange24h")),
            volume_24h=_to_float(item.get("volume24h")),
            market_cap=_to_float(item.get("marketCap")),
            fdv=_to_float(item.get("fdv")),
            total_supply=_to_float(item.get("totalSupply")),
            circulating_supply=_to_float(item.get("circulatingSupply")),
            liquidity=_to_float(item.get("liquidity")),
            holders=_to_int(item.get("holders")),
            chain_id=_to_str(item.get("chainId")),
            chain_name=_to_str(item.get("chainName")),
            contract_address=_to_str(item.get("contractAddress")),
            alpha_id=_to_str(item.get("alphaId")),
            decimals=_to_int(item.get("decimals")),
            listing_cex=_to_bool(item.get("listingCex", False)),
            hot_tag=_to_bool(item.get("hotTag", False)),
        )


@dataclass(frozen=True)
class ListingInfo:
    """Perpetual futures listing details for a base symbol."""
    symbol: str
    base_symbol: str
    available: bool
    status: str
    contract_type: Optional[str] = None
    listing_date: Optional[datetime] = None
    base_asset: Optional[str] = None
    quote_asset: Optional[str] = None
    price_precision: Optional[int] = None
    quantity_precision: Optional[int] = None
    
    @classmethod
    def not_found(cls, base_symbol: str, quote: str = "USDT") -> "ListingInfo":
        """Listing answer for a symbol with no futures contract."""
        return cls(
            symbol=f"{base_symbol}{quote}",
            base_symbol=base_symbol,
            available=False,
            status="NOT_FOUND",
        )
    
    @classmethod
    def from_payload(cls, base_symbol: str, item: Dict[str, Any]) -> "ListingInfo":
        """Build from one exchangeInfo ``symbols`` entry."""
        status = str(item.get("status") or "UNKNOWN")
        return cls(
            symbol=str(item.get("symbol")),
            base_symbol=base_symbol,
            available=status == "TRADING",
            status=status,
            contract_type=_to_str(item.get("contractType")),
            listing_date=from_epoch_ms(item.get("onboardDate")),
            base_asset=_to_str(item.get("baseAsset")),
            quote_asset=_to_str(item.get("quoteAsset")),
            price_precision=_to_int(item.get("pricePrecision")),
            quantity_precision=_to_int(item.get("quantityPrecision")),
        )


@dataclass(frozen=True)
class TickerSnapshot:
    """Spot 24h ticker for one trading pair."""
    pair: str
    price: Optional[float]
    price_change_percent_24h: Optional[float]
    volume_24h: Optional[float]
    
    @classmethod
    def from_payload(cls, item: Dict[str, Any]) -> "TickerSnapshot":
        return cls(
            pair=str(item.get("symbol")),
            price=_to_float(item.get("lastPrice")),
            price_change_percent_24h=_to_float(item.get("priceChangePercent")),
            volume_24h=_to_float(item.get("volume")),
        )


@dataclass(frozen=True)
class FundingRate:
    """Latest funding rate of a USDⓈ-M perpetual."""
    pair: str
    funding_rate: Optional[float]
    funding_time: Optional[datetime]
    mark_price: Optional[float] = None
    
    @classmethod
    def from_payload(cls, item: Dict[str, Any]) -> "FundingRate":
        """Build from one entry of the ``fundingRate`` history."""
        return cls(
            pair=str(item.get("symbol")),
            funding_rate=_to_float(item.get("fundingRate")),
            funding_time=from_epoch_ms(item.get("fundingTime")),
            mark_price=_to_float(item.get("markPrice")),
        )
    
    def to_dict(self) -> dict:
        return {
            "symbol": self.pair,
            "funding_rate": self.funding_rate,
            "funding_time": self.funding_time.isoformat() if self.funding_time else None,
            "mark_price": self.mark_price,
        }


@dataclass(frozen=True)
class OpenInterest:
    """Current open interest of a USDⓈ-M perpetual."""
    pair: str
    open_interest: Optional[float]
    time: Optional[datetime]
    
    @classmethod
    def from_payload(cls, item: Dict[str, Any]) -> "OpenInterest":
        return cls(
            pair=str(item.get("symbol")),
            open_interest=_to_float(item.get("openInterest")),
            time=from_epoch_ms(item.get("time")),
        )
    
    def to_dict(self) -> dict:
        return {
            "symbol": self.pair,
            "open_interest": self.open_interest,
            "time": self.time.isoformat() if self.time else None,
        }
