"""On-demand live price and futures lookups for a single token."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from alphachecker.core.config import Settings, settings
from alphachecker.providers import MarketDataProvider, UpstreamError
from alphachecker.providers.models import FundingRate, OpenInterest, TickerSnapshot
from alphachecker.utils.cache import TTLCache
from alphachecker.utils.symbols import canonical_symbol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiveTokenData:
    """Live spot and futures data for one token; None means unknown."""
    symbol: str
    price_usdt: Optional[float]
    price_change_percent_24h: Optional[float]
    volume_24h: Optional[float]
    futures_listed: Optional[bool]
    
    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "price_usdt": self.price_usdt,
            "price_change_percent_24h": self.price_change_percent_24h,
            "volume_24h": self.volume_24h,
            "futures_listed": self.futures_listed,
        }


class LiveDataService:
    """Read-through cached lookups on short fast-path timeouts."""
    
    def __init__(
        self,
        provider: MarketDataProvider,
        config: Optional[Settings] = None,
        ticker_cache: Optional[TTLCache] = None,
        futures_cache: Optional[TTLCache] = None
    ):
        self.provider = provider
        self.config = config or settings
        self.ticker_cache = ticker_cache or TTLCache(default_ttl_seconds=self.config.live_cache_ttl_s)
        self.futures_cache = futures_cache or TTLCache(default_ttl_seconds=self.config.live_cache_ttl_s)
    
    async def _get_ticker(self, key: str) -> Optional[TickerSnapshot]:
        cached = self.ticker_cache.get(key)
        if cached is not None:
            return cached
        try:
            ticker = await self.provider.get_ticker_24h(key, timeout=self.config.ticker_timeout_s)
        except UpstreamError as e:
            logger.warning(f"Spot ticker lookup failed for {key}: {e}")
            return None
        if ticker is not None:
            self.ticker_cache.set(key, ticker)
        return ticker
    
    async def _get_futures_listed(self, key: str) -> Optional[bool]:
        cached = self.futures_cache.get(key)
        if cached is not None:
            return cached
        try:
            listing = await self.provider.check_listing(key, timeout=self.config.fast_path_timeout_s)
        except UpstreamError as e:
            logger.warning(f"Futures lookup failed for {key}: {e}")
            return None
        self.futures_cache.set(key, listing.available)
        return listing.available
    
    async def get_live_data(self, symbol: str) -> LiveTokenData:
        """
        Fetch spot price and futures availability concurrently.
        
        Args:
            symbol: Token symbol (marker and case are normalized)
            
        Returns:
            LiveTokenData with None for any part that could not be fetched
        """
        key = canonical_symbol(symbol)
        ticker, futures_listed = await asyncio.gather(
            self._get_ticker(key),
            self._get_futures_listed(key)
        )
        return LiveTokenData(
            symbol=key,
            price_usdt=ticker.price if ticker else None,
            price_change_percent_24h=ticker.price_change_percent_24h if ticker else None,
            volume_24h=ticker.volume_24h if ticker else None,
            futures_listed=futures_listed,
        )
    
    async def get_funding_rate(self, symbol: str) -> Optional[FundingRate]:
        """
        Latest perpetual funding rate, or None if the token has no contract.
        
        Raises:
            UpstreamError: If Binance cannot be reached
        """
        return await self.provider.get_funding_rate(
            canonical_symbol(symbol), timeout=self.config.fast_path_timeout_s
        )
    
    async def get_open_interest(self, symbol: str) -> Optional[OpenInterest]:
        """Current perpetual open interest, or None if the token has no contract."""
        return await self.provider.get_open_interest(
            canonical_symbol(symbol), timeout=self.config.fast_path_timeout_s
        )
