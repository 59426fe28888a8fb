"""Curator operations on the tracked token list."""
import logging
from typing import Optional

from alphachecker.providers import MarketDataProvider, UpstreamError
from alphachecker.providers.models import UniverseToken
from alphachecker.services.tracking_store import TrackedToken, TrackingStore
from alphachecker.utils.symbols import canonical_symbol, validate_symbol

logger = logging.getLogger(__name__)


class CurationService:
    """Track, untrack and prioritise alpha tokens."""
    
    def __init__(self, store: TrackingStore, provider: MarketDataProvider):
        self.store = store
        self.provider = provider
    
    async def _find_in_universe(self, symbol: str) -> Optional[UniverseToken]:
        """Look the symbol up in the live alpha universe (case-insensitive)."""
        try:
            universe = await self.provider.fetch_universe()
        except UpstreamError as e:
            logger.warning(f"Could not fetch alpha metadata for {symbol}: {e}")
            return None
        
        for token in universe:
            if canonical_symbol(token.symbol) == symbol:
                return token
        logger.info(f"{symbol} not found in alpha universe, tracking without metadata")
        return None
    
    async def track(
        self,
        symbol: str,
        priority: int = 0,
        notes: Optional[str] = "",
        use_alpha_api: bool = False
    ) -> TrackedToken:
        """
        Start tracking a token.
        
        Args:
            symbol: Token symbol
            priority: Display priority (>= 0)
            notes: Free-form curator notes
            use_alpha_api: Fill name and chain metadata from the alpha universe
            
        Raises:
            ValueError: Invalid symbol or priority
            DuplicateError: Token already tracked
        """
        key = validate_symbol(symbol)
        metadata = await self._find_in_universe(key) if use_alpha_api else None
        return await self.store.upsert_tracked_meta(key, priority=priority, notes=notes, metadata=metadata)
    
    async def untrack(self, symbol: str) -> int:
        return await self.store.deactivate(symbol)
    
    async def set_priority(self, symbol: str, priority: int) -> int:
        return await self.store.set_priority(symbol, priority)
