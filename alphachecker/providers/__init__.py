"""Abstract interface for market data providers."""
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional
from alphachecker.providers.models import (
    UniverseToken,
    ListingInfo,
    TickerSnapshot,
    FundingRate,
    OpenInterest,
)


class MarketDataProvider(ABC):
    """Abstract base class for alpha token market data providers."""
    
    @abstractmethod
    async def fetch_universe(self) -> List[UniverseToken]:
        """
        Fetch the full alpha token universe.
        
        Returns:
            List of UniverseToken with live market fields
            
        Raises:
            UpstreamError: If the call fails or the payload is malformed
        """
        pass
    
    @abstractmethod
    async def check_listing(self, symbol: str, timeout: Optional[float] = None) -> ListingInfo:
        """
        Look up the perpetual futures listing for a base symbol.
        
        Args:
            symbol: Base symbol (e.g. "BTC")
            timeout: Per-call timeout override in seconds
            
        Returns:
            ListingInfo; a symbol with no contract is a valid "not listed" answer
            
        Raises:
            UpstreamError: If the call fails
        """
        pass
    
    @abstractmethod
    async def get_ticker_24h(self, symbol: str, timeout: Optional[float] = None) -> Optional[TickerSnapshot]:
        """Fetch the spot 24h ticker for a base symbol, or None if it has no spot pair."""
        pass
    
    @abstractmethod
    async def get_funding_rate(self, symbol: str, timeout: Optional[float] = None) -> Optional[FundingRate]:
        """Latest funding rate of the ``<BASE>USDT`` perpetual, or None if there is none."""
        pass
    
    @abstractmethod
    async def get_open_interest(self, symbol: str, timeout: Optional[float] = None) -> Optional[OpenInterest]:
        """Open interest of the ``<BASE>USDT`` perpetual, or None if there is none."""
        pass
    
    async def close(self):
        """Release any underlying resources."""
        pass


class ProviderError(Exception):
    """Exception raised when provider API fails."""
    pass


class UpstreamErrorKind(str, Enum):
    """Classification of upstream failures."""
    NETWORK = "NETWORK"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    RATE_LIMITED = "RATE_LIMITED"
    CLIENT_ERROR = "CLIENT_ERROR"
    SERVER_ERROR = "SERVER_ERROR"


class UpstreamError(ProviderError):
    """Typed upstream failure carrying its kind, HTTP status and retryability."""
    
    def __init__(
        self,
        kind: UpstreamErrorKind,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = False
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
    
    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.kind.value} (HTTP {self.status_code}): {self.message}"
        return f"{self.kind.value}: {self.message}"


__all__ = [
    "MarketDataProvider",
    "ProviderError",
    "UpstreamError",
    "UpstreamErrorKind",
    "UniverseToken",
    "ListingInfo",
    "TickerSnapshot",
]
