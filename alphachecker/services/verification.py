"""Two-factor futures verification for alpha tokens."""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from alphachecker.core.config import Settings, settings
from alphachecker.providers import MarketDataProvider, UpstreamError
from alphachecker.providers.models import ListingInfo
from alphachecker.services.tracking_store import TrackingStore
from alphachecker.utils.symbols import canonical_symbol, strip_marker
from alphachecker.utils.time import utc_now

logger = logging.getLogger(__name__)


class VerificationMode(str, Enum):
    STRICT = "STRICT"
    RELAXED = "RELAXED"


class VerificationStatus(str, Enum):
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    NO_CATALOG_ENTRY = "NO_CATALOG_ENTRY"
    CATALOG_MISMATCH = "CATALOG_MISMATCH"
    ERROR = "ERROR"


@dataclass(frozen=True)
class CatalogEntry:
    """Identity the caller already trusts for a symbol."""
    symbol: str
    name: Optional[str] = None


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of one verification attempt. Never persisted as-is."""
    symbol: str
    verdict: bool
    mode: VerificationMode
    status: VerificationStatus
    symbol_match: bool = False
    name_match: Optional[bool] = None
    reason: Optional[str] = None
    listing: Optional[ListingInfo] = None
    catalog_symbol: Optional[str] = None
    catalog_name: Optional[str] = None
    checked_at: Optional[datetime] = None
    
    @property
    def is_conclusive(self) -> bool:
        """Whether the verdict is a confirmed answer that may be cached."""
        return self.status in (VerificationStatus.VERIFIED, VerificationStatus.REJECTED)
    
    def to_dict(self) -> dict:
        listing = self.listing
        return {
            "symbol": self.symbol,
            "futures_listed": self.verdict if self.is_conclusive else None,
            "verdict": self.verdict,
            "status": self.status.value,
            "mode": self.mode.value,
            "symbol_match": self.symbol_match,
            "name_match": self.name_match,
            "reason": self.reason,
            "catalog_symbol": self.catalog_symbol,
            "catalog_name": self.catalog_name,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
            "listing": None if listing is None else {
                "symbol": listing.symbol,
                "available": listing.available,
                "status": listing.status,
                "contract_type": listing.contract_type,
                "listing_date": listing.listing_date.isoformat() if listing.listing_date else None,
            },
        }


def _rejection_reason(symbol_match: bool, name_match: Optional[bool], listing: ListingInfo) -> Optional[str]:
    if not symbol_match:
        return "SYMBOL_MISMATCH"
    if name_match is False:
        return "NAME_MISMATCH"
    if not listing.available:
        return f"FUTURES_{listing.status}"
    return None


class VerificationService:
    """
    Decides whether an alpha token has a live perpetual futures contract.
    
    The upstream answers by ticker only, so a ticker shared by two unrelated
    tokens would otherwise verify both. When both a catalog name and an
    expected name are known the name must match too (STRICT); otherwise only
    the symbol is checked (RELAXED).
    """
    
    def __init__(
        self,
        provider: MarketDataProvider,
        store: TrackingStore,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.provider = provider
        self.store = store
        self.config = config or settings
        self._clock = clock
    
    async def _lookup_catalog(self, symbol: str, stripped: str) -> Optional[CatalogEntry]:
        token = await self.store.get_by_symbol(symbol)
        if token is None and stripped != symbol:
            token = await self.store.get_by_symbol(stripped)
        if token is None:
            return None
        return CatalogEntry(symbol=token.symbol, name=token.name)
    
    async def verify(
        self,
        symbol: str,
        expected_name: Optional[str] = None,
        catalog: Optional[CatalogEntry] = None,
        timeout: Optional[float] = None,
        persist: bool = True
    ) -> VerificationOutcome:
        """
        Verify futures availability for a symbol.
        
        Args:
            symbol: Symbol as received (may carry a leading marker)
            expected_name: Name the caller believes the token has
            catalog: Known identity; looked up in the store when omitted
            timeout: Per-call upstream timeout override
            persist: Record conclusive verdicts in the store
            
        Returns:
            VerificationOutcome; upstream failures are reported with
            status ERROR instead of raising
        """
        stripped = strip_marker(symbol)
        now = self._clock()
        
        if catalog is None:
            catalog = await self._lookup_catalog(symbol, stripped)
        
        if catalog is None:
            logger.info(f"No catalog entry for {symbol}, skipping futures check")
            return VerificationOutcome(
                symbol=symbol,
                verdict=False,
                mode=VerificationMode.RELAXED,
                status=VerificationStatus.NO_CATALOG_ENTRY,
                reason="NO_CATALOG_ENTRY",
                checked_at=now,
            )
        
        has_names = bool(catalog.name) and bool(expected_name)
        mode = VerificationMode.STRICT if has_names else VerificationMode.RELAXED
        symbol_match = catalog.symbol in (symbol, stripped)
        name_match = catalog.name.lower() == expected_name.lower() if has_names else None
        
        try:
            listing = await self.provider.check_listing(stripped, timeout=timeout)
        except UpstreamError as e:
            logger.warning(f"Futures check failed for {symbol}: {e}")
            return VerificationOutcome(
                symbol=symbol,
                verdict=False,
                mode=mode,
                status=VerificationStatus.ERROR,
                symbol_match=symbol_match,
                name_match=name_match,
                reason=str(e),
                catalog_symbol=catalog.symbol,
                catalog_name=catalog.name,
                checked_at=now,
            )
        
        if mode == VerificationMode.STRICT:
            verdict = symbol_match and name_match and listing.available
        else:
            verdict = symbol_match and listing.available
        
        if symbol_match and name_match is False and listing.available:
            logger.warning(
                f"Symbol collision for {symbol}: futures contract exists but catalog name "
                f"'{catalog.name}' does not match '{expected_name}'"
            )
        
        # A catalog row found under another symbol is not this token's identity;
        # its verdict stays inconclusive and is never cached
        if not symbol_match:
            status = VerificationStatus.CATALOG_MISMATCH
        elif verdict:
            status = VerificationStatus.VERIFIED
        else:
            status = VerificationStatus.REJECTED
        
        outcome = VerificationOutcome(
            symbol=symbol,
            verdict=bool(verdict),
            mode=mode,
            status=status,
            symbol_match=symbol_match,
            name_match=name_match,
            reason=None if verdict else _rejection_reason(symbol_match, name_match, listing),
            listing=listing,
            catalog_symbol=catalog.symbol,
            catalog_name=catalog.name,
            checked_at=now,
        )
        
        logger.debug(
            f"Verified {symbol}: verdict={outcome.verdict} mode={mode.value} "
            f"symbol_match={symbol_match} name_match={name_match} status={listing.status}"
        )
        
        key = canonical_symbol(stripped)
        if persist and outcome.is_conclusive and canonical_symbol(catalog.symbol) == key:
            await self.store.upsert_verification(
                key,
                outcome.verdict,
                now,
                name=catalog.name or expected_name
            )
        
        return outcome
