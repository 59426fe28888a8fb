"""Reconciliation of the live alpha universe against the tracking store."""
import asyncio
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from alphachecker.core.config import Settings, settings
from alphachecker.providers import MarketDataProvider
from alphachecker.providers.models import UniverseToken
from alphachecker.services.freshness import is_fresh
from alphachecker.services.tracking_store import TrackedToken, TrackingStore
from alphachecker.services.verification import (
    CatalogEntry,
    VerificationMode,
    VerificationOutcome,
    VerificationService,
    VerificationStatus,
)
from alphachecker.utils.symbols import canonical_symbol
from alphachecker.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergedToken:
    """One entry of the merged view: live universe data plus local state."""
    symbol: str
    name: Optional[str]
    price_usdt: Optional[float]
    change_24h_pct: Optional[float]
    volume_24h: Optional[float]
    market_cap: Optional[float]
    fdv: Optional[float]
    total_supply: Optional[float]
    circulating_supply: Optional[float]
    liquidity: Optional[float]
    holders: Optional[int]
    chain_id: Optional[str]
    chain_name: Optional[str]
    contract_address: Optional[str]
    alpha_id: Optional[str]
    decimals: Optional[int]
    listing_cex: bool
    hot_tag: bool
    is_tracked: bool
    priority: int
    notes: Optional[str]
    futures_listed: Optional[bool]
    last_verified_at: Optional[datetime]
    
    @classmethod
    def build(
        cls,
        token: UniverseToken,
        stored: Optional[TrackedToken],
        futures_listed: Optional[bool],
        last_verified_at: Optional[datetime]
    ) -> "MergedToken":
        tracked = stored is not None and stored.is_tracked
        return cls(
            **asdict(token),
            is_tracked=tracked,
            priority=stored.priority if tracked else 0,
            notes=stored.notes if tracked else None,
            futures_listed=futures_listed,
            last_verified_at=last_verified_at,
        )
    
    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_verified_at"] = self.last_verified_at.isoformat() if self.last_verified_at else None
        return data


def _error_outcome(symbol: str, error: BaseException, checked_at: datetime) -> VerificationOutcome:
    return VerificationOutcome(
        symbol=symbol,
        verdict=False,
        mode=VerificationMode.RELAXED,
        status=VerificationStatus.ERROR,
        reason=f"{type(error).__name__}: {error}",
        checked_at=checked_at,
    )


class ReconciliationEngine:
    """
    Builds the merged token view.
    
    A pass fetches the universe, reuses verdicts of tracked tokens and of
    untracked tokens whose cached verdict is still fresh, and re-verifies the
    rest in bounded batches. A failed verification leaves the token's
    futures status unknown (None) without affecting the rest of the pass.
    """
    
    def __init__(
        self,
        provider: MarketDataProvider,
        store: TrackingStore,
        verifier: VerificationService,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable = asyncio.sleep
    ):
        self.provider = provider
        self.store = store
        self.verifier = verifier
        self.config = config or settings
        self._clock = clock
        self._sleep = sleep
    
    async def _run_in_batches(
        self,
        items: Sequence[Tuple],
        worker: Callable[..., Awaitable[VerificationOutcome]]
    ) -> List[object]:
        """
        Run worker over items, batch_size at a time, pausing between batches.
        
        Results keep the input order. A failing task yields its exception in
        place of a result.
        """
        batch_size = self.config.batch_size
        pause = self.config.batch_pause_ms / 1000
        results: List[object] = []
        
        for start in range(0, len(items), batch_size):
            batch = items[start:start + batch_size]
            logger.debug(f"Verifying batch {start // batch_size + 1} ({len(batch)} tokens)")
            batch_results = await asyncio.gather(
                *(worker(*item) for item in batch),
                return_exceptions=True
            )
            for result in batch_results:
                if isinstance(result, BaseException) and not isinstance(result, Exception):
                    raise result
            results.extend(batch_results)
            
            if start + batch_size < len(items) and pause > 0:
                await self._sleep(pause)
        
        return results
    
    async def _verify_universe_token(
        self,
        token: UniverseToken,
        stored: Optional[TrackedToken]
    ) -> VerificationOutcome:
        catalog_name = stored.name if stored is not None and stored.name else token.name
        return await self.verifier.verify(
            token.symbol,
            expected_name=token.name,
            catalog=CatalogEntry(symbol=token.symbol, name=catalog_name)
        )
    
    async def reconcile(self) -> List[MergedToken]:
        """
        Run one reconciliation pass.
        
        Returns:
            Merged view: tracked tokens by priority desc then symbol, followed
            by untracked tokens by symbol
            
        Raises:
            UpstreamError: If the universe cannot be fetched
            StoreError: If the tracking store cannot be read
        """
        universe = await self.provider.fetch_universe()
        stored_rows = await self.store.list_all()
        by_symbol: Dict[str, TrackedToken] = {canonical_symbol(row.symbol): row for row in stored_rows}
        now = self._clock()
        threshold = self.config.freshness_threshold_hours
        
        tracked: List[MergedToken] = []
        untracked: List[MergedToken] = []
        stale: List[Tuple[UniverseToken, Optional[TrackedToken]]] = []
        
        for token in universe:
            stored = by_symbol.get(canonical_symbol(token.symbol))
            if stored is not None and stored.is_tracked:
                tracked.append(MergedToken.build(token, stored, stored.futures_listed, stored.last_verified_at))
            elif (
                stored is not None
                and stored.futures_listed is not None
                and is_fresh(stored.last_verified_at, now, threshold)
            ):
                untracked.append(MergedToken.build(token, stored, stored.futures_listed, stored.last_verified_at))
            else:
                stale.append((token, stored))
        
        logger.info(
            f"Reconciling {len(universe)} tokens: {len(tracked)} tracked, "
            f"{len(untracked)} cached, {len(stale)} to verify"
        )
        
        results = await self._run_in_batches(stale, self._verify_universe_token)
        
        failed = 0
        for (token, stored), result in zip(stale, results):
            if isinstance(result, Exception):
                logger.warning(f"Verification of {token.symbol} failed: {result}", exc_info=result)
                failed += 1
                untracked.append(MergedToken.build(token, stored, None, None))
            elif not result.is_conclusive:
                failed += 1
                untracked.append(MergedToken.build(token, stored, None, None))
            else:
                untracked.append(MergedToken.build(token, stored, result.verdict, result.checked_at))
        
        tracked.sort(key=lambda t: (-t.priority, t.symbol))
        untracked.sort(key=lambda t: t.symbol)
        
        logger.info(
            f"Reconciliation complete: {len(tracked) + len(untracked)} tokens, "
            f"{len(stale) - failed} verified, {failed} unknown"
        )
        return tracked + untracked
    
    async def _verify_tracked(self, token: TrackedToken) -> VerificationOutcome:
        return await self.verifier.verify(token.symbol, expected_name=token.name)
    
    async def refresh_tracked(self) -> List[VerificationOutcome]:
        """
        Re-verify tracked tokens whose cached verdict is missing or stale.
        
        Returns:
            One outcome per re-verified token; failures are reported as
            ERROR outcomes
        """
        now = self._clock()
        threshold = self.config.freshness_threshold_hours
        tracked = await self.store.list_tracked()
        due = [
            (token,) for token in tracked
            if token.futures_listed is None or not is_fresh(token.last_verified_at, now, threshold)
        ]
        
        if not due:
            logger.info("All tracked tokens have fresh futures verdicts")
            return []
        
        logger.info(f"Refreshing futures status for {len(due)} of {len(tracked)} tracked tokens")
        results = await self._run_in_batches(due, self._verify_tracked)
        
        outcomes = []
        for (token,), result in zip(due, results):
            if isinstance(result, Exception):
                logger.warning(f"Refresh of {token.symbol} failed: {result}", exc_info=result)
                outcomes.append(_error_outcome(token.symbol, result, now))
            else:
                outcomes.append(result)
        return outcomes
