"""Unit tests for ReconciliationEngine.

This module tests the merge of the live universe with tracked and cached
state: freshness partitioning, batched verification, failure isolation,
ordering and idempotence.
"""
import asyncio
from datetime import timedelta
import pytest
from unittest.mock import AsyncMock, MagicMock

from alphachecker.providers import UpstreamError, UpstreamErrorKind
from alphachecker.services.reconciliation import ReconciliationEngine
from alphachecker.services.tracking_store import TrackingStore
from alphachecker.services.verification import (
    CatalogEntry,
    VerificationMode,
    VerificationOutcome,
    VerificationService,
    VerificationStatus,
)
from tests.conftest import FIXED_NOW, create_listing, create_tracked_token, create_universe_token


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def mock_provider():
    provider = MagicMock()
    provider.fetch_universe = AsyncMock(return_value=[])
    provider.check_listing = AsyncMock(side_effect=lambda symbol, timeout=None: create_listing(symbol))
    return provider


@pytest.fixture
def mock_store():
    store = MagicMock(spec=TrackingStore)
    store.list_all = AsyncMock(return_value=[])
    store.list_tracked = AsyncMock(return_value=[])
    store.get_by_symbol = AsyncMock(return_value=None)
    store.upsert_verification = AsyncMock()
    return store


@pytest.fixture
def mock_sleep():
    return AsyncMock()


@pytest.fixture
def engine(mock_provider, mock_store, test_settings, fixed_clock, mock_sleep):
    """Engine wired to a real VerificationService over mocked I/O."""
    verifier = VerificationService(mock_provider, mock_store, config=test_settings, clock=fixed_clock)
    return ReconciliationEngine(
        mock_provider, mock_store, verifier,
        config=test_settings, clock=fixed_clock, sleep=mock_sleep
    )


def outcome_for(symbol: str, verdict: bool, status: VerificationStatus = None) -> VerificationOutcome:
    if status is None:
        status = VerificationStatus.VERIFIED if verdict else VerificationStatus.REJECTED
    return VerificationOutcome(
        symbol=symbol,
        verdict=verdict,
        mode=VerificationMode.RELAXED,
        status=status,
        checked_at=FIXED_NOW,
    )


def engine_with_verifier(mock_provider, mock_store, verify, test_settings, fixed_clock, mock_sleep):
    verifier = MagicMock(spec=VerificationService)
    verifier.verify = AsyncMock(side_effect=verify)
    return ReconciliationEngine(
        mock_provider, mock_store, verifier,
        config=test_settings, clock=fixed_clock, sleep=mock_sleep
    ), verifier


# ============================================================================
# Tests for reconcile
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestReconcile:
    """Test the reconciliation pass."""
    
    async def test_tracked_cached_untracked_verified(self, engine, mock_provider, mock_store):
        """✅ BTC tracked and cached, ETH absent → verified through upstream."""
        mock_provider.fetch_universe.return_value = [
            create_universe_token("BTC", name="Bitcoin"),
            create_universe_token("ETH", name="Ethereum"),
        ]
        mock_store.list_all.return_value = [
            create_tracked_token("BTC", name="Bitcoin", futures_listed=True, last_verified_at=FIXED_NOW)
        ]
        
        result = await engine.reconcile()
        
        assert [t.symbol for t in result] == ["BTC", "ETH"]
        btc, eth = result
        assert btc.is_tracked is True
        assert btc.futures_listed is True
        assert eth.is_tracked is False
        assert eth.futures_listed is True
        assert eth.last_verified_at == FIXED_NOW
        mock_provider.check_listing.assert_awaited_once_with("ETH", timeout=None)
        mock_store.upsert_verification.assert_awaited_once_with("ETH", True, FIXED_NOW, name="Ethereum")
    
    async def test_tracked_never_reverified(self, engine, mock_provider, mock_store, hours_ago):
        """✅ Tracked token with stale verdict is carried verbatim."""
        mock_provider.fetch_universe.return_value = [create_universe_token("ROAM")]
        mock_store.list_all.return_value = [
            create_tracked_token("ROAM", priority=3, notes="n", futures_listed=False, last_verified_at=hours_ago(100))
        ]
        
        result = await engine.reconcile()
        
        assert result[0].futures_listed is False
        assert result[0].priority == 3
        assert result[0].notes == "n"
        mock_provider.check_listing.assert_not_awaited()
    
    async def test_fresh_cache_reused(self, engine, mock_provider, mock_store, hours_ago):
        """✅ Untracked row verified 1h ago → cached verdict, no upstream call."""
        mock_provider.fetch_universe.return_value = [create_universe_token("ETH")]
        mock_store.list_all.return_value = [
            create_tracked_token("ETH", is_tracked=False, futures_listed=False, last_verified_at=hours_ago(1))
        ]
        
        result = await engine.reconcile()
        
        assert result[0].futures_listed is False
        assert result[0].last_verified_at == hours_ago(1)
        mock_provider.check_listing.assert_not_awaited()
    
    async def test_stale_cache_reverified(self, engine, mock_provider, mock_store, hours_ago):
        """✅ Untracked row verified 25h ago → re-verified."""
        mock_provider.fetch_universe.return_value = [create_universe_token("ETH")]
        mock_store.list_all.return_value = [
            create_tracked_token("ETH", is_tracked=False, futures_listed=False, last_verified_at=hours_ago(25))
        ]
        
        result = await engine.reconcile()
        
        assert result[0].futures_listed is True
        assert result[0].last_verified_at == FIXED_NOW
        mock_provider.check_listing.assert_awaited_once()
    
    async def test_unverified_cache_row_checked(self, engine, mock_provider, mock_store):
        """✅ Row with no verdict yet → verified."""
        mock_provider.fetch_universe.return_value = [create_universe_token("ETH")]
        mock_store.list_all.return_value = [create_tracked_token("ETH", is_tracked=False)]
        
        await engine.reconcile()
        
        mock_provider.check_listing.assert_awaited_once()
    
    async def test_stored_name_used_as_catalog(
        self, mock_provider, mock_store, test_settings, fixed_clock, mock_sleep, hours_ago
    ):
        """✅ Cached row name is the catalog name, universe name the expected one."""
        mock_provider.fetch_universe.return_value = [create_universe_token("ETH", name="Ethereum")]
        mock_store.list_all.return_value = [
            create_tracked_token("ETH", name="Ether Clone", is_tracked=False)
        ]
        engine, verifier = engine_with_verifier(
            mock_provider, mock_store, lambda *a, **kw: outcome_for("ETH", False),
            test_settings, fixed_clock, mock_sleep
        )
        
        await engine.reconcile()
        
        verifier.verify.assert_awaited_once_with(
            "ETH", expected_name="Ethereum", catalog=CatalogEntry(symbol="ETH", name="Ether Clone")
        )
    
    async def test_upstream_failure_leaves_unknown(self, engine, mock_provider, mock_store):
        """❌ Listing lookup fails → futures_listed None, nothing cached."""
        mock_provider.fetch_universe.return_value = [create_universe_token("ETH")]
        mock_provider.check_listing.side_effect = UpstreamError(UpstreamErrorKind.NETWORK, "down", retryable=True)
        
        result = await engine.reconcile()
        
        assert result[0].futures_listed is None
        assert result[0].last_verified_at is None
        mock_store.upsert_verification.assert_not_awaited()
    
    async def test_universe_failure_aborts(self, engine, mock_provider, mock_store):
        """❌ Universe fetch failure propagates; store untouched."""
        mock_provider.fetch_universe.side_effect = UpstreamError(
            UpstreamErrorKind.INVALID_RESPONSE, "bad envelope"
        )
        
        with pytest.raises(UpstreamError):
            await engine.reconcile()
        
        mock_store.list_all.assert_not_awaited()
    
    async def test_ordering(self, engine, mock_provider, mock_store, hours_ago):
        """✅ Tracked by priority desc then symbol, then untracked by symbol."""
        mock_provider.fetch_universe.return_value = [
            create_universe_token(symbol) for symbol in ("ZED", "ALP", "MID", "TOP", "LOW", "BET")
        ]
        mock_store.list_all.return_value = [
            create_tracked_token("LOW", priority=1),
            create_tracked_token("MID", priority=5),
            create_tracked_token("TOP", priority=5),
            create_tracked_token("ALP", is_tracked=False, futures_listed=True, last_verified_at=hours_ago(2)),
        ]
        
        result = await engine.reconcile()
        
        assert [t.symbol for t in result] == ["MID", "TOP", "LOW", "ALP", "BET", "ZED"]
    
    async def test_marker_symbol_matches_stored_row(self, engine, mock_provider, mock_store):
        """✅ Universe "$ROAM" merges with stored ROAM."""
        mock_provider.fetch_universe.return_value = [create_universe_token("$ROAM")]
        mock_store.list_all.return_value = [create_tracked_token("ROAM", priority=2, futures_listed=True,
                                                                 last_verified_at=FIXED_NOW)]
        
        result = await engine.reconcile()
        
        assert result[0].symbol == "$ROAM"
        assert result[0].is_tracked is True
        assert result[0].priority == 2
    
    async def test_idempotent(self, engine, mock_provider, mock_store, hours_ago):
        """✅ Two passes with unchanged upstream → identical output."""
        mock_provider.fetch_universe.return_value = [
            create_universe_token("BTC", name="Bitcoin"),
            create_universe_token("ETH", name="Ethereum"),
            create_universe_token("ROAM", name="Roam"),
        ]
        mock_store.list_all.return_value = [
            create_tracked_token("BTC", name="Bitcoin", futures_listed=True, last_verified_at=FIXED_NOW),
            create_tracked_token("ROAM", is_tracked=False, futures_listed=False, last_verified_at=hours_ago(3)),
        ]
        
        first = await engine.reconcile()
        second = await engine.reconcile()
        
        assert [t.to_dict() for t in first] == [t.to_dict() for t in second]
    
    async def test_to_dict(self, engine, mock_provider, mock_store):
        """✅ Merged entry renders JSON-ready output."""
        mock_provider.fetch_universe.return_value = [create_universe_token("ETH", name="Ethereum")]
        
        result = await engine.reconcile()
        data = result[0].to_dict()
        
        assert data["symbol"] == "ETH"
        assert data["name"] == "Ethereum"
        assert data["futures_listed"] is True
        assert data["last_verified_at"] == FIXED_NOW.isoformat()
        assert data["is_tracked"] is False


# ============================================================================
# Tests for batched verification
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestBatching:
    """Test bounded concurrency and failure isolation."""
    
    async def test_failure_isolated_within_batch(
        self, mock_provider, mock_store, test_settings, fixed_clock, mock_sleep
    ):
        """❌ Task 3 of 5 raises → others keep their verdicts, T3 unknown."""
        symbols = ["T1", "T2", "T3", "T4", "T5"]
        mock_provider.fetch_universe.return_value = [create_universe_token(s) for s in symbols]
        
        async def verify(symbol, expected_name=None, catalog=None):
            if symbol == "T3":
                raise RuntimeError("boom")
            return outcome_for(symbol, symbol in ("T1", "T4"))
        
        engine, verifier = engine_with_verifier(
            mock_provider, mock_store, verify, test_settings, fixed_clock, mock_sleep
        )
        
        result = await engine.reconcile()
        
        verdicts = {t.symbol: t.futures_listed for t in result}
        assert verdicts == {"T1": True, "T2": False, "T3": None, "T4": True, "T5": False}
        assert verifier.verify.await_count == 5
    
    async def test_inconclusive_outcome_is_unknown(
        self, mock_provider, mock_store, test_settings, fixed_clock, mock_sleep
    ):
        """❌ ERROR outcome → None, never a fabricated False."""
        mock_provider.fetch_universe.return_value = [create_universe_token("T1")]
        engine, _ = engine_with_verifier(
            mock_provider, mock_store,
            lambda *a, **kw: outcome_for("T1", False, VerificationStatus.ERROR),
            test_settings, fixed_clock, mock_sleep
        )
        
        result = await engine.reconcile()
        
        assert result[0].futures_listed is None
    
    async def test_batches_bounded_with_pause(
        self, mock_provider, mock_store, test_settings, fixed_clock, mock_sleep
    ):
        """✅ 12 tokens → batches of 5, 300ms pause between batches, ≤5 in flight."""
        mock_provider.fetch_universe.return_value = [create_universe_token(f"T{i:02d}") for i in range(12)]
        in_flight = 0
        peak = 0
        
        async def verify(symbol, expected_name=None, catalog=None):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return outcome_for(symbol, True)
        
        engine, verifier = engine_with_verifier(
            mock_provider, mock_store, verify, test_settings, fixed_clock, mock_sleep
        )
        
        result = await engine.reconcile()
        
        assert len(result) == 12
        assert peak <= 5
        assert verifier.verify.await_count == 12
        assert [c.args[0] for c in mock_sleep.await_args_list] == [0.3, 0.3]
    
    async def test_order_independent_of_completion(
        self, mock_provider, mock_store, test_settings, fixed_clock, mock_sleep
    ):
        """✅ Slow early tasks do not change the output order."""
        symbols = ["AAA", "BBB", "CCC", "DDD"]
        mock_provider.fetch_universe.return_value = [create_universe_token(s) for s in reversed(symbols)]
        delays = {"AAA": 0.03, "BBB": 0.0, "CCC": 0.02, "DDD": 0.01}
        
        async def verify(symbol, expected_name=None, catalog=None):
            await asyncio.sleep(delays[symbol])
            return outcome_for(symbol, symbol == "CCC")
        
        engine, _ = engine_with_verifier(
            mock_provider, mock_store, verify, test_settings, fixed_clock, mock_sleep
        )
        
        result = await engine.reconcile()
        
        assert [t.symbol for t in result] == symbols
        assert [t.futures_listed for t in result] == [False, False, True, False]
    
    async def test_no_pause_for_single_batch(self, engine, mock_provider, mock_sleep):
        """✅ One batch → no inter-batch pause."""
        mock_provider.fetch_universe.return_value = [create_universe_token("ETH")]
        
        await engine.reconcile()
        
        mock_sleep.assert_not_awaited()


# ============================================================================
# Tests for refresh_tracked
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestRefreshTracked:
    """Test the periodic re-verification of tracked tokens."""
    
    async def test_only_stale_refreshed(
        self, mock_provider, mock_store, test_settings, fixed_clock, mock_sleep, hours_ago
    ):
        """✅ Fresh verdicts skipped; stale and never-verified re-checked."""
        mock_store.list_tracked.return_value = [
            create_tracked_token("FRESH", futures_listed=True, last_verified_at=hours_ago(1)),
            create_tracked_token("STALE", name="Stale", futures_listed=False, last_verified_at=hours_ago(30)),
            create_tracked_token("NEW", name="New"),
        ]
        engine, verifier = engine_with_verifier(
            mock_provider, mock_store,
            lambda symbol, expected_name=None, catalog=None: outcome_for(symbol, True),
            test_settings, fixed_clock, mock_sleep
        )
        
        outcomes = await engine.refresh_tracked()
        
        assert [o.symbol for o in outcomes] == ["STALE", "NEW"]
        verifier.verify.assert_any_await("STALE", expected_name="Stale")
        verifier.verify.assert_any_await("NEW", expected_name="New")
        assert verifier.verify.await_count == 2
    
    async def test_failure_reported_as_error(
        self, mock_provider, mock_store, test_settings, fixed_clock, mock_sleep
    ):
        """❌ Exception during refresh → ERROR outcome, not raised."""
        mock_store.list_tracked.return_value = [create_tracked_token("BAD")]
        
        async def verify(symbol, expected_name=None, catalog=None):
            raise RuntimeError("db locked")
        
        engine, _ = engine_with_verifier(
            mock_provider, mock_store, verify, test_settings, fixed_clock, mock_sleep
        )
        
        outcomes = await engine.refresh_tracked()
        
        assert outcomes[0].status == VerificationStatus.ERROR
        assert "db locked" in outcomes[0].reason
    
    async def test_nothing_due(self, engine, mock_store, mock_provider, hours_ago):
        """✅ All fresh → no verification."""
        mock_store.list_tracked.return_value = [
            create_tracked_token("A", futures_listed=True, last_verified_at=hours_ago(2))
        ]
        
        assert await engine.refresh_tracked() == []
        mock_provider.check_listing.assert_not_awaited()


# ============================================================================
# Tests against the real tracking store
# ============================================================================

@pytest.fixture
def moving_clock():
    """Clock starting at FIXED_NOW that tests can advance."""
    state = {"now": FIXED_NOW}
    
    def clock():
        return state["now"]
    
    def advance(hours):
        state["now"] += timedelta(hours=hours)
    
    clock.advance = advance
    return clock


@pytest.fixture
def real_store(session_factory, moving_clock):
    return TrackingStore(session_factory, clock=moving_clock)


@pytest.fixture
def store_engine(mock_provider, real_store, test_settings, moving_clock, mock_sleep):
    """Engine and verifier sharing one in-memory SQLite store."""
    verifier = VerificationService(mock_provider, real_store, config=test_settings, clock=moving_clock)
    engine = ReconciliationEngine(
        mock_provider, real_store, verifier,
        config=test_settings, clock=moving_clock, sleep=mock_sleep
    )
    return engine, verifier


@pytest.mark.unit
@pytest.mark.asyncio
class TestReconcileWithStore:
    """Verification writes followed by reconciliation passes over SQLite."""
    
    async def test_cached_verdict_reused_then_refreshed(
        self, store_engine, real_store, mock_provider, moving_clock
    ):
        """✅ First pass caches the verdict, second reuses it, stale cache re-verified."""
        engine, _ = store_engine
        mock_provider.fetch_universe.return_value = [create_universe_token("ROAM", name="Roam")]
        
        first = await engine.reconcile()
        second = await engine.reconcile()
        
        assert [(t.symbol, t.futures_listed) for t in first] == [("ROAM", True)]
        assert second == first
        assert mock_provider.check_listing.await_count == 1
        row = await real_store.get_details("ROAM")
        assert row.is_tracked is False
        assert row.name == "Roam"
        
        moving_clock.advance(25)
        third = await engine.reconcile()
        
        assert mock_provider.check_listing.await_count == 2
        assert third[0].last_verified_at == FIXED_NOW + timedelta(hours=25)
    
    async def test_direct_verify_does_not_poison_other_token(
        self, store_engine, real_store, mock_provider, moving_clock
    ):
        """✅ verify('BTC') hitting tracked WBTC leaves BTC free to verify on its own name."""
        engine, verifier = store_engine
        await real_store.upsert_tracked_meta(
            "WBTC", metadata=create_universe_token("WBTC", name="Wrapped Bitcoin")
        )
        
        direct = await verifier.verify("BTC")
        
        assert direct.status == VerificationStatus.CATALOG_MISMATCH
        assert await real_store.get_details("BTC") is None
        
        moving_clock.advance(25)
        mock_provider.fetch_universe.return_value = [create_universe_token("BTC", name="Bitcoin")]
        
        merged = await engine.reconcile()
        
        assert [(t.symbol, t.futures_listed) for t in merged] == [("BTC", True)]
        btc = await real_store.get_details("BTC")
        assert btc.name == "Bitcoin"
        assert btc.futures_listed is True
    
    async def test_confirmed_negative_cached(self, store_engine, real_store, mock_provider):
        """❌ Token without a contract → cached false reused on the next pass."""
        engine, _ = store_engine
        mock_provider.fetch_universe.return_value = [create_universe_token("NEW", name="New")]
        mock_provider.check_listing.side_effect = (
            lambda symbol, timeout=None: create_listing(symbol, status="NOT_FOUND")
        )
        
        await engine.reconcile()
        merged = await engine.reconcile()
        
        assert merged[0].futures_listed is False
        assert mock_provider.check_listing.await_count == 1
        assert (await real_store.get_details("NEW")).futures_listed is False
