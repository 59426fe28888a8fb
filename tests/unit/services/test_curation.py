"""Unit tests for CurationService."""
import pytest
from unittest.mock import AsyncMock, MagicMock

from alphachecker.providers import UpstreamError, UpstreamErrorKind
from alphachecker.services.curation import CurationService
from alphachecker.services.tracking_store import TrackingStore
from tests.conftest import create_tracked_token, create_universe_token


@pytest.fixture
def mock_store():
    store = MagicMock(spec=TrackingStore)
    store.upsert_tracked_meta = AsyncMock(side_effect=lambda symbol, **kw: create_tracked_token(symbol))
    store.deactivate = AsyncMock(return_value=1)
    store.set_priority = AsyncMock(return_value=1)
    return store


@pytest.fixture
def mock_provider():
    provider = MagicMock()
    provider.fetch_universe = AsyncMock(return_value=[
        create_universe_token("roam", name="Roam", chain_id="56"),
        create_universe_token("BTC", name="Bitcoin"),
    ])
    return provider


@pytest.fixture
def service(mock_store, mock_provider):
    return CurationService(mock_store, mock_provider)


@pytest.mark.unit
@pytest.mark.asyncio
class TestTrack:
    """Test track."""
    
    async def test_without_alpha_api(self, service, mock_store, mock_provider):
        """✅ Symbol canonicalized, no universe fetch."""
        token = await service.track("$roam", priority=2, notes="hi")
        
        assert token.symbol == "ROAM"
        mock_store.upsert_tracked_meta.assert_awaited_once_with("ROAM", priority=2, notes="hi", metadata=None)
        mock_provider.fetch_universe.assert_not_awaited()
    
    async def test_with_alpha_api(self, service, mock_store):
        """✅ Metadata looked up case-insensitively in the universe."""
        await service.track("ROAM", use_alpha_api=True)
        
        metadata = mock_store.upsert_tracked_meta.await_args.kwargs["metadata"]
        assert metadata.name == "Roam"
        assert metadata.chain_id == "56"
    
    async def test_alpha_api_miss(self, service, mock_store):
        """✅ Symbol absent from universe → tracked without metadata."""
        await service.track("NEWCOIN", use_alpha_api=True)
        
        assert mock_store.upsert_tracked_meta.await_args.kwargs["metadata"] is None
    
    async def test_alpha_api_failure_still_tracks(self, service, mock_store, mock_provider):
        """✅ Universe fetch failure logged, tracking proceeds."""
        mock_provider.fetch_universe.side_effect = UpstreamError(UpstreamErrorKind.NETWORK, "down", retryable=True)
        
        await service.track("ROAM", use_alpha_api=True)
        
        assert mock_store.upsert_tracked_meta.await_args.kwargs["metadata"] is None
    
    async def test_invalid_symbol(self, service, mock_store):
        """❌ Invalid symbol → ValueError, nothing stored."""
        with pytest.raises(ValueError):
            await service.track("not a symbol")
        
        mock_store.upsert_tracked_meta.assert_not_awaited()


@pytest.mark.unit
@pytest.mark.asyncio
class TestUntrackAndPriority:
    
    async def test_untrack_delegates(self, service, mock_store):
        """✅ untrack → store.deactivate."""
        assert await service.untrack("ROAM") == 1
        mock_store.deactivate.assert_awaited_once_with("ROAM")
    
    async def test_set_priority_delegates(self, service, mock_store):
        """✅ set_priority → store.set_priority."""
        assert await service.set_priority("ROAM", 4) == 1
        mock_store.set_priority.assert_awaited_once_with("ROAM", 4)
