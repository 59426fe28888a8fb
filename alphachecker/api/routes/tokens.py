"""Alpha token API routes."""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from alphachecker.api.deps import (
    get_curation,
    get_live_data,
    get_reconciler,
    get_store,
    get_verifier,
)
from alphachecker.providers import UpstreamError
from alphachecker.services.curation import CurationService
from alphachecker.services.live_data import LiveDataService
from alphachecker.services.reconciliation import ReconciliationEngine
from alphachecker.services.tracking_store import (
    DuplicateError,
    NotFoundError,
    StoreError,
    TrackingStore,
)
from alphachecker.services.verification import VerificationService
from alphachecker.utils.symbols import canonical_symbol
from alphachecker.utils.time import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tokens", tags=["tokens"])


class TrackTokenRequest(BaseModel):
    """Request to start tracking a token."""
    symbol: str
    priority: int = Field(default=0, ge=0)
    notes: Optional[str] = ""
    use_alpha_api: bool = False


class PriorityRequest(BaseModel):
    """Request to change a tracked token's priority."""
    priority: int = Field(ge=0)


def envelope(data: Any, **extra) -> dict:
    """Standard success response body."""
    body = {"success": True, "data": data}
    if isinstance(data, list):
        body["count"] = len(data)
    body.update(extra)
    body["timestamp"] = utc_now().isoformat()
    return body


def _upstream_failure(e: UpstreamError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Upstream error: {e}"
    )


def _store_failure(e: StoreError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Tracking store unavailable: {e}"
    )


@router.get("")
async def list_tokens(
    futures_only: bool = False,
    tracked_only: bool = False,
    reconciler: ReconciliationEngine = Depends(get_reconciler)
):
    """
    Reconcile the live alpha universe with local state.
    
    Args:
        futures_only: Only tokens with a confirmed futures listing
        tracked_only: Only curator-tracked tokens
    """
    try:
        tokens = await reconciler.reconcile()
    except UpstreamError as e:
        raise _upstream_failure(e)
    except StoreError as e:
        raise _store_failure(e)
    
    if futures_only:
        tokens = [t for t in tokens if t.futures_listed is True]
    if tracked_only:
        tokens = [t for t in tokens if t.is_tracked]
    
    return envelope([t.to_dict() for t in tokens], source="binance_alpha")


@router.get("/tracked")
async def list_tracked_tokens(store: TrackingStore = Depends(get_store)):
    """Curator-tracked tokens from the local store, highest priority first."""
    try:
        tokens = await store.list_tracked()
    except StoreError as e:
        raise _store_failure(e)
    return envelope([t.to_dict() for t in tokens], source="database")


@router.get("/search/{query}")
async def search_tokens(
    query: str,
    limit: int = Query(default=20, ge=1, le=100),
    store: TrackingStore = Depends(get_store)
):
    """Search stored tokens by symbol or name."""
    try:
        tokens = await store.search(query, limit=limit)
    except StoreError as e:
        raise _store_failure(e)
    return envelope([t.to_dict() for t in tokens], query=query)


@router.get("/{symbol}/futures")
async def check_futures(
    symbol: str,
    name: Optional[str] = None,
    verifier: VerificationService = Depends(get_verifier)
):
    """
    Verify whether a token has a live perpetual futures contract.
    
    Args:
        symbol: Token symbol
        name: Expected token name; enables strict symbol+name matching
    """
    try:
        outcome = await verifier.verify(symbol, expected_name=name)
    except StoreError as e:
        raise _store_failure(e)
    return envelope(outcome.to_dict())


@router.get("/{symbol}/live")
async def get_token_live_data(
    symbol: str,
    live_data: LiveDataService = Depends(get_live_data)
):
    """Live spot price and futures availability for one token."""
    data = await live_data.get_live_data(symbol)
    return envelope(data.to_dict())


@router.get("/{symbol}/futures/funding-rate")
async def get_funding_rate(
    symbol: str,
    live_data: LiveDataService = Depends(get_live_data)
):
    """Latest funding rate of the token's USDT perpetual."""
    try:
        funding = await live_data.get_funding_rate(symbol)
    except UpstreamError as e:
        raise _upstream_failure(e)
    
    if funding is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Could not fetch funding rate for {canonical_symbol(symbol)}"
        )
    return envelope(funding.to_dict())


@router.get("/{symbol}/futures/open-interest")
async def get_open_interest(
    symbol: str,
    live_data: LiveDataService = Depends(get_live_data)
):
    """Current open interest of the token's USDT perpetual."""
    try:
        open_interest = await live_data.get_open_interest(symbol)
    except UpstreamError as e:
        raise _upstream_failure(e)
    
    if open_interest is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Could not fetch open interest for {canonical_symbol(symbol)}"
        )
    return envelope(open_interest.to_dict())


@router.get("/{symbol}")
async def get_token_details(
    symbol: str,
    store: TrackingStore = Depends(get_store)
):
    """Stored details of one token, tracked or cached."""
    try:
        token = await store.get_details(symbol)
    except StoreError as e:
        raise _store_failure(e)
    
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Token {canonical_symbol(symbol)} not found in database"
        )
    return envelope(token.to_dict())


@router.post("", status_code=status.HTTP_201_CREATED)
async def track_token(
    request: TrackTokenRequest,
    curation: CurationService = Depends(get_curation)
):
    """Start tracking a token."""
    try:
        token = await curation.track(
            request.symbol,
            priority=request.priority,
            notes=request.notes,
            use_alpha_api=request.use_alpha_api
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DuplicateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except StoreError as e:
        raise _store_failure(e)
    
    return envelope(token.to_dict(), message=f"Token {token.symbol} added successfully")


@router.put("/{symbol}/priority")
async def update_priority(
    symbol: str,
    request: PriorityRequest,
    curation: CurationService = Depends(get_curation)
):
    """Change the priority of a tracked token."""
    try:
        await curation.set_priority(symbol, request.priority)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StoreError as e:
        raise _store_failure(e)
    
    return envelope(
        {"symbol": canonical_symbol(symbol), "priority": request.priority},
        message=f"Token {canonical_symbol(symbol)} priority updated"
    )


@router.delete("/{symbol}")
async def untrack_token(
    symbol: str,
    curation: CurationService = Depends(get_curation)
):
    """Stop tracking a token (soft delete)."""
    try:
        await curation.untrack(symbol)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StoreError as e:
        raise _store_failure(e)
    
    return envelope({"symbol": canonical_symbol(symbol)}, message=f"Token {canonical_symbol(symbol)} removed successfully")
