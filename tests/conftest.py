"""Shared pytest fixtures for alpha checker tests."""
import pytest
from datetime import datetime, timedelta, timezone
from typing import Optional
from sqlalchemy.pool import StaticPool

from alphachecker.core.config import Settings
from alphachecker.core.database import build_engine, build_session_factory, init_db
from alphachecker.providers.models import UniverseToken, ListingInfo
from alphachecker.services.tracking_store import TrackedToken, TrackingStore


FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def create_universe_token(
    symbol: str,
    name: Optional[str] = None,
    price_usdt: float = 1.0,
    **kwargs
) -> UniverseToken:
    """Factory function to create UniverseToken instances for testing."""
    return UniverseToken(
        symbol=symbol,
        name=name if name is not None else f"{symbol} Token",
        price_usdt=price_usdt,
        change_24h_pct=kwargs.pop("change_24h_pct", 2.5),
        volume_24h=kwargs.pop("volume_24h", 1_000_000.0),
        chain_name=kwargs.pop("chain_name", "BSC"),
        **kwargs
    )


def create_tracked_token(
    symbol: str,
    name: Optional[str] = None,
    is_tracked: bool = True,
    priority: int = 0,
    futures_listed: Optional[bool] = None,
    last_verified_at: Optional[datetime] = None,
    notes: Optional[str] = None,
    token_id: int = 1
) -> TrackedToken:
    """Factory function to create TrackedToken snapshots for testing."""
    return TrackedToken(
        id=token_id,
        symbol=symbol,
        name=name if name is not None else f"{symbol} Token",
        is_tracked=is_tracked,
        priority=priority,
        notes=notes,
        futures_listed=futures_listed,
        last_verified_at=last_verified_at,
    )


def create_listing(symbol: str, status: str = "TRADING") -> ListingInfo:
    """Factory function for a futures listing answer."""
    if status == "NOT_FOUND":
        return ListingInfo.not_found(symbol)
    return ListingInfo(
        symbol=f"{symbol}USDT",
        base_symbol=symbol,
        available=status == "TRADING",
        status=status,
        contract_type="PERPETUAL",
        quote_asset="USDT",
    )


@pytest.fixture
def test_settings():
    """Settings isolated from the environment, with request spacing disabled."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        min_request_interval_ms=0,
    )


@pytest.fixture
def fixed_clock():
    """Clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
async def db_engine():
    """In-memory SQLite engine shared across sessions of one test."""
    engine = build_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def store(session_factory, fixed_clock):
    """TrackingStore over the in-memory database."""
    return TrackingStore(session_factory, clock=fixed_clock)


@pytest.fixture
def hours_ago():
    """Helper returning FIXED_NOW minus a number of hours."""
    return lambda hours: FIXED_NOW - timedelta(hours=hours)
