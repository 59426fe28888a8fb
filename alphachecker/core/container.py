"""Explicit construction of the service graph."""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from alphachecker.core.config import Settings, settings as default_settings
from alphachecker.core.database import build_engine, build_session_factory, init_db
from alphachecker.providers.binance import BinanceProvider
from alphachecker.services.curation import CurationService
from alphachecker.services.live_data import LiveDataService
from alphachecker.services.reconciliation import ReconciliationEngine
from alphachecker.services.tracking_store import TrackingStore
from alphachecker.services.verification import VerificationService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Everything one process needs, built once at startup."""
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker
    provider: BinanceProvider
    store: TrackingStore
    verifier: VerificationService
    reconciler: ReconciliationEngine
    live_data: LiveDataService
    curation: CurationService
    
    async def start(self):
        """Create tables if they do not exist yet."""
        await init_db(self.engine)
    
    async def aclose(self):
        """Close the HTTP client and dispose the database engine."""
        await self.provider.close()
        await self.engine.dispose()
        logger.info("Service container closed")


def build_container(
    config: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
    engine: Optional[AsyncEngine] = None
) -> ServiceContainer:
    """
    Wire the provider, store and services for one process.
    
    Args:
        config: Settings (defaults to the environment-loaded settings)
        client: HTTP client for the provider (one is created if omitted)
        engine: Database engine (built from config.database_url if omitted)
    """
    config = config or default_settings
    engine = engine or build_engine(config.database_url, echo=config.log_level == "DEBUG")
    session_factory = build_session_factory(engine)
    
    provider = BinanceProvider(config=config, client=client)
    store = TrackingStore(session_factory)
    verifier = VerificationService(provider, store, config=config)
    reconciler = ReconciliationEngine(provider, store, verifier, config=config)
    
    logger.info("Service container built")
    return ServiceContainer(
        settings=config,
        engine=engine,
        session_factory=session_factory,
        provider=provider,
        store=store,
        verifier=verifier,
        reconciler=reconciler,
        live_data=LiveDataService(provider, config=config),
        curation=CurationService(store, provider),
    )
