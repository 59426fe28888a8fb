"""FastAPI dependencies resolving services from the application state."""
import logging
from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from alphachecker.core.container import ServiceContainer
from alphachecker.services.curation import CurationService
from alphachecker.services.live_data import LiveDataService
from alphachecker.services.reconciliation import ReconciliationEngine
from alphachecker.services.tracking_store import TrackingStore
from alphachecker.services.verification import VerificationService

logger = logging.getLogger(__name__)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_reconciler(container: ServiceContainer = Depends(get_container)) -> ReconciliationEngine:
    return container.reconciler


def get_verifier(container: ServiceContainer = Depends(get_container)) -> VerificationService:
    return container.verifier


def get_store(container: ServiceContainer = Depends(get_container)) -> TrackingStore:
    return container.store


def get_curation(container: ServiceContainer = Depends(get_container)) -> CurationService:
    return container.curation


def get_live_data(container: ServiceContainer = Depends(get_container)) -> LiveDataService:
    return container.live_data


async def get_db(container: ServiceContainer = Depends(get_container)) -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting database sessions."""
    async with container.session_factory() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session rolled back due to error: {str(e)}", exc_info=True)
            raise
