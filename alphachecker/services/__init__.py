"""Services package initialization."""
from alphachecker.services.freshness import is_fresh
from alphachecker.services.tracking_store import (
    TrackingStore,
    TrackedToken,
    StoreError,
    NotFoundError,
    DuplicateError,
)
from alphachecker.services.verification import (
    VerificationService,
    VerificationOutcome,
    VerificationMode,
    VerificationStatus,
    CatalogEntry,
)
from alphachecker.services.reconciliation import ReconciliationEngine, MergedToken
from alphachecker.services.live_data import LiveDataService, LiveTokenData
from alphachecker.services.curation import CurationService

__all__ = [
    "is_fresh",
    "TrackingStore",
    "TrackedToken",
    "StoreError",
    "NotFoundError",
    "DuplicateError",
    "VerificationService",
    "VerificationOutcome",
    "VerificationMode",
    "VerificationStatus",
    "CatalogEntry",
    "ReconciliationEngine",
    "MergedToken",
    "LiveDataService",
    "LiveTokenData",
    "CurationService",
]
