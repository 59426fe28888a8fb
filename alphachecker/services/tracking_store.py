"""Tracking store: persistence of curated alpha tokens and cached futures verdicts."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from sqlalchemy import select, update, func, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alphachecker.models import AlphaToken
from alphachecker.providers.models import UniverseToken
from alphachecker.utils.symbols import canonical_symbol, symbol_candidates
from alphachecker.utils.time import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Exception raised when the tracking store cannot be read or written."""
    pass


class NotFoundError(StoreError):
    """No tracked token matches the requested symbol."""
    pass


class DuplicateError(StoreError):
    """The token is already tracked."""
    pass


@dataclass(frozen=True)
class TrackedToken:
    """Detached snapshot of an ``alpha_tokens`` row."""
    id: int
    symbol: str
    name: Optional[str]
    is_tracked: bool
    priority: int
    notes: Optional[str]
    futures_listed: Optional[bool]
    last_verified_at: Optional[datetime]
    alpha_id: Optional[str] = None
    chain_id: Optional[str] = None
    contract_address: Optional[str] = None
    decimals: Optional[int] = None
    network: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    
    @classmethod
    def from_row(cls, row: AlphaToken) -> "TrackedToken":
        return cls(
            id=row.id,
            symbol=row.symbol,
            name=row.name,
            is_tracked=bool(row.is_tracked),
            priority=row.priority or 0,
            notes=row.notes,
            futures_listed=row.is_futures_listed,
            last_verified_at=ensure_utc(row.futures_check_date),
            alpha_id=row.alpha_id,
            chain_id=row.chain_id,
            contract_address=row.contract_address,
            decimals=row.decimals,
            network=row.network,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )
    
    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "name": self.name,
            "is_tracked": self.is_tracked,
            "priority": self.priority,
            "notes": self.notes,
            "futures_listed": self.futures_listed,
            "last_verified_at": self.last_verified_at.isoformat() if self.last_verified_at else None,
            "alpha_id": self.alpha_id,
            "chain_id": self.chain_id,
            "contract_address": self.contract_address,
            "decimals": self.decimals,
            "network": self.network,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class TrackingStore:
    """
    Async store over the ``alpha_tokens`` table.
    
    Each call opens and commits its own session, so the store can be shared by
    concurrent verifications. Verification writes are upserts keyed by the
    canonical symbol and never touch curation fields.
    """
    
    def __init__(self, session_factory: async_sessionmaker, clock: Callable[[], datetime] = utc_now):
        self._session_factory = session_factory
        self._clock = clock
    
    async def list_tracked(self) -> List[TrackedToken]:
        """Curator-tracked tokens, highest priority first."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(AlphaToken)
                    .where(AlphaToken.is_tracked.is_(True))
                    .order_by(AlphaToken.priority.desc(), AlphaToken.symbol.asc())
                )
                return [TrackedToken.from_row(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list tracked tokens: {e}") from e
    
    async def list_all(self) -> List[TrackedToken]:
        """All rows, tracked and untracked cache rows alike."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(select(AlphaToken).order_by(AlphaToken.symbol.asc()))
                return [TrackedToken.from_row(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list tokens: {e}") from e
    
    async def get_by_symbol(self, symbol: str) -> Optional[TrackedToken]:
        """
        Tolerant lookup of a single token.
        
        Tries exact, then case-insensitive, then substring matching; within
        each strategy the raw, marker-stripped and marker-prefixed forms are
        tried in that order.
        
        Args:
            symbol: Symbol as received (may carry a leading marker)
            
        Returns:
            TrackedToken or None if nothing matches
        """
        candidates = symbol_candidates(symbol)
        if not candidates:
            return None
        
        try:
            async with self._session_factory() as db:
                row = await self._find(db, candidates)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to look up {symbol}: {e}") from e
        
        return TrackedToken.from_row(row) if row else None
    
    async def _find(self, db: AsyncSession, candidates: Sequence[str]) -> Optional[AlphaToken]:
        for candidate in candidates:
            result = await db.execute(select(AlphaToken).where(AlphaToken.symbol == candidate))
            row = result.scalars().first()
            if row:
                return row
        
        for candidate in candidates:
            result = await db.execute(
                select(AlphaToken)
                .where(func.upper(AlphaToken.symbol) == candidate.upper())
                .order_by(AlphaToken.symbol)
                .limit(1)
            )
            row = result.scalars().first()
            if row:
                return row
        
        for candidate in candidates:
            result = await db.execute(
                select(AlphaToken)
                .where(func.upper(AlphaToken.symbol).contains(candidate.upper(), autoescape=True))
                .order_by(func.length(AlphaToken.symbol), AlphaToken.symbol)
                .limit(1)
            )
            row = result.scalars().first()
            if row:
                return row
        
        return None
    
    @staticmethod
    def _insert_for(db: AsyncSession):
        """Dialect-specific INSERT supporting ON CONFLICT."""
        if db.get_bind().dialect.name == "postgresql":
            return pg_insert
        return sqlite_insert
    
    async def upsert_verification(
        self,
        symbol: str,
        futures_listed: bool,
        verified_at: datetime,
        name: Optional[str] = None
    ) -> None:
        """
        Persist a conclusive futures verdict.
        
        Creates an untracked cache row when the symbol is unknown. An existing
        row keeps its name and curation fields.
        
        Args:
            symbol: Token symbol (stored canonicalized)
            futures_listed: Conclusive verdict
            verified_at: When the verdict was produced
            name: Display name for a newly created row
        """
        if verified_at is None:
            raise ValueError("verified_at is required when recording a verdict")
        
        key = canonical_symbol(symbol)
        verified_at = ensure_utc(verified_at)
        now = ensure_utc(self._clock())
        
        try:
            async with self._session_factory() as db:
                insert = self._insert_for(db)
                stmt = insert(AlphaToken).values(
                    symbol=key,
                    name=name,
                    is_tracked=False,
                    priority=0,
                    is_futures_listed=bool(futures_listed),
                    futures_check_date=verified_at,
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["symbol"],
                    set_={
                        "is_futures_listed": stmt.excluded.is_futures_listed,
                        "futures_check_date": stmt.excluded.futures_check_date,
                        "updated_at": stmt.excluded.updated_at,
                        "name": func.coalesce(AlphaToken.name, stmt.excluded.name),
                    }
                )
                await db.execute(stmt)
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to record verification for {key}: {e}") from e
        
        logger.debug(f"Recorded futures verdict {key}={futures_listed}")
    
    async def get_details(self, symbol: str) -> Optional[TrackedToken]:
        """Row for exactly this token (case and marker insensitive), or None."""
        key = canonical_symbol(symbol)
        if not key:
            return None
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(AlphaToken).where(func.upper(AlphaToken.symbol) == key).limit(1)
                )
                row = result.scalars().first()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load {key}: {e}") from e
        return TrackedToken.from_row(row) if row else None
    
    async def upsert_tracked_meta(
        self,
        symbol: str,
        priority: int = 0,
        notes: Optional[str] = "",
        metadata: Optional[UniverseToken] = None
    ) -> TrackedToken:
        """
        Start tracking a token.
        
        An untracked cache row for the symbol is re-activated in place, keeping
        its cached verdict.
        
        Raises:
            ValueError: If priority is negative
            DuplicateError: If the token is already tracked
            StoreError: If the database cannot be written
        """
        if priority < 0:
            raise ValueError("Priority must be a non-negative number")
        
        key = canonical_symbol(symbol)
        
        try:
            async with self._session_factory() as db:
                result = await db.execute(select(AlphaToken).where(AlphaToken.symbol == key))
                row = result.scalar_one_or_none()
                
                if row is not None and row.is_tracked:
                    raise DuplicateError(f"Token {key} already exists")
                
                if row is None:
                    row = AlphaToken(symbol=key)
                    db.add(row)
                
                row.is_tracked = True
                row.priority = priority
                row.notes = notes
                if metadata is not None:
                    row.name = metadata.name or row.name
                    row.alpha_id = metadata.alpha_id
                    row.chain_id = metadata.chain_id
                    row.contract_address = metadata.contract_address
                    row.decimals = metadata.decimals
                    row.network = metadata.chain_name
                
                try:
                    await db.commit()
                except IntegrityError as e:
                    await db.rollback()
                    raise DuplicateError(f"Token {key} already exists") from e
                await db.refresh(row)
                token = TrackedToken.from_row(row)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to track {key}: {e}") from e
        
        logger.info(f"Tracking {key} (priority={priority})")
        return token
    
    async def _update_tracked(self, key: str, **values) -> int:
        """Update the tracked row for ``key``; NotFoundError if there is none."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(AlphaToken)
                    .where(AlphaToken.symbol == key, AlphaToken.is_tracked.is_(True))
                    .values(updated_at=ensure_utc(self._clock()), **values)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update {key}: {e}") from e
        
        if result.rowcount == 0:
            raise NotFoundError(f"Token {key} not found")
        return result.rowcount
    
    async def deactivate(self, symbol: str) -> int:
        """
        Stop tracking a token (soft delete).
        
        Returns:
            Number of rows changed
            
        Raises:
            NotFoundError: If no tracked token has this symbol
        """
        key = canonical_symbol(symbol)
        changed = await self._update_tracked(key, is_tracked=False)
        logger.info(f"Stopped tracking {key}")
        return changed
    
    async def set_priority(self, symbol: str, priority: int) -> int:
        """
        Change the priority of a tracked token.
        
        Raises:
            ValueError: If priority is negative
            NotFoundError: If no tracked token has this symbol
        """
        if priority < 0:
            raise ValueError("Priority must be a non-negative number")
        
        return await self._update_tracked(canonical_symbol(symbol), priority=priority)
    
    async def search(self, query: str, limit: int = 20) -> List[TrackedToken]:
        """Case-insensitive search on symbol or name, tracked tokens first."""
        term = query.strip().upper()
        if not term:
            return []
        
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(AlphaToken)
                    .where(or_(
                        func.upper(AlphaToken.symbol).contains(term, autoescape=True),
                        func.upper(AlphaToken.name).contains(term, autoescape=True),
                    ))
                    .order_by(
                        AlphaToken.is_tracked.desc(),
                        AlphaToken.priority.desc(),
                        AlphaToken.symbol.asc()
                    )
                    .limit(limit)
                )
                return [TrackedToken.from_row(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to search tokens for '{query}': {e}") from e
