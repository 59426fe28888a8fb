"""Alpha token tracking model."""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, CheckConstraint
from datetime import datetime, timezone
from alphachecker.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlphaToken(Base):
    """
    Locally persisted state for one alpha token.
    
    Rows are either curator-tracked (``is_tracked=True``) or untracked cache
    rows written by futures verification. Untracking is a soft delete.
    """
    
    __tablename__ = "alpha_tokens"
    __table_args__ = (
        CheckConstraint(
            "is_futures_listed IS NULL OR futures_check_date IS NOT NULL",
            name="ck_alpha_tokens_verified_has_timestamp"
        ),
        CheckConstraint("priority >= 0", name="ck_alpha_tokens_priority_non_negative"),
    )
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(32), unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    
    # Alpha metadata
    alpha_id = Column(String, nullable=True)
    chain_id = Column(String, nullable=True)
    contract_address = Column(String, nullable=True)
    decimals = Column(Integer, nullable=True)
    network = Column(String, nullable=True)
    
    # Curation
    is_tracked = Column(Boolean, default=False, nullable=False, index=True)
    priority = Column(Integer, default=0, nullable=False)
    notes = Column(Text, nullable=True)
    
    # Futures verification cache (NULL = never verified)
    is_futures_listed = Column(Boolean, nullable=True)
    futures_check_date = Column(DateTime(timezone=True), nullable=True)
    
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
    
    def __repr__(self) -> str:
        return f"<AlphaToken {self.symbol} tracked={self.is_tracked} futures={self.is_futures_listed}>"
