"""Models package initialization."""
from alphachecker.models.alpha_token import AlphaToken

__all__ = [
    "AlphaToken",
]
