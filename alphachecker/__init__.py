"""Alpha token tracker: Binance alpha universe reconciled against a local tracking store."""

__version__ = "1.0.0"
