"""
Clients for the external settlement, quote and swap providers.
"""
from .status import (
    NormalizedStatus, StatusResult, StatusProvider, OneClickStatusProvider, normalize_status
)
from .quotes import (
    PriceSource, ProviderToken, Quote, QuoteProvider, OneClickQuoteProvider
)
from .swap import Signer, SwapExecutor, SwapResult, Web3SwapExecutor

__all__ = [
    "NormalizedStatus",
    "StatusResult",
    "StatusProvider",
    "OneClickStatusProvider",
    "normalize_status",
    "PriceSource",
    "ProviderToken",
    "Quote",
    "QuoteProvider",
    "OneClickQuoteProvider",
    "Signer",
    "SwapExecutor",
    "SwapResult",
    "Web3SwapExecutor",
]
