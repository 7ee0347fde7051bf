"""
Upstream market data: quote sources, FX rates and the normalized models they produce.
"""

from .models import FetchOutcome, FxRate, FxRateTable, Quote, SearchResult

__all__ = [
    'FetchOutcome',
    'FxRate',
    'FxRateTable',
    'Quote',
    'SearchResult',
]
