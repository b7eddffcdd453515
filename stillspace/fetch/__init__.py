"""Request/response model and network access."""

from stillspace.fetch.models import RequestInfo, Response, ResponseType, StoredResponse
from stillspace.fetch.network import Fetcher, HttpxFetcher

__all__ = [
    'RequestInfo',
    'Response',
    'ResponseType',
    'StoredResponse',
    'Fetcher',
    'HttpxFetcher',
]
