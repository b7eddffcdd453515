"""Cache generations and their storage backends."""

from stillspace.cache.backends import CacheBackend, MemoryCacheBackend, RedisCacheBackend
from stillspace.cache.store import CacheGeneration, CacheStorage, create_storage, request_key

__all__ = [
    'CacheBackend',
    'MemoryCacheBackend',
    'RedisCacheBackend',
    'CacheGeneration',
    'CacheStorage',
    'create_storage',
    'request_key',
]
