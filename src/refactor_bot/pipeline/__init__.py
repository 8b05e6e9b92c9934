"""Memoized execution framework: fingerprinting, cache backends and steps."""

from .cache import CacheBackend, CacheEntry, InMemoryCache, SqliteCache
from .fingerprint import canonical_encode, fingerprint
from .step import Persistence, PipelineStep, pipeline_step

__all__ = [
    "CacheBackend",
    "CacheEntry",
    "InMemoryCache",
    "Persistence",
    "PipelineStep",
    "SqliteCache",
    "canonical_encode",
    "fingerprint",
    "pipeline_step",
]
