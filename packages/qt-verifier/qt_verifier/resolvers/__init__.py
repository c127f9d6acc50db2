"""Reclassification of known-benign verification failures."""

from .base import FailureContext, FailureResolver
from .manager import FailureResolverManager
from .resolvers import (
    ChecksumExceededTimeLimitFailureResolver,
    ExceededGlobalMemoryLimitFailureResolver,
    ExceededTimeLimitFailureResolver,
    VerifierLimitationFailureResolver,
)

__all__ = [
    "FailureContext",
    "FailureResolver",
    "FailureResolverManager",
    "ChecksumExceededTimeLimitFailureResolver",
    "ExceededGlobalMemoryLimitFailureResolver",
    "ExceededTimeLimitFailureResolver",
    "VerifierLimitationFailureResolver",
]
