"""Ordered failure resolver pipeline."""

import logging
from typing import List, Optional, Sequence

from .base import FailureContext, FailureResolver
from .resolvers import (
    ChecksumExceededTimeLimitFailureResolver,
    ExceededGlobalMemoryLimitFailureResolver,
    ExceededTimeLimitFailureResolver,
    VerifierLimitationFailureResolver,
)

logger = logging.getLogger(__name__)


class FailureResolverManager:
    """Consults resolvers in order and returns the first resolution."""

    def __init__(self, resolvers: Sequence[FailureResolver]):
        self.resolvers: List[FailureResolver] = list(resolvers)

    @classmethod
    def default(cls) -> "FailureResolverManager":
        return cls([
            ExceededGlobalMemoryLimitFailureResolver(),
            ExceededTimeLimitFailureResolver(),
            ChecksumExceededTimeLimitFailureResolver(),
            VerifierLimitationFailureResolver(),
        ])

    def resolve(self, context: FailureContext) -> Optional[str]:
        for resolver in self.resolvers:
            resolution = resolver.resolve(context)
            if resolution is not None:
                logger.info("Failure resolved by %s: %s", resolver.name, resolution)
                return resolution
        return None
