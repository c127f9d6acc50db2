"""Built-in failure resolvers."""

from typing import Optional

from ..schemas import QueryStage
from .base import FailureContext

EXCEEDED_GLOBAL_MEMORY_LIMIT = "EXCEEDED_GLOBAL_MEMORY_LIMIT"
EXCEEDED_TIME_LIMIT = "EXCEEDED_TIME_LIMIT"
COMPILER_ERROR = "COMPILER_ERROR"


class ExceededGlobalMemoryLimitFailureResolver:
    """Test ran out of memory on a query that needs at least as much on control."""

    name = "exceeded_global_memory_limit"

    def resolve(self, context: FailureContext) -> Optional[str]:
        e = context.exception
        if e.stage != QueryStage.TEST_MAIN or e.error_code != EXCEEDED_GLOBAL_MEMORY_LIMIT:
            return None

        control_memory = context.control_stats.peak_memory_bytes if context.control_stats else None
        test_stats = e.query_stats or context.test_stats
        test_memory = test_stats.peak_memory_bytes if test_stats else None
        if control_memory is None or test_memory is None:
            return None
        if control_memory >= test_memory:
            return (
                f"Control query used {control_memory} bytes, "
                f"at least the {test_memory} bytes the test query used when it failed"
            )
        return None


class ExceededTimeLimitFailureResolver:
    name = "exceeded_time_limit"

    def resolve(self, context: FailureContext) -> Optional[str]:
        e = context.exception
        if e.stage == QueryStage.TEST_MAIN and e.error_code == EXCEEDED_TIME_LIMIT:
            return "Test query exceeded the time limit"
        return None


class ChecksumExceededTimeLimitFailureResolver:
    name = "checksum_exceeded_time_limit"

    def resolve(self, context: FailureContext) -> Optional[str]:
        e = context.exception
        if e.stage.is_checksum and e.error_code == EXCEEDED_TIME_LIMIT:
            return "Checksum query exceeded the time limit"
        return None


class VerifierLimitationFailureResolver:
    """Checksum queries the engine cannot compile, e.g. over very wide tables."""

    name = "verifier_limitation"

    def resolve(self, context: FailureContext) -> Optional[str]:
        e = context.exception
        if e.stage.is_checksum and e.error_code == COMPILER_ERROR:
            return "Checksum query failed to compile"
        return None
