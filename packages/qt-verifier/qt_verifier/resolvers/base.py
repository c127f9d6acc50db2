"""Failure resolver interface."""

from dataclasses import dataclass
from typing import Optional, Protocol

from ..execution.exceptions import QueryException
from ..schemas import QueryStats


@dataclass(frozen=True)
class FailureContext:
    """A failed verification step and the stats needed to judge it.

    Attributes:
        exception: The failure that ended the verification.
        control_stats: Stats of the control main query, if it ran.
        test_stats: Stats of the test main query, if it ran.
    """

    exception: QueryException
    control_stats: Optional[QueryStats] = None
    test_stats: Optional[QueryStats] = None


class FailureResolver(Protocol):
    """Recognizes a known-benign failure.

    Returns a resolution message when the failure is explained, None otherwise.
    """

    name: str

    def resolve(self, context: FailureContext) -> Optional[str]:
        ...
