"""
Endpoint selection policy.
"""
import logging
from typing import Sequence

from .errors import NoReachableEndpointError
from .types import EndpointCandidate, EndpointClass, ProbeResult

logger = logging.getLogger("backend_session.selector")


def select_endpoint(results: Sequence[ProbeResult]) -> EndpointCandidate:
    """
    Pick one endpoint from a probe round.

    A reachable primary candidate wins regardless of latency. Otherwise the
    fastest reachable candidate wins; ties go to the earlier candidate.

    Raises:
        NoReachableEndpointError: if no probe succeeded
    """
    successes = [r for r in results if r.success]
    if not successes:
        raise NoReachableEndpointError(
            [r.candidate.url for r in results],
            {r.candidate.url: str(r.error) for r in results if r.error is not None},
        )

    for result in successes:
        if result.candidate.classification == EndpointClass.PRIMARY:
            logger.info(
                f"select_endpoint: primary {result.candidate.label} reachable "
                f"({result.latency_ms}ms), selected"
            )
            return result.candidate

    # min() keeps the first of equal keys, so list order breaks ties
    best = min(successes, key=lambda r: r.latency_ms if r.latency_ms is not None else float("inf"))
    logger.info(f"select_endpoint: fastest {best.candidate.label} ({best.latency_ms}ms), selected")
    return best.candidate
