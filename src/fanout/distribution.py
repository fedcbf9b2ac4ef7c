"""
Round-robin distribution of requirement IDs across workers.

Requirement i goes to bucket i mod N, so identical input always yields an
identical assignment and bucket sizes differ by at most one.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from fanout.errors import InvalidWorkerCountError, NoRequirementsError

MIN_WORKERS = 1
MAX_WORKERS = 8
DEFAULT_WORKERS = 3


@dataclass(frozen=True)
class WorkBucket:
    """Ordered requirement IDs assigned to one workspace index."""
    index: int
    requirements: Tuple[str, ...]

    @property
    def number(self) -> int:
        """1-based agent number used in branch and window names."""
        return self.index + 1


def validate_worker_count(workers: int) -> int:
    if not isinstance(workers, int) or isinstance(workers, bool):
        raise InvalidWorkerCountError(f"Worker count must be an integer, got {workers!r}")
    if workers < MIN_WORKERS or workers > MAX_WORKERS:
        raise InvalidWorkerCountError(
            f"Worker count must be between {MIN_WORKERS} and {MAX_WORKERS}, got {workers}",
            remediation=f"Re-run with --workers {DEFAULT_WORKERS}",
        )
    return workers


def effective_workers(total: int, workers: int) -> int:
    """Worker count actually used: never more than the number of requirements."""
    return min(validate_worker_count(workers), total)


def distribute(requirements: Sequence[str], workers: int = DEFAULT_WORKERS) -> List[WorkBucket]:
    """
    Partition requirement IDs into round-robin buckets.

    Args:
        requirements: Ordered, de-duplicated requirement IDs
        workers: Requested worker count (1..8)

    Returns:
        One WorkBucket per effective worker, ordered by index

    Raises:
        InvalidWorkerCountError: workers outside 1..8
        NoRequirementsError: requirements is empty
    """
    validate_worker_count(workers)
    if not requirements:
        raise NoRequirementsError(
            "No requirement IDs found",
            remediation="Label requirements in the spec as REQ-<ID> (e.g. REQ-001) and re-run",
        )

    count = effective_workers(len(requirements), workers)
    slots: List[List[str]] = [[] for _ in range(count)]
    for position, req_id in enumerate(requirements):
        slots[position % count].append(req_id)

    return [WorkBucket(index=i, requirements=tuple(ids)) for i, ids in enumerate(slots)]
