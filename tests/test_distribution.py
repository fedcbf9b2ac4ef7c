"""Tests for round-robin work distribution."""

import pytest

from fanout.distribution import (
    MAX_WORKERS,
    WorkBucket,
    distribute,
    effective_workers,
    validate_worker_count,
)
from fanout.errors import EXIT_VALIDATION, InvalidWorkerCountError, NoRequirementsError


def _ids(count):
    return [f"REQ-{n:03d}" for n in range(1, count + 1)]


class TestDistribute:
    """Tests for distribute()."""

    def test_seven_requirements_three_workers(self):
        """REQ-001..REQ-007 over 3 workers deals like cards."""
        buckets = distribute(_ids(7), workers=3)

        assert [b.requirements for b in buckets] == [
            ("REQ-001", "REQ-004", "REQ-007"),
            ("REQ-002", "REQ-005"),
            ("REQ-003", "REQ-006"),
        ]
        assert [b.index for b in buckets] == [0, 1, 2]
        assert [b.number for b in buckets] == [1, 2, 3]

    def test_fewer_requirements_than_workers(self):
        """Two requirements with 5 workers produce exactly 2 non-empty buckets."""
        buckets = distribute(["REQ-A", "REQ-B"], workers=5)

        assert buckets == [
            WorkBucket(index=0, requirements=("REQ-A",)),
            WorkBucket(index=1, requirements=("REQ-B",)),
        ]

    def test_single_worker_gets_everything_in_order(self):
        ids = _ids(4)
        buckets = distribute(ids, workers=1)
        assert len(buckets) == 1
        assert list(buckets[0].requirements) == ids

    @pytest.mark.parametrize("total,workers", [(1, 1), (5, 3), (8, 8), (20, 8), (9, 4), (3, 8)])
    def test_partition_properties(self, total, workers):
        """Union is the input, buckets are disjoint, sizes differ by at most one."""
        ids = _ids(total)
        buckets = distribute(ids, workers=workers)

        flattened = [req for b in buckets for req in b.requirements]
        assert sorted(flattened) == sorted(ids)
        assert len(flattened) == len(set(flattened))
        assert len(buckets) == min(total, workers)
        assert all(b.requirements for b in buckets)

        sizes = [len(b.requirements) for b in buckets]
        assert max(sizes) - min(sizes) <= 1

    def test_relative_order_preserved_within_bucket(self):
        ids = _ids(10)
        for bucket in distribute(ids, workers=4):
            positions = [ids.index(req) for req in bucket.requirements]
            assert positions == sorted(positions)

    def test_deterministic(self):
        ids = ["REQ-X", "REQ-Y", "REQ-Z", "REQ-1", "REQ-2"]
        assert distribute(ids, workers=2) == distribute(list(ids), workers=2)

    def test_empty_requirements_rejected(self):
        with pytest.raises(NoRequirementsError) as exc_info:
            distribute([], workers=3)
        assert exc_info.value.exit_code == EXIT_VALIDATION
        assert exc_info.value.remediation

    @pytest.mark.parametrize("workers", [0, -1, MAX_WORKERS + 1, 100])
    def test_worker_count_out_of_range(self, workers):
        with pytest.raises(InvalidWorkerCountError) as exc_info:
            distribute(_ids(3), workers=workers)
        assert exc_info.value.exit_code == EXIT_VALIDATION


class TestValidateWorkerCount:
    """Tests for validate_worker_count()."""

    @pytest.mark.parametrize("workers", [1, 3, 8])
    def test_accepts_range(self, workers):
        assert validate_worker_count(workers) == workers

    @pytest.mark.parametrize("workers", [True, "3", 2.0, None])
    def test_rejects_non_integers(self, workers):
        with pytest.raises(InvalidWorkerCountError):
            validate_worker_count(workers)

    def test_effective_workers_clamps_to_total(self):
        assert effective_workers(2, 5) == 2
        assert effective_workers(10, 5) == 5
