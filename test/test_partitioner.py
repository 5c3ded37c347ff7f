import pytest

from parallel_reduce import (
    InvalidArgumentError,
    Partition,
    cost_balanced_policy,
    even_partitions,
    partition,
)


def test_even_partitions():
    partitions = partition(10, 3)
    assert [part.length for part in partitions] == [4, 3, 3]
    assert [part.start for part in partitions] == [0, 4, 7]
    assert [part.index for part in partitions] == [0, 1, 2]
    assert partitions[-1].stop == 10


def test_partition_invariants():
    for num_items in range(0, 30):
        for num_partitions in range(1, 12):
            partitions = partition(num_items, num_partitions)
            assert len(partitions) == num_partitions
            lengths = [part.length for part in partitions]
            assert sum(lengths) == num_items
            assert max(lengths) - min(lengths) <= 1
            next_start = 0
            for idx, part in enumerate(partitions):
                assert part.index == idx
                assert part.start == next_start
                next_start = part.stop


def test_partition_is_deterministic():
    assert partition(101, 7) == partition(101, 7)


def test_no_items():
    partitions = partition(0, 4)
    assert [part.length for part in partitions] == [0, 0, 0, 0]
    assert all(part.start == 0 for part in partitions)


def test_more_partitions_than_items():
    partitions = partition(2, 4)
    assert [part.length for part in partitions] == [1, 1, 0, 0]
    assert partitions[3].take([10, 20]) == []


def test_take():
    part = Partition(index=1, start=2, length=3)
    assert part.take(list(range(10))) == [2, 3, 4]
    assert part.take(range(10)) == range(2, 5)


def test_invalid_arguments():
    with pytest.raises(InvalidArgumentError):
        partition(10, 0)
    with pytest.raises(InvalidArgumentError):
        partition(10, -1)
    with pytest.raises(InvalidArgumentError):
        partition(-1, 2)
    with pytest.raises(ValueError):
        partition(10, 2.5)
    with pytest.raises(InvalidArgumentError):
        partition(True, 2)
    with pytest.raises(InvalidArgumentError):
        partition(5, True)


def test_custom_policy():
    def all_in_last(num_items, num_partitions):
        lengths = [0] * (num_partitions - 1) + [num_items]
        return [
            Partition(index=idx, start=0, length=length)
            for idx, length in enumerate(lengths)
        ]

    partitions = partition(5, 3, policy=all_in_last)
    assert [part.length for part in partitions] == [0, 0, 5]


def test_bad_policies_are_rejected():
    def too_few(num_items, num_partitions):
        return even_partitions(num_items, num_partitions - 1)

    def overlapping(num_items, num_partitions):
        return [
            Partition(index=idx, start=0, length=num_items)
            for idx in range(num_partitions)
        ]

    def short(num_items, num_partitions):
        return even_partitions(num_items - 1, num_partitions)

    for policy in (too_few, overlapping, short):
        with pytest.raises(InvalidArgumentError):
            partition(6, 3, policy=policy)


def test_cost_balanced_policy():
    policy = cost_balanced_policy([4, 1, 1, 1, 1, 4])
    assert [part.length for part in partition(6, 2, policy=policy)] == [3, 3]

    policy = cost_balanced_policy([10, 1, 1, 1, 1])
    assert [part.length for part in partition(5, 2, policy=policy)] == [1, 4]

    policy = cost_balanced_policy([0, 0, 0])
    assert [part.length for part in partition(3, 2, policy=policy)] == [2, 1]

    policy = cost_balanced_policy([1, 1])
    assert [part.length for part in partition(2, 4, policy=policy)] == [1, 0, 1, 0]


def test_cost_balanced_policy_errors():
    with pytest.raises(InvalidArgumentError):
        cost_balanced_policy([1, -1])
    policy = cost_balanced_policy([1, 2, 3])
    with pytest.raises(InvalidArgumentError):
        partition(4, 2, policy=policy)
