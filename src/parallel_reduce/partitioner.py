# Copyright (c) 2025 Jose Blanca
# Licensed under the MIT License. See LICENSE file for details.

from bisect import bisect_left
from dataclasses import dataclass
from typing import Callable, Sequence
import itertools

from parallel_reduce.errors import InvalidArgumentError


@dataclass(frozen=True)
class Partition:
    index: int
    start: int
    length: int

    @property
    def stop(self) -> int:
        return self.start + self.length

    def take(self, items):
        return items[self.start : self.stop]


PartitionPolicy = Callable[[int, int], Sequence[Partition]]


def _partitions_from_lengths(lengths) -> list[Partition]:
    starts = itertools.accumulate(lengths, initial=0)
    return [
        Partition(index=idx, start=start, length=length)
        for idx, (start, length) in enumerate(zip(starts, lengths))
    ]


def even_partitions(num_items: int, num_partitions: int) -> list[Partition]:
    """
    Split ``num_items`` items into ``num_partitions`` contiguous partitions.

    The first ``num_items % num_partitions`` partitions get one item more than
    the rest, so partition lengths differ by at most one.

    >>> [p.length for p in even_partitions(10, 3)]
    [4, 3, 3]
    """
    base, remainder = divmod(num_items, num_partitions)
    lengths = [base + 1] * remainder + [base] * (num_partitions - remainder)
    return _partitions_from_lengths(lengths)


def cost_balanced_policy(costs: Sequence[float]) -> PartitionPolicy:
    """
    Create a policy that balances the summed per-item cost of each partition.

    Parameters
    ----------
    costs
        One non-negative cost per input item.

    Returns
    -------
    PartitionPolicy
        A callable ``(num_items, num_partitions)`` to be given to
        :func:`partition` or to ``parallel_reduce`` as ``partition_policy``.
        Each boundary is placed at the first item where the cumulative cost
        reaches its share of the total. If every cost is zero the items are
        split evenly.
    """
    costs = list(costs)
    if any(cost < 0 for cost in costs):
        raise InvalidArgumentError("Item costs must be non-negative")
    cumulative_costs = list(itertools.accumulate(costs))

    def policy(num_items, num_partitions):
        if num_items != len(costs):
            raise InvalidArgumentError(
                f"Got {len(costs)} costs for {num_items} items"
            )
        total_cost = cumulative_costs[-1] if cumulative_costs else 0
        if not total_cost:
            return even_partitions(num_items, num_partitions)

        boundaries = [0]
        for idx in range(1, num_partitions):
            target = total_cost * idx / num_partitions
            boundary = min(bisect_left(cumulative_costs, target) + 1, num_items)
            boundaries.append(max(boundary, boundaries[-1]))
        boundaries.append(num_items)
        lengths = [stop - start for start, stop in itertools.pairwise(boundaries)]
        return _partitions_from_lengths(lengths)

    return policy


def _check_partitions(partitions, num_items, num_partitions):
    if len(partitions) != num_partitions:
        raise InvalidArgumentError(
            f"Partition policy returned {len(partitions)} partitions, "
            f"{num_partitions} were requested"
        )
    next_start = 0
    for idx, part in enumerate(partitions):
        if part.index != idx:
            raise InvalidArgumentError(
                f"Partition at position {idx} has index {part.index}"
            )
        if part.length < 0:
            raise InvalidArgumentError(f"Partition {idx} has a negative length")
        if part.start != next_start:
            raise InvalidArgumentError(
                f"Partition {idx} starts at {part.start}, expected {next_start}"
            )
        next_start = part.stop
    if next_start != num_items:
        raise InvalidArgumentError(
            f"Partitions cover {next_start} items, the input has {num_items}"
        )


def partition(
    num_items: int,
    num_partitions: int,
    policy: PartitionPolicy | None = None,
) -> list[Partition]:
    """
    Split a sequence length into contiguous, ordered partitions.

    Parameters
    ----------
    num_items
        Length of the input sequence (``>= 0``).
    num_partitions
        Number of partitions to create (``>= 1``). It may be larger than
        ``num_items``, in which case some partitions are empty.
    policy
        Sizing strategy, a callable ``(num_items, num_partitions)`` returning
        the partitions. Defaults to :func:`even_partitions`. Whatever the
        policy returns is checked to be exactly ``num_partitions`` contiguous,
        non-overlapping partitions that cover every item once.

    Returns
    -------
    list[Partition]
        Partitions ordered by index.

    Raises
    ------
    InvalidArgumentError
        If the arguments are out of range or the policy output is not a
        valid partitioning.
    """
    if (
        isinstance(num_partitions, bool)
        or not isinstance(num_partitions, int)
        or num_partitions <= 0
    ):
        raise InvalidArgumentError(
            f"The number of partitions must be a positive integer, got {num_partitions!r}"
        )
    if isinstance(num_items, bool) or not isinstance(num_items, int) or num_items < 0:
        raise InvalidArgumentError(
            f"The number of items must be a non-negative integer, got {num_items!r}"
        )
    if policy is None:
        policy = even_partitions

    partitions = list(policy(num_items, num_partitions))
    _check_partitions(partitions, num_items, num_partitions)
    return partitions
